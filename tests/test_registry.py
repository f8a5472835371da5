"""Tests for the ScheduleRegistry against a mocked managed-scheduler client."""

import json
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from core.config import SCHEDULE_GROUP
from core.errors import ErrorKind, ServiceError
from scheduler.models import ScheduleListRequest, ScheduleRequest, ScheduleStatus
from scheduler.registry import SCHEDULE_NOT_FOUND, schedule_name

ACCOUNT = "123456789012"


def _client_error(code: str, operation: str = "GetSchedule") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


def _request(**overrides) -> ScheduleRequest:
    body = {
        "scheduleType": "daily-scan",
        "tenantId": "t1",
        "cronExpression": "0 6 * * *",
        "target": {"type": "workflow", "workflowName": "ComplianceScanWorkflow"},
        "parameters": {"depth": "full"},
    }
    body.update(overrides)
    return ScheduleRequest.model_validate(body)


def _stored(create_kwargs: dict) -> dict:
    """What GetSchedule returns for a schedule created with *create_kwargs*."""
    return {
        **create_kwargs,
        "Arn": f"arn:aws:scheduler:us-east-1:{ACCOUNT}:schedule/{SCHEDULE_GROUP}/{create_kwargs['Name']}",
        "CreationDate": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "LastModificationDate": datetime(2026, 1, 2, tzinfo=timezone.utc),
    }


@pytest.fixture
def registry(services):
    return services.registry


# ── create ────────────────────────────────────────────────────────────────────

async def test_create_issues_one_scheduler_call(registry, clients):
    schedule = await registry.create(_request())

    clients.scheduler.create_schedule.assert_called_once()
    kwargs = clients.scheduler.create_schedule.call_args.kwargs
    assert kwargs["Name"] == schedule_name(schedule.schedule_id) == schedule.schedule_name
    assert kwargs["GroupName"] == SCHEDULE_GROUP
    assert kwargs["ScheduleExpression"] == "cron(0 6 * * ? *)"
    assert kwargs["ScheduleExpressionTimezone"] == "UTC"
    assert kwargs["State"] == "ENABLED"
    assert kwargs["FlexibleTimeWindow"] == {"Mode": "FLEXIBLE", "MaximumWindowInMinutes": 15}
    assert kwargs["Description"] == "Automated daily-scan for tenant t1"
    assert "KmsKeyArn" not in kwargs
    assert kwargs["Target"]["Arn"].endswith(":stateMachine:ComplianceScanWorkflow")

    payload = json.loads(kwargs["Target"]["Input"])
    assert payload["tenantId"] == "t1"
    assert payload["workflowType"] == "daily-scan"
    assert payload["metadata"]["scheduleId"] == schedule.schedule_id

    assert schedule.enabled
    assert schedule.next_execution > datetime.now(timezone.utc)
    assert (schedule.next_execution.hour, schedule.next_execution.minute) == (6, 0)


async def test_create_disabled_with_kms_key(services, clients, settings):
    settings.scheduler_kms_key_arn = "arn:aws:kms:us-east-1:1:key/abc"
    await services.registry.create(_request(enabled=False, flexibleWindowMinutes=60, description="nightly"))
    kwargs = clients.scheduler.create_schedule.call_args.kwargs
    assert kwargs["State"] == "DISABLED"
    assert kwargs["KmsKeyArn"] == "arn:aws:kms:us-east-1:1:key/abc"
    assert kwargs["FlexibleTimeWindow"]["MaximumWindowInMinutes"] == 60
    assert kwargs["Description"] == "nightly"


async def test_unsupported_target_makes_zero_external_calls(registry, clients):
    with pytest.raises(ServiceError) as exc_info:
        await registry.create(_request(target={"type": "queue"}))
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_TARGET
    clients.sts.get_caller_identity.assert_not_called()
    clients.scheduler.create_schedule.assert_not_called()


@pytest.mark.parametrize("overrides", [
    {"cronExpression": "0 25 * * *"},
    {"cronExpression": "0 0 1 * 1"},
    {"timezone": "Nowhere/Land"},
])
async def test_validation_fails_before_any_call(registry, clients, overrides):
    with pytest.raises(ServiceError) as exc_info:
        await registry.create(_request(**overrides))
    assert exc_info.value.kind == ErrorKind.VALIDATION
    clients.sts.get_caller_identity.assert_not_called()
    clients.scheduler.create_schedule.assert_not_called()


async def test_create_failure_is_wrapped(registry, clients):
    clients.scheduler.create_schedule.side_effect = _client_error("ConflictException", "CreateSchedule")
    with pytest.raises(ServiceError) as exc_info:
        await registry.create(_request())
    err = exc_info.value
    assert err.kind == ErrorKind.CONFLICT
    assert err.status_code == 409
    assert err.message.startswith("Failed to create schedule: ")


async def test_create_retries_transient_failures(registry, clients):
    clients.scheduler.create_schedule.side_effect = [
        _client_error("ThrottlingException", "CreateSchedule"),
        {"ScheduleArn": "arn"},
    ]
    await registry.create(_request())
    assert clients.scheduler.create_schedule.call_count == 2


# ── update / delete ───────────────────────────────────────────────────────────

async def test_update_derives_name_from_id(registry, clients):
    schedule = await registry.update("abc-123", _request(cronExpression="30 2 * * 1-5"))
    kwargs = clients.scheduler.update_schedule.call_args.kwargs
    assert kwargs["Name"] == "compliance-schedule-abc-123"
    assert kwargs["ScheduleExpression"] == "cron(30 2 ? * MON-FRI *)"
    assert schedule.schedule_id == "abc-123"
    assert schedule.cron_expression == "30 2 * * 1-5"


async def test_update_missing_schedule(registry, clients):
    clients.scheduler.update_schedule.side_effect = _client_error("ResourceNotFoundException", "UpdateSchedule")
    with pytest.raises(ServiceError) as exc_info:
        await registry.update("nope", _request())
    assert exc_info.value.code == SCHEDULE_NOT_FOUND
    assert exc_info.value.status_code == 404


async def test_delete(registry, clients):
    result = await registry.delete("abc-123")
    clients.scheduler.delete_schedule.assert_called_once_with(
        Name="compliance-schedule-abc-123", GroupName=SCHEDULE_GROUP
    )
    assert result.deleted is True
    assert result.schedule_id == "abc-123"


async def test_delete_missing_is_not_silent(registry, clients):
    clients.scheduler.delete_schedule.side_effect = _client_error("ResourceNotFoundException", "DeleteSchedule")
    with pytest.raises(ServiceError) as exc_info:
        await registry.delete("gone")
    assert exc_info.value.kind == ErrorKind.NOT_FOUND
    assert exc_info.value.code == SCHEDULE_NOT_FOUND


# ── get ───────────────────────────────────────────────────────────────────────

async def test_get_recovers_created_schedule(registry, clients):
    created = await registry.create(_request(timezone="Europe/Berlin", flexibleWindowMinutes=30))
    clients.scheduler.get_schedule.return_value = _stored(clients.scheduler.create_schedule.call_args.kwargs)

    fetched = await registry.get(created.schedule_id)
    clients.scheduler.get_schedule.assert_called_with(Name=created.schedule_name, GroupName=SCHEDULE_GROUP)
    assert fetched.schedule_id == created.schedule_id
    assert fetched.tenant_id == "t1"
    assert fetched.schedule_type == "daily-scan"
    assert fetched.parameters == {"depth": "full"}
    assert fetched.target.workflow_name == "ComplianceScanWorkflow"
    assert fetched.timezone == "Europe/Berlin"
    assert fetched.flexible_window_minutes == 30
    assert fetched.enabled is True
    assert fetched.cron_expression == created.cron_expression == "0 6 * * *"
    assert fetched.next_execution.hour == 6


async def test_get_twice_is_stable(registry, clients):
    created = await registry.create(_request(cronExpression="*/5 * * * *"))
    clients.scheduler.get_schedule.return_value = _stored(clients.scheduler.create_schedule.call_args.kwargs)

    first = await registry.get(created.schedule_id)
    second = await registry.get(created.schedule_id)
    assert first.model_dump(exclude={"next_execution"}) == second.model_dump(exclude={"next_execution"})
    assert first.next_execution <= second.next_execution


async def test_get_without_embedded_metadata_reports_unknown(registry, clients):
    clients.scheduler.get_schedule.return_value = {
        "Name": "compliance-schedule-legacy",
        "ScheduleExpression": "cron(0 6 * * ? *)",
        "State": "DISABLED",
        "Target": {"Arn": f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:fn", "RoleArn": "r", "Input": "{}"},
    }
    fetched = await registry.get("legacy")
    assert fetched.tenant_id == "unknown"
    assert fetched.schedule_type == "unknown"
    assert fetched.enabled is False
    assert fetched.target.function_name == "fn"


async def test_get_missing(registry, clients):
    clients.scheduler.get_schedule.side_effect = _client_error("ResourceNotFoundException")
    with pytest.raises(ServiceError) as exc_info:
        await registry.get("missing")
    assert exc_info.value.code == SCHEDULE_NOT_FOUND


# ── list ──────────────────────────────────────────────────────────────────────

def _raw(schedule_id: str, tenant: str, schedule_type: str, state: str = "ENABLED") -> dict:
    return {
        "Name": f"compliance-schedule-{schedule_id}",
        "ScheduleExpression": "cron(0 6 * * ? *)",
        "State": state,
        "Target": {
            "Arn": f"arn:aws:states:us-east-1:{ACCOUNT}:stateMachine:Wf",
            "RoleArn": "role",
            "Input": json.dumps({"tenantId": tenant, "workflowType": schedule_type, "parameters": {}}),
        },
    }


def _install(clients, pages: list[list[dict]], broken: set[str] = frozenset()):
    by_name = {raw["Name"]: raw for page in pages for raw in page}

    def list_schedules(**kwargs):
        index = int(kwargs.get("NextToken") or 0)
        response = {"Schedules": [{"Name": r["Name"], "State": r["State"]} for r in pages[index]]}
        if index + 1 < len(pages):
            response["NextToken"] = str(index + 1)
        return response

    def get_schedule(Name, GroupName):
        if Name in broken:
            return {**by_name[Name], "ScheduleExpression": "rate(5 minutes)"}
        return by_name[Name]

    clients.scheduler.list_schedules.side_effect = list_schedules
    clients.scheduler.get_schedule.side_effect = get_schedule


async def test_list_filters_client_side(registry, clients):
    _install(clients, [[
        _raw("a", "t1", "scan"),
        _raw("b", "t2", "scan"),
        _raw("c", "t1", "audit", state="DISABLED"),
    ]])
    result = await registry.list(ScheduleListRequest(tenant_id="t1"))
    assert sorted(s.schedule_id for s in result.schedules) == ["a", "c"]

    result = await registry.list(ScheduleListRequest(tenant_id="t1", status=ScheduleStatus.DISABLED))
    assert [s.schedule_id for s in result.schedules] == ["c"]

    result = await registry.list(ScheduleListRequest(schedule_type="scan"))
    assert sorted(s.schedule_id for s in result.schedules) == ["a", "b"]
    assert result.next_token is None


async def test_list_skips_unparseable_entries(registry, clients):
    _install(clients, [[_raw("good", "t1", "scan"), _raw("bad", "t1", "scan")]],
             broken={"compliance-schedule-bad"})
    result = await registry.list(ScheduleListRequest())
    assert [s.schedule_id for s in result.schedules] == ["good"]


async def test_list_skips_entries_with_malformed_payload(registry, clients):
    malformed = _raw("odd", "t1", "scan")
    malformed["Target"] = {**malformed["Target"], "Input": json.dumps({"tenantId": 42})}
    _install(clients, [[_raw("good", "t1", "scan"), malformed]])
    result = await registry.list(ScheduleListRequest())
    assert [s.schedule_id for s in result.schedules] == ["good"]


async def test_get_malformed_payload_is_internal(registry, clients):
    malformed = _raw("odd", "t1", "scan")
    malformed["Target"] = {**malformed["Target"], "Input": json.dumps({"tenantId": 42})}
    clients.scheduler.get_schedule.return_value = malformed
    with pytest.raises(ServiceError) as exc_info:
        await registry.get("odd")
    assert exc_info.value.kind == ErrorKind.INTERNAL


async def test_list_pages_until_limit(registry, clients):
    _install(clients, [
        [_raw("a", "t2", "scan")],
        [_raw("b", "t1", "scan")],
        [_raw("c", "t1", "scan")],
    ])
    result = await registry.list(ScheduleListRequest(tenant_id="t1", limit=1))
    assert [s.schedule_id for s in result.schedules] == ["b"]
    assert result.next_token == "2"
    assert clients.scheduler.list_schedules.call_args.kwargs["MaxResults"] == 1


async def test_list_failure_is_wrapped(registry, clients):
    clients.scheduler.list_schedules.side_effect = _client_error("AccessDeniedException", "ListSchedules")
    with pytest.raises(ServiceError) as exc_info:
        await registry.list(ScheduleListRequest())
    assert exc_info.value.message.startswith("Failed to list schedules: ")
    assert exc_info.value.status_code == 502
