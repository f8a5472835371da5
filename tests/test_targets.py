"""Tests for the Target model and the TargetResolver."""

import json

import pytest
from pydantic import ValidationError

from core.config import Settings
from core.errors import ErrorKind, ServiceError
from scheduler.models import Target, TargetType
from scheduler.targets import NamespaceIdentity, TargetResolver, parse_payload, target_from_arn

ACCOUNT = "123456789012"


@pytest.fixture
def resolver(clients, resilience):
    settings = Settings()
    return TargetResolver(NamespaceIdentity(clients.sts, resilience, settings), settings)


# ── Target model ──────────────────────────────────────────────────────────────

def test_target_from_wire_names():
    target = Target.model_validate({"type": "workflow", "workflowName": "ComplianceScanWorkflow"})
    assert target.kind == TargetType.WORKFLOW
    assert target.name == "ComplianceScanWorkflow"


@pytest.mark.parametrize("raw,kind,name", [
    ({"type": "step-functions", "stateMachineName": "Wf"}, TargetType.WORKFLOW, "Wf"),
    ({"type": "lambda", "functionName": "fn"}, TargetType.FUNCTION, "fn"),
    ({"type": "SNS", "topicName": "alerts"}, TargetType.TOPIC, "alerts"),
])
def test_legacy_target_spellings(raw, kind, name):
    target = Target.model_validate(raw)
    assert target.kind == kind
    assert target.name == name


def test_target_requires_matching_name():
    with pytest.raises(ValidationError):
        Target.model_validate({"type": "workflow", "functionName": "fn"})


def test_target_rejects_two_names():
    with pytest.raises(ValidationError):
        Target.model_validate({"type": "function", "functionName": "fn", "topicName": "t"})


def test_unknown_target_type_passes_model():
    target = Target.model_validate({"type": "queue"})
    assert target.kind is None
    assert target.name is None


# ── NamespaceIdentity ─────────────────────────────────────────────────────────

async def test_identity_is_memoized(clients, resilience):
    identity = NamespaceIdentity(clients.sts, resilience, Settings())
    assert await identity.account_id() == ACCOUNT
    assert await identity.account_id() == ACCOUNT
    clients.sts.get_caller_identity.assert_called_once()


async def test_identity_override_skips_lookup(clients, resilience):
    identity = NamespaceIdentity(clients.sts, resilience, Settings(account_id="999999999999"))
    assert await identity.account_id() == "999999999999"
    clients.sts.get_caller_identity.assert_not_called()


# ── TargetResolver ────────────────────────────────────────────────────────────

async def test_resolve_workflow(resolver):
    desc = await resolver.resolve(
        Target.workflow("ComplianceScanWorkflow"), "t1", "daily-scan", {"depth": "full"}, schedule_id="s-1"
    )
    assert desc.arn == f"arn:aws:states:us-east-1:{ACCOUNT}:stateMachine:ComplianceScanWorkflow"
    assert desc.role_arn == f"arn:aws:iam::{ACCOUNT}:role/EventBridgeSchedulerRole"
    body = json.loads(desc.body)
    assert body["tenantId"] == "t1"
    assert body["workflowType"] == "daily-scan"
    assert body["parameters"] == {"depth": "full"}
    assert body["metadata"]["scheduledExecution"] is True
    assert body["metadata"]["scheduleId"] == "s-1"
    assert "triggeredAt" in body["metadata"]
    assert '"tenantId":"t1"' in desc.body


async def test_resolve_function(resolver):
    desc = await resolver.resolve(Target.function("scan-environment"), "t1", "nightly", {})
    assert desc.arn == f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:scan-environment"
    body = json.loads(desc.body)
    assert body["scheduleType"] == "nightly"
    assert body["metadata"]["scheduledExecution"] is True


async def test_resolve_topic(resolver):
    desc = await resolver.resolve(Target.topic("alerts"), "t1", "digest", {"a": 1}, schedule_id="s-2")
    assert desc.arn == f"arn:aws:sns:us-east-1:{ACCOUNT}:alerts"
    body = json.loads(desc.body)
    assert body == {
        "tenantId": "t1",
        "scheduleType": "digest",
        "parameters": {"a": 1},
        "scheduleId": "s-2",
        "triggeredAt": body["triggeredAt"],
    }
    assert desc.to_scheduler_target() == {"Arn": desc.arn, "RoleArn": desc.role_arn, "Input": desc.body}


async def test_unsupported_target_makes_no_calls(resolver, clients):
    with pytest.raises(ServiceError) as exc_info:
        await resolver.resolve(Target(type="queue"), "t1", "x", {})
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_TARGET
    assert not exc_info.value.retryable
    clients.sts.get_caller_identity.assert_not_called()


async def test_partition_and_region_come_from_settings(clients, resilience):
    settings = Settings(aws_partition="aws-us-gov", aws_region="us-gov-west-1", account_id="111")
    resolver = TargetResolver(NamespaceIdentity(clients.sts, resilience, settings), settings)
    assert await resolver.topic_arn("t") == "arn:aws-us-gov:sns:us-gov-west-1:111:t"


# ── Reverse mapping ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("arn,kind,name", [
    (f"arn:aws:states:us-east-1:{ACCOUNT}:stateMachine:Wf", TargetType.WORKFLOW, "Wf"),
    (f"arn:aws:lambda:us-east-1:{ACCOUNT}:function:fn", TargetType.FUNCTION, "fn"),
    (f"arn:aws:sns:us-east-1:{ACCOUNT}:alerts", TargetType.TOPIC, "alerts"),
])
def test_target_from_arn(arn, kind, name):
    target = target_from_arn(arn)
    assert target.kind == kind
    assert target.name == name


def test_target_from_unknown_arn():
    assert target_from_arn("arn:aws:sqs:us-east-1:1:q") is None


def test_parse_payload():
    meta = parse_payload(json.dumps({
        "tenantId": "t1", "workflowType": "scan", "parameters": {"k": "v"},
        "metadata": {"scheduleId": "s-1"},
    }))
    assert meta == {"tenantId": "t1", "scheduleType": "scan", "parameters": {"k": "v"}, "scheduleId": "s-1"}
    assert parse_payload("not json") == {}
    assert parse_payload(None)["tenantId"] is None
