"""Shared fixtures: mocked boto3 clients, a fresh ResilienceContext, per-test SQLite."""

from unittest.mock import MagicMock

import pytest

from core.aws import AwsClients
from core.config import Settings
from core.resilience import ResilienceContext, RetryPolicy
from core.services import build_services

ACCOUNT = "123456789012"


async def _no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def settings(tmp_path):
    return Settings(event_store_url=f"sqlite+aiosqlite:///{tmp_path}/events.db")


@pytest.fixture
def resilience():
    return ResilienceContext(retry=RetryPolicy(base_delay=0, sleep=_no_sleep))


@pytest.fixture
def clients():
    scheduler = MagicMock(name="scheduler")
    scheduler.create_schedule.return_value = {"ScheduleArn": "arn:aws:scheduler:::schedule/x"}
    scheduler.update_schedule.return_value = {"ScheduleArn": "arn:aws:scheduler:::schedule/x"}
    scheduler.delete_schedule.return_value = {}

    sts = MagicMock(name="sts")
    sts.get_caller_identity.return_value = {"Account": ACCOUNT}

    stepfunctions = MagicMock(name="stepfunctions")
    stepfunctions.start_execution.return_value = {
        "executionArn": f"arn:aws:states:us-east-1:{ACCOUNT}:execution:wf:exec-1",
    }

    lambda_ = MagicMock(name="lambda")
    lambda_.invoke.return_value = {"StatusCode": 202}

    sns = MagicMock(name="sns")
    sns.publish.return_value = {"MessageId": "msg-1"}

    events = MagicMock(name="events")
    events.put_events.return_value = {"FailedEntryCount": 0, "Entries": [{"EventId": "bus-1"}]}

    return AwsClients(
        scheduler=scheduler,
        sts=sts,
        stepfunctions=stepfunctions,
        lambda_=lambda_,
        sns=sns,
        events=events,
    )


@pytest.fixture
async def services(settings, clients, resilience):
    svc = build_services(settings, clients=clients, resilience=resilience)
    await svc.event_store.init()
    yield svc
    await svc.event_store.close()
