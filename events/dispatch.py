"""Outbound effects of event routing: workflows, compliance checks, notifications, bus publishes."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from core.aws import call_aws
from core.config import Settings
from core.errors import ServiceError
from core.resilience import ResilienceContext
from scheduler.models import Target
from scheduler.targets import TargetResolver, dumps, utc_now_iso

logger = logging.getLogger(__name__)

WORKFLOW_NAMES = {
    "compliance-scan": "ComplianceScanWorkflow",
    "remediation": "RemediationWorkflow",
    "compliance-assessment": "ComplianceAssessmentWorkflow",
    "incident-response": "IncidentResponseWorkflow",
    "audit-pack-generation": "AuditPackGenerationWorkflow",
    "continuous-monitoring": "ContinuousMonitoringWorkflow",
}

_SUBJECT_MAX = 100
DEFAULT_WORKFLOW_TYPE = "compliance-scan"


def workflow_name_for(workflow_type: str) -> str:
    """Map a workflow type to its state machine; unknown types run the scan workflow."""
    name = WORKFLOW_NAMES.get(workflow_type)
    if name is None:
        logger.warning(
            "Unknown workflow type, falling back to the compliance scan",
            extra={"workflow_type": workflow_type},
        )
        return WORKFLOW_NAMES[DEFAULT_WORKFLOW_TYPE]
    return name


def execution_name(prefix: str) -> str:
    # execution names are capped at 80 characters
    return f"{prefix[:40]}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class WorkflowLauncher:
    """Starts workflow executions through the ``workflow`` breaker."""

    def __init__(self, client: Any, resolver: TargetResolver,
                 resilience: ResilienceContext, settings: Settings):
        self._client = client
        self._resolver = resolver
        self._resilience = resilience
        self._timeout = settings.call_timeout_seconds

    async def start(self, workflow_name: str, payload: dict[str, Any], prefix: str) -> dict[str, Any]:
        arn = await self._resolver.workflow_arn(workflow_name)
        name = execution_name(prefix)
        response = await self._resilience.call(
            "workflow",
            lambda: call_aws(
                self._client.start_execution, "StartExecution", self._timeout,
                stateMachineArn=arn, name=name, input=dumps(payload),
            ),
        )
        logger.info(
            "Workflow execution started",
            extra={"workflow": workflow_name, "execution_name": name,
                   "execution_arn": response.get("executionArn")},
        )
        return {"executionArn": response.get("executionArn"), "executionName": name,
                "workflowName": workflow_name}

    async def launch(self, workflow_type: str, tenant_id: str,
                     parameters: dict[str, Any], correlation_id: str | None) -> dict[str, Any]:
        """Start the workflow for an event-driven request."""
        workflow_name = workflow_name_for(workflow_type)
        payload = {
            "tenantId": tenant_id,
            "workflowType": workflow_type,
            "parameters": parameters,
            "metadata": {
                "eventTriggered": True,
                "triggeredAt": utc_now_iso(),
                "correlationId": correlation_id,
            },
        }
        return await self.start(workflow_name, payload, workflow_type)

    async def launch_scheduled(self, workflow_type: str, tenant_id: str,
                               parameters: dict[str, Any]) -> dict[str, Any]:
        """Start the workflow for a timer firing, with the same payload a schedule carries."""
        workflow_name = workflow_name_for(workflow_type)
        descriptor = await self._resolver.resolve(
            Target.workflow(workflow_name), tenant_id, workflow_type, parameters
        )
        return await self.start(workflow_name, descriptor.payload, workflow_type)


class ComplianceCheckInvoker:
    """Fire-and-forget invocation of the compliance-check function."""

    def __init__(self, client: Any, resolver: TargetResolver,
                 resilience: ResilienceContext, settings: Settings):
        self._client = client
        self._resolver = resolver
        self._resilience = resilience
        self._function = settings.compliance_check_function
        self._timeout = settings.call_timeout_seconds

    async def invoke(self, check_type: str, parameters: dict[str, Any],
                     correlation_id: str | None) -> dict[str, Any]:
        arn = await self._resolver.function_arn(self._function)
        payload = {
            "checkType": check_type,
            "parameters": parameters,
            "eventTriggered": True,
            "correlationId": correlation_id,
        }
        response = await self._resilience.call(
            "function",
            lambda: call_aws(
                self._client.invoke, "Invoke", self._timeout,
                FunctionName=arn, InvocationType="Event",
                Payload=json.dumps(payload).encode(),
            ),
        )
        logger.info("Compliance check invoked",
                    extra={"check_type": check_type, "function": self._function})
        return {"checkType": check_type, "statusCode": response.get("StatusCode")}


class Notifier:
    def __init__(self, client: Any, resolver: TargetResolver,
                 resilience: ResilienceContext, settings: Settings):
        self._client = client
        self._resolver = resolver
        self._resilience = resilience
        self._topic = settings.notification_topic
        self._timeout = settings.call_timeout_seconds

    async def publish(self, subject: str, message: str) -> str | None:
        """Publish to the notification topic; returns the message id."""
        arn = await self._resolver.topic_arn(self._topic)
        response = await self._resilience.call(
            "notification",
            lambda: call_aws(
                self._client.publish, "Publish", self._timeout,
                TopicArn=arn, Subject=subject[:_SUBJECT_MAX], Message=message,
            ),
        )
        return response.get("MessageId")


class EventPublisher:
    """Puts custom application events on the bus."""

    def __init__(self, client: Any, resilience: ResilienceContext, settings: Settings):
        self._client = client
        self._resilience = resilience
        self._source = settings.event_source
        self._timeout = settings.call_timeout_seconds

    async def put(self, detail_type: str, detail: dict[str, Any]) -> str | None:
        entry = {"Source": self._source, "DetailType": detail_type, "Detail": dumps(detail)}

        async def _put() -> dict:
            response = await call_aws(self._client.put_events, "PutEvents", self._timeout,
                                      Entries=[entry])
            if response.get("FailedEntryCount", 0) > 0:
                failed = (response.get("Entries") or [{}])[0]
                raise ServiceError.upstream(
                    f"PutEvents rejected the event: {failed.get('ErrorMessage') or failed.get('ErrorCode')}"
                )
            return response

        response = await self._resilience.call("event_bus", _put)
        entries = response.get("Entries") or [{}]
        return entries[0].get("EventId")
