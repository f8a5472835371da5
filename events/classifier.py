"""Event classification: raw platform event -> ClassifiedEvent.

Routing is decided here, once, on ``(source, type)``; everything after
this point works with a typed variant.
"""

from __future__ import annotations

from typing import Any

from core.config import Settings
from events.models import (
    ClassifiedEvent,
    PlatformEvent,
    ResourceCheck,
    ScheduledWorkflow,
    Unrecognized,
    ViolationDetected,
    WorkflowRequest,
)

SCHEDULER_SOURCES = frozenset({"aws.scheduler", "aws.events"})

STORAGE_CHECK = "storage-bucket-check"
IDENTITY_CHECK = "identity-compliance-check"
COMPUTE_CHECK = "compute-security-check"

_STORAGE_TYPES = frozenset({"S3 Bucket Created", "S3 Bucket Policy Changed"})
_IDENTITY_TYPES = frozenset({"IAM User Created", "IAM Role Created", "IAM Policy Changed"})
_EC2_STATE_CHANGE = "EC2 Instance State-change Notification"
_SECURITY_GROUP_CHANGE = "Security Group Rule Changed"

# custom application event type -> workflow type
_WORKFLOW_REQUESTS = {
    "manual-scan": "compliance-scan",
    "manual-remediation": "remediation",
}
_VIOLATION_TYPES = frozenset({"violation-detected", "compliance-violation-detected"})

UNKNOWN_TENANT = "unknown"


def tenant_of(event: PlatformEvent) -> str:
    return event.detail.get("tenantId") or event.account or UNKNOWN_TENANT


def _parameters(detail: dict[str, Any]) -> dict[str, Any]:
    params = detail.get("parameters")
    return params if isinstance(params, dict) else {}


def _forwarded(detail: dict[str, Any]) -> dict[str, Any]:
    # requests without a parameters object pass their whole detail through
    params = detail.get("parameters")
    return params if isinstance(params, dict) else detail


def _resource_check(event: PlatformEvent) -> ResourceCheck | None:
    detail = event.detail

    if event.source == "aws.s3" and event.type in _STORAGE_TYPES:
        bucket = detail.get("bucket") or {}
        return ResourceCheck(
            check_type=STORAGE_CHECK,
            parameters={
                "bucketName": bucket.get("name") if isinstance(bucket, dict) else None,
                "eventType": event.type,
                "accountId": event.account,
            },
        )

    if event.source == "aws.iam" and event.type in _IDENTITY_TYPES:
        return ResourceCheck(
            check_type=IDENTITY_CHECK,
            parameters={
                "resourceArn": detail.get("resourceArn"),
                "eventType": event.type,
                "accountId": event.account,
            },
        )

    if event.source == "aws.ec2":
        if event.type == _EC2_STATE_CHANGE and detail.get("state") == "running":
            return ResourceCheck(
                check_type=COMPUTE_CHECK,
                parameters={
                    "instanceId": detail.get("instance-id"),
                    "eventType": event.type,
                    "accountId": event.account,
                },
            )
        if event.type == _SECURITY_GROUP_CHANGE:
            return ResourceCheck(
                check_type=COMPUTE_CHECK,
                parameters={
                    "groupId": detail.get("groupId"),
                    "eventType": event.type,
                    "accountId": event.account,
                },
            )

    return None


def classify(event: PlatformEvent, settings: Settings) -> ClassifiedEvent:
    tenant_id = tenant_of(event)

    if event.source in SCHEDULER_SOURCES and event.detail.get("workflowType"):
        return ScheduledWorkflow(
            workflow_type=event.detail["workflowType"],
            tenant_id=tenant_id,
            parameters=_parameters(event.detail),
        )

    check = _resource_check(event)
    if check is not None:
        return check

    if event.source == settings.event_source:
        if event.type in _WORKFLOW_REQUESTS:
            return WorkflowRequest(
                workflow_type=_WORKFLOW_REQUESTS[event.type],
                tenant_id=tenant_id,
                parameters=_forwarded(event.detail),
            )
        if event.type in _VIOLATION_TYPES:
            return ViolationDetected(tenant_id=tenant_id, detail=event.detail)

    return Unrecognized(source=event.source, type=event.type)
