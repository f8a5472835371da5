"""Event data models: inbound platform events, their classification, and processing records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.errors import ServiceError

_IDENT = r"^[a-zA-Z0-9_-]+$"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Inbound ──────────────────────────────────────────────────────────────────

class PlatformEvent(BaseModel):
    """An event as delivered by the bus. ``detail-type`` and ``type`` are interchangeable."""
    id: str | None = None
    source: str
    type: str = ""
    detail: dict[str, Any] = {}
    time: str | None = None
    account: str | None = None
    region: str | None = None
    resources: list[str] = []

    @model_validator(mode="before")
    @classmethod
    def accept_detail_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and "detail-type" in data and not data.get("type"):
            data = dict(data)
            data["type"] = data.pop("detail-type")
        return data

    @field_validator("detail", mode="before")
    @classmethod
    def detail_or_empty(cls, value: Any) -> Any:
        return value or {}


# ── Classification ───────────────────────────────────────────────────────────
# Closed set of outcomes; the router matches on ``kind``.

class ScheduledWorkflow(BaseModel):
    kind: Literal["scheduled_workflow"] = "scheduled_workflow"
    workflow_type: str
    tenant_id: str
    parameters: dict[str, Any] = {}


class ResourceCheck(BaseModel):
    kind: Literal["resource_check"] = "resource_check"
    check_type: str
    parameters: dict[str, Any] = {}


class WorkflowRequest(BaseModel):
    kind: Literal["workflow_request"] = "workflow_request"
    workflow_type: str
    tenant_id: str
    parameters: dict[str, Any] = {}


class ViolationDetected(BaseModel):
    kind: Literal["violation_detected"] = "violation_detected"
    tenant_id: str
    detail: dict[str, Any] = {}


class Unrecognized(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    source: str
    type: str


ClassifiedEvent = Union[ScheduledWorkflow, ResourceCheck, WorkflowRequest, ViolationDetected, Unrecognized]


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Violation(ApiModel):
    tenant_id: str
    severity: Severity = Severity.MEDIUM
    finding_id: str | None = None
    description: str = "Compliance violation detected"

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value: Any) -> Any:
        if value is None or value == "":
            return Severity.MEDIUM
        return value.upper() if isinstance(value, str) else value

    @classmethod
    def from_detail(cls, tenant_id: str, detail: dict[str, Any]) -> Violation:
        severity = detail.get("severity")
        if severity not in (None, "") and str(severity).upper() not in Severity.__members__:
            raise ServiceError.validation(f"Invalid severity: {severity}", severity=severity)
        return cls(
            tenant_id=detail.get("tenantId") or tenant_id,
            severity=severity,
            finding_id=detail.get("findingId"),
            description=detail.get("description") or "Compliance violation detected",
        )


# ── Processing record ────────────────────────────────────────────────────────

class EventStatus(str, Enum):
    TRIGGERED = "TRIGGERED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({EventStatus.COMPLETED, EventStatus.FAILED})


class ComplianceEvent(ApiModel):
    event_id: str
    event_type: str
    tenant_id: str
    status: EventStatus
    triggered_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    source: str
    correlation_id: str | None = None
    parameters: dict[str, Any] = {}
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: EventStatus, *, result: Any = None, error: str | None = None) -> None:
        """Move to *status*. COMPLETED and FAILED are final."""
        if self.is_terminal:
            raise ServiceError.conflict(
                f"Event {self.event_id} is already {self.status.value}"
            )
        if status == EventStatus.TRIGGERED and self.status != EventStatus.TRIGGERED:
            raise ServiceError.conflict(
                f"Event {self.event_id} cannot go back to TRIGGERED"
            )
        self.status = status
        if status in TERMINAL_STATUSES:
            self.completed_at = _now()
            self.result = result
            self.error = error


# ── Manual trigger / history ─────────────────────────────────────────────────

class EventProcessorRequest(ApiModel):
    event_type: str = Field(min_length=1, max_length=100, pattern=_IDENT)
    tenant_id: str = Field(min_length=1, max_length=100, pattern=_IDENT)
    parameters: dict[str, Any] = {}
    triggered_by: str | None = Field(None, max_length=100)
    process_immediately: bool = False


class EventProcessorResponse(ApiModel):
    event_id: str
    event_type: str
    tenant_id: str
    status: EventStatus
    triggered_at: datetime
    completed_at: datetime | None = None
    correlation_id: str | None = None
    result: Any = None
    error: str | None = None

    @classmethod
    def from_event(cls, event: ComplianceEvent) -> EventProcessorResponse:
        return cls(**event.model_dump(include=set(cls.model_fields)))


class EventHistoryRequest(ApiModel):
    tenant_id: str | None = Field(None, max_length=100, pattern=_IDENT)
    event_type: str | None = Field(None, max_length=100)
    status: EventStatus | None = None
    limit: int = Field(50, ge=1, le=100)
    next_token: str | None = None


class EventHistoryResult(ApiModel):
    events: list[ComplianceEvent]
    next_token: str | None = None
