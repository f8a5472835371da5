"""Schedule data models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_IDENT = r"^[a-zA-Z0-9_-]+$"


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TargetType(str, Enum):
    WORKFLOW = "workflow"
    FUNCTION = "function"
    TOPIC = "topic"


# Target type spellings used by earlier clients
_TYPE_ALIASES = {
    "step-functions": TargetType.WORKFLOW.value,
    "stepfunctions": TargetType.WORKFLOW.value,
    "lambda": TargetType.FUNCTION.value,
    "sns": TargetType.TOPIC.value,
}

_NAME_FIELDS = {
    TargetType.WORKFLOW: "workflow_name",
    TargetType.FUNCTION: "function_name",
    TargetType.TOPIC: "topic_name",
}


class Target(ApiModel):
    """Dispatch destination: exactly one name field, matching ``type``.

    Unknown types are kept as-is; the resolver rejects them.
    """
    type: str
    workflow_name: str | None = Field(None, max_length=80)
    function_name: str | None = Field(None, max_length=140)
    topic_name: str | None = Field(None, max_length=256)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if isinstance(data.get("type"), str):
                data["type"] = _TYPE_ALIASES.get(data["type"].lower(), data["type"])
            if "stateMachineName" in data and not data.get("workflowName"):
                data["workflowName"] = data.pop("stateMachineName")
        return data

    @model_validator(mode="after")
    def check_single_name(self):
        kind = self.kind
        if kind is None:
            return self
        wanted = _NAME_FIELDS[kind]
        if not getattr(self, wanted):
            raise ValueError(f"Target type '{kind.value}' requires '{to_camel(wanted)}'")
        extra = [to_camel(f) for f in _NAME_FIELDS.values() if f != wanted and getattr(self, f)]
        if extra:
            raise ValueError(f"Target type '{kind.value}' must not set {', '.join(extra)}")
        return self

    @property
    def kind(self) -> TargetType | None:
        try:
            return TargetType(self.type)
        except ValueError:
            return None

    @property
    def name(self) -> str | None:
        kind = self.kind
        return getattr(self, _NAME_FIELDS[kind]) if kind else None

    @classmethod
    def workflow(cls, name: str) -> "Target":
        return cls(type=TargetType.WORKFLOW.value, workflow_name=name)

    @classmethod
    def function(cls, name: str) -> "Target":
        return cls(type=TargetType.FUNCTION.value, function_name=name)

    @classmethod
    def topic(cls, name: str) -> "Target":
        return cls(type=TargetType.TOPIC.value, topic_name=name)


class ScheduleRequest(ApiModel):
    """Body of create/update: a Schedule minus its identity fields."""
    schedule_type: str = Field(min_length=1, max_length=100, pattern=_IDENT)
    tenant_id: str = Field(min_length=1, max_length=100, pattern=_IDENT)
    cron_expression: str = Field(min_length=1)
    timezone: str = "UTC"
    enabled: bool = True
    description: str | None = Field(None, max_length=500)
    target: Target
    parameters: dict[str, Any] = {}
    flexible_window_minutes: int = Field(
        15, ge=1, le=1440, validation_alias="flexibleTimeWindowMinutes"
    )
    created_by: str | None = Field(None, max_length=100)

    @field_validator("timezone", mode="before")
    @classmethod
    def default_timezone(cls, value: Any) -> Any:
        return value or "UTC"

    @model_validator(mode="before")
    @classmethod
    def accept_window_names(cls, data: Any) -> Any:
        # both the short and the long window spelling are accepted on input
        if isinstance(data, dict):
            data = dict(data)
            for key in ("flexibleWindowMinutes", "flexible_window_minutes"):
                if key in data and "flexibleTimeWindowMinutes" not in data:
                    data["flexibleTimeWindowMinutes"] = data.pop(key)
        return data


class ScheduleStatus(str, Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class Schedule(ApiModel):
    schedule_id: str
    schedule_name: str
    schedule_type: str
    tenant_id: str
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool
    description: str | None = None
    flexible_window_minutes: int = 15
    target: Target
    parameters: dict[str, Any] = {}
    next_execution: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    @property
    def status(self) -> ScheduleStatus:
        return ScheduleStatus.ENABLED if self.enabled else ScheduleStatus.DISABLED


class ScheduleListRequest(ApiModel):
    tenant_id: str | None = Field(None, max_length=100, pattern=_IDENT)
    schedule_type: str | None = Field(None, max_length=100, pattern=_IDENT)
    status: ScheduleStatus | None = None
    limit: int = Field(50, ge=1, le=100)
    next_token: str | None = None


class ScheduleListResult(ApiModel):
    schedules: list[Schedule]
    next_token: str | None = None


class DeleteResult(ApiModel):
    deleted: bool
    schedule_id: str
    message: str
