"""API response envelopes. Request bodies reuse the domain models directly."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ErrorInfo(BaseModel):
    message: str
    code: str
    correlationId: str
    timestamp: str = Field(default_factory=_now)
    details: Any = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorInfo

    def body(self) -> dict:
        return self.model_dump(exclude_none=True)


class HealthResponse(BaseModel):
    status: str = "ok"
