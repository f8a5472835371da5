"""Service error type: one exception carrying a kind, an HTTP status and a retry flag."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNSUPPORTED_TARGET = "unsupported_target"
    UPSTREAM = "upstream"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


# kind -> (http status, default code, retryable)
_KIND_TABLE: dict[ErrorKind, tuple[int, str, bool]] = {
    ErrorKind.VALIDATION:          (400, "VALIDATION_ERROR",    False),
    ErrorKind.NOT_FOUND:           (404, "NOT_FOUND",           False),
    ErrorKind.CONFLICT:            (409, "CONFLICT",            False),
    ErrorKind.UNSUPPORTED_TARGET:  (400, "UNSUPPORTED_TARGET",  False),
    ErrorKind.UPSTREAM:            (502, "UPSTREAM_ERROR",      True),
    ErrorKind.SERVICE_UNAVAILABLE: (503, "SERVICE_UNAVAILABLE", True),
    ErrorKind.TIMEOUT:             (408, "TIMEOUT",             True),
    ErrorKind.INTERNAL:            (500, "INTERNAL_ERROR",      False),
}

# Errors raised because of the request, not because the dependency is unhealthy
CLIENT_SIDE_KINDS = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.NOT_FOUND,
    ErrorKind.CONFLICT,
    ErrorKind.UNSUPPORTED_TARGET,
})

_AWS_CODE_KINDS: dict[str, ErrorKind] = {
    "ResourceNotFoundException": ErrorKind.NOT_FOUND,
    "NotFoundException": ErrorKind.NOT_FOUND,
    "StateMachineDoesNotExist": ErrorKind.NOT_FOUND,
    "ConflictException": ErrorKind.CONFLICT,
    "ResourceAlreadyExistsException": ErrorKind.CONFLICT,
    "ExecutionAlreadyExists": ErrorKind.CONFLICT,
    "ValidationException": ErrorKind.VALIDATION,
    "InvalidParameterException": ErrorKind.VALIDATION,
    "InvalidParameterValueException": ErrorKind.VALIDATION,
    "InvalidArn": ErrorKind.VALIDATION,
    "InvalidExecutionInput": ErrorKind.VALIDATION,
    "InvalidName": ErrorKind.VALIDATION,
}

_AWS_NON_RETRYABLE = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "AuthorizationError",
    "InvalidClientTokenId",
    "ExpiredTokenException",
})


class ServiceError(Exception):
    """The only exception type the core raises on purpose.

    ``kind`` decides the HTTP status and the default retryability;
    ``code`` is the stable machine-readable string shown to API clients.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        status, default_code, default_retryable = _KIND_TABLE[kind]
        self.kind = kind
        self.message = message
        self.status_code = status
        self.code = code or default_code
        self.retryable = default_retryable if retryable is None else retryable
        self.details = details

    def __repr__(self) -> str:
        return f"ServiceError({self.kind.value}, {self.code}, {self.message!r})"

    # ── Constructors ─────────────────────────────────────────────────────────

    @classmethod
    def validation(cls, message: str, **details: Any) -> ServiceError:
        return cls(ErrorKind.VALIDATION, message, details=details or None)

    @classmethod
    def not_found(cls, message: str, code: str | None = None) -> ServiceError:
        return cls(ErrorKind.NOT_FOUND, message, code=code)

    @classmethod
    def conflict(cls, message: str) -> ServiceError:
        return cls(ErrorKind.CONFLICT, message)

    @classmethod
    def unsupported_target(cls, target_type: str) -> ServiceError:
        return cls(ErrorKind.UNSUPPORTED_TARGET, f"Unsupported target type: {target_type}")

    @classmethod
    def upstream(cls, message: str, retryable: bool = True) -> ServiceError:
        return cls(ErrorKind.UPSTREAM, message, retryable=retryable)

    @classmethod
    def unavailable(cls, message: str, code: str | None = None) -> ServiceError:
        return cls(ErrorKind.SERVICE_UNAVAILABLE, message, code=code)

    @classmethod
    def timeout(cls, message: str) -> ServiceError:
        return cls(ErrorKind.TIMEOUT, message)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def wrap(self, prefix: str) -> ServiceError:
        """Return a copy whose message is prefixed, keeping kind/code/retryability."""
        wrapped = ServiceError(
            self.kind,
            f"{prefix}: {self.message}",
            code=self.code,
            retryable=self.retryable,
            details=self.details,
        )
        wrapped.__cause__ = self
        return wrapped

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


def from_aws_error(exc: Exception, operation: str) -> ServiceError:
    """Translate a botocore/timeout exception raised by *operation*."""
    if isinstance(exc, ServiceError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        aws_code = error.get("Code", "Unknown")
        message = f"{operation} failed: {error.get('Message') or aws_code}"
        kind = _AWS_CODE_KINDS.get(aws_code)
        if kind is not None:
            return ServiceError(kind, message, details={"awsCode": aws_code})
        return ServiceError(
            ErrorKind.UPSTREAM,
            message,
            retryable=aws_code not in _AWS_NON_RETRYABLE,
            details={"awsCode": aws_code},
        )

    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError, TimeoutError, asyncio.TimeoutError)):
        return ServiceError.timeout(f"{operation} timed out")

    if isinstance(exc, EndpointConnectionError):
        return ServiceError.upstream(f"{operation} failed: {exc}")

    if isinstance(exc, BotoCoreError):
        return ServiceError.upstream(f"{operation} failed: {exc}", retryable=False)

    return ServiceError(ErrorKind.INTERNAL, f"{operation} failed: {exc}")
