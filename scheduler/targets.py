"""Target resolution: turn a Target into a concrete ARN plus serialized payload."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from core.aws import call_aws
from core.config import Settings
from core.errors import ServiceError
from core.resilience import ResilienceContext
from scheduler.models import Target, TargetType

logger = logging.getLogger(__name__)

_ARN_PATTERNS = {
    TargetType.WORKFLOW: re.compile(r"^arn:[^:]+:states:[^:]*:[^:]*:stateMachine:(?P<name>.+)$"),
    TargetType.FUNCTION: re.compile(r"^arn:[^:]+:lambda:[^:]*:[^:]*:function:(?P<name>[^:]+)"),
    TargetType.TOPIC:    re.compile(r"^arn:[^:]+:sns:[^:]*:[^:]*:(?P<name>.+)$"),
}


def dumps(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class NamespaceIdentity:
    """Account id of the caller, looked up once through STS and memoized."""

    def __init__(self, sts_client: Any, resilience: ResilienceContext, settings: Settings):
        self._sts = sts_client
        self._resilience = resilience
        self._timeout = settings.call_timeout_seconds
        self._account_id = settings.account_id

    async def account_id(self) -> str:
        if self._account_id is None:
            identity = await self._resilience.call(
                "identity",
                lambda: call_aws(self._sts.get_caller_identity, "GetCallerIdentity", self._timeout),
            )
            self._account_id = identity["Account"]
            logger.info("Resolved account identity", extra={"account_id": self._account_id})
        return self._account_id


@dataclass
class InvocationDescriptor:
    target_type: TargetType
    arn: str
    role_arn: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def body(self) -> str:
        return dumps(self.payload)

    def to_scheduler_target(self) -> dict[str, str]:
        return {"Arn": self.arn, "RoleArn": self.role_arn, "Input": self.body}


class TargetResolver:
    """Expands Target names into ARNs and builds each target type's payload."""

    def __init__(self, identity: NamespaceIdentity, settings: Settings):
        self.identity = identity
        self._settings = settings

    # ── ARN helpers ──────────────────────────────────────────────────────────

    def _prefix(self, service: str, account: str) -> str:
        return f"arn:{self._settings.aws_partition}:{service}:{self._settings.aws_region}:{account}"

    async def workflow_arn(self, name: str) -> str:
        return f"{self._prefix('states', await self.identity.account_id())}:stateMachine:{name}"

    async def function_arn(self, name: str) -> str:
        return f"{self._prefix('lambda', await self.identity.account_id())}:function:{name}"

    async def topic_arn(self, name: str) -> str:
        return f"{self._prefix('sns', await self.identity.account_id())}:{name}"

    async def role_arn(self) -> str:
        account = await self.identity.account_id()
        return f"arn:{self._settings.aws_partition}:iam::{account}:role/{self._settings.scheduler_role_name}"

    # ── Resolution ───────────────────────────────────────────────────────────

    async def resolve(
        self,
        target: Target,
        tenant_id: str,
        schedule_type: str,
        parameters: dict[str, Any] | None = None,
        schedule_id: str | None = None,
    ) -> InvocationDescriptor:
        """Raise UNSUPPORTED_TARGET for unknown types before any identity lookup."""
        kind = target.kind
        if kind is None:
            raise ServiceError.unsupported_target(target.type)

        parameters = parameters or {}
        triggered_at = utc_now_iso()

        if kind == TargetType.WORKFLOW:
            arn = await self.workflow_arn(target.workflow_name)
            payload = {
                "tenantId": tenant_id,
                "workflowType": schedule_type,
                "parameters": parameters,
                "metadata": {
                    "scheduledExecution": True,
                    "scheduleId": schedule_id,
                    "triggeredAt": triggered_at,
                },
            }
        elif kind == TargetType.FUNCTION:
            arn = await self.function_arn(target.function_name)
            payload = {
                "tenantId": tenant_id,
                "scheduleType": schedule_type,
                "parameters": parameters,
                "metadata": {
                    "scheduledExecution": True,
                    "scheduleId": schedule_id,
                    "triggeredAt": triggered_at,
                },
            }
        else:
            arn = await self.topic_arn(target.topic_name)
            payload = {
                "tenantId": tenant_id,
                "scheduleType": schedule_type,
                "parameters": parameters,
                "scheduleId": schedule_id,
                "triggeredAt": triggered_at,
            }

        return InvocationDescriptor(kind, arn, await self.role_arn(), payload)


def target_from_arn(arn: str) -> Target | None:
    """Rebuild a Target from a scheduler target ARN, or None if unrecognized."""
    for kind, pattern in _ARN_PATTERNS.items():
        match = pattern.match(arn or "")
        if match:
            return Target(type=kind.value, **{f"{kind.value}_name": match.group("name")})
    return None


def parse_payload(body: str | None) -> dict[str, Any]:
    """Decode a stored target Input and flatten the metadata we embed.

    Returns tenantId / scheduleType / parameters / scheduleId when present.
    """
    try:
        payload = json.loads(body or "{}")
    except ValueError:
        return {}
    if not isinstance(payload, dict):
        return {}
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    return {
        "tenantId": payload.get("tenantId"),
        "scheduleType": payload.get("scheduleType") or payload.get("workflowType"),
        "parameters": payload.get("parameters") if isinstance(payload.get("parameters"), dict) else {},
        "scheduleId": payload.get("scheduleId") or metadata.get("scheduleId"),
    }
