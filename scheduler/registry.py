"""ScheduleRegistry: CRUD over cron schedules held by the managed scheduler.

Nothing is stored locally: the external schedule name is derived from the
schedule id, and tenant / type / parameters travel inside the target
payload so ``get`` can rebuild the full Schedule.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from core.aws import call_aws
from core.config import SCHEDULE_GROUP, Settings
from core.errors import ErrorKind, ServiceError
from core.resilience import ResilienceContext
from scheduler.cron import (
    from_scheduler_expression,
    next_fire_time,
    to_scheduler_expression,
    validate_cron,
    validate_timezone,
)
from scheduler.models import (
    DeleteResult,
    Schedule,
    ScheduleListRequest,
    ScheduleListResult,
    ScheduleRequest,
    ScheduleStatus,
)
from scheduler.targets import TargetResolver, parse_payload, target_from_arn

logger = logging.getLogger(__name__)

SCHEDULE_NAME_PREFIX = "compliance-schedule-"
SCHEDULE_NOT_FOUND = "SCHEDULE_NOT_FOUND"
UNKNOWN = "unknown"


def schedule_name(schedule_id: str) -> str:
    return f"{SCHEDULE_NAME_PREFIX}{schedule_id}"


def schedule_id_from_name(name: str) -> str:
    return name[len(SCHEDULE_NAME_PREFIX):] if name.startswith(SCHEDULE_NAME_PREFIX) else name


class ScheduleRegistry:
    def __init__(
        self,
        client: Any,
        resolver: TargetResolver,
        resilience: ResilienceContext,
        settings: Settings,
    ):
        self._client = client
        self._resolver = resolver
        self._resilience = resilience
        self._settings = settings
        self._timeout = settings.call_timeout_seconds

    # ── Public API ───────────────────────────────────────────────────────────

    async def create(self, request: ScheduleRequest) -> Schedule:
        schedule_id = str(uuid.uuid4())
        schedule = await self._put("create", schedule_id, request)
        logger.info(
            "Schedule created",
            extra={"schedule_id": schedule_id, "tenant_id": request.tenant_id,
                   "schedule_type": request.schedule_type},
        )
        return schedule

    async def update(self, schedule_id: str, request: ScheduleRequest) -> Schedule:
        """Full replace of an existing schedule."""
        schedule = await self._put("update", schedule_id, request)
        logger.info("Schedule updated", extra={"schedule_id": schedule_id})
        return schedule

    async def delete(self, schedule_id: str) -> DeleteResult:
        try:
            await self._call(
                "DeleteSchedule", self._client.delete_schedule,
                Name=schedule_name(schedule_id), GroupName=SCHEDULE_GROUP,
            )
        except ServiceError as err:
            raise self._failure(err, "delete", schedule_id)
        logger.info("Schedule deleted", extra={"schedule_id": schedule_id})
        return DeleteResult(
            deleted=True,
            schedule_id=schedule_id,
            message=f"Schedule {schedule_id} deleted successfully",
        )

    async def get(self, schedule_id: str) -> Schedule:
        try:
            raw = await self._call(
                "GetSchedule", self._client.get_schedule,
                Name=schedule_name(schedule_id), GroupName=SCHEDULE_GROUP,
            )
        except ServiceError as err:
            raise self._failure(err, "get", schedule_id)
        return self._from_raw(schedule_id, raw)

    async def list(self, request: ScheduleListRequest) -> ScheduleListResult:
        """Page through the schedule group and filter client-side.

        Pages are fetched until at least ``limit`` schedules match or the
        group is exhausted; the last page is returned whole, so the result
        may hold more than ``limit`` entries.
        """
        semaphore = asyncio.Semaphore(self._settings.list_concurrency)
        matches: list[Schedule] = []
        token = request.next_token

        while True:
            params: dict[str, Any] = {"GroupName": SCHEDULE_GROUP, "MaxResults": request.limit}
            if token:
                params["NextToken"] = token
            try:
                page = await self._call("ListSchedules", self._client.list_schedules, **params)
            except ServiceError as err:
                raise err.wrap("Failed to list schedules")

            ids = [
                schedule_id_from_name(summary["Name"])
                for summary in page.get("Schedules", [])
                if summary.get("Name", "").startswith(SCHEDULE_NAME_PREFIX)
                and (request.status is None or summary.get("State", request.status.value) == request.status.value)
            ]
            fetched = await asyncio.gather(*(self._get_for_list(i, semaphore) for i in ids))
            matches.extend(s for s in fetched if s is not None and _matches(s, request))

            token = page.get("NextToken")
            if not token or len(matches) >= request.limit:
                break

        return ScheduleListResult(schedules=matches, next_token=token)

    # ── Internals ────────────────────────────────────────────────────────────

    async def _put(self, action: str, schedule_id: str, request: ScheduleRequest) -> Schedule:
        # Everything that can be checked locally is checked before the first call out.
        cron = validate_cron(request.cron_expression)
        tz = validate_timezone(request.timezone)
        expression = to_scheduler_expression(cron)
        next_execution = next_fire_time(cron, tz)
        if request.target.kind is None:
            raise ServiceError.unsupported_target(request.target.type)

        description = request.description or (
            f"Automated {request.schedule_type} for tenant {request.tenant_id}"
        )
        try:
            descriptor = await self._resolver.resolve(
                request.target,
                request.tenant_id,
                request.schedule_type,
                request.parameters,
                schedule_id=schedule_id,
            )
            params: dict[str, Any] = {
                "Name": schedule_name(schedule_id),
                "GroupName": SCHEDULE_GROUP,
                "ScheduleExpression": expression,
                "ScheduleExpressionTimezone": tz,
                "Target": descriptor.to_scheduler_target(),
                "FlexibleTimeWindow": {
                    "Mode": "FLEXIBLE",
                    "MaximumWindowInMinutes": request.flexible_window_minutes,
                },
                "State": ScheduleStatus.ENABLED.value if request.enabled else ScheduleStatus.DISABLED.value,
                "Description": description,
            }
            if self._settings.scheduler_kms_key_arn:
                params["KmsKeyArn"] = self._settings.scheduler_kms_key_arn

            if action == "create":
                await self._call("CreateSchedule", self._client.create_schedule, **params)
            else:
                await self._call("UpdateSchedule", self._client.update_schedule, **params)
        except ServiceError as err:
            raise self._failure(err, action, schedule_id if action != "create" else None)

        now = datetime.now(timezone.utc)
        return Schedule(
            schedule_id=schedule_id,
            schedule_name=schedule_name(schedule_id),
            schedule_type=request.schedule_type,
            tenant_id=request.tenant_id,
            cron_expression=from_scheduler_expression(expression),
            timezone=tz,
            enabled=request.enabled,
            description=description,
            flexible_window_minutes=request.flexible_window_minutes,
            target=request.target,
            parameters=request.parameters,
            next_execution=next_execution,
            created_at=now if action == "create" else None,
            updated_at=now,
            created_by=request.created_by,
        )

    async def _call(self, operation: str, method, **kwargs: Any) -> dict:
        return await self._resilience.call(
            "scheduler",
            lambda: call_aws(method, operation, self._timeout, **kwargs),
        )

    async def _get_for_list(self, schedule_id: str, semaphore: asyncio.Semaphore) -> Schedule | None:
        async with semaphore:
            try:
                return await self.get(schedule_id)
            except ServiceError as err:
                logger.warning(
                    "Skipping schedule that could not be loaded",
                    extra={"schedule_id": schedule_id, "code": err.code, "error": err.message},
                )
                return None

    def _failure(self, err: ServiceError, action: str, schedule_id: str | None) -> ServiceError:
        if schedule_id and err.kind == ErrorKind.NOT_FOUND:
            return ServiceError.not_found(f"Schedule {schedule_id} not found", code=SCHEDULE_NOT_FOUND)
        return err.wrap(f"Failed to {action} schedule")

    def _from_raw(self, schedule_id: str, raw: dict) -> Schedule:
        """Rebuild a Schedule from a GetSchedule response."""
        try:
            cron = from_scheduler_expression(raw.get("ScheduleExpression", ""))
            tz = raw.get("ScheduleExpressionTimezone") or "UTC"
            next_execution = next_fire_time(cron, tz)
        except ServiceError as err:
            raise ServiceError(
                ErrorKind.INTERNAL, f"Schedule {schedule_id} could not be parsed: {err.message}"
            ) from err

        raw_target = raw.get("Target") or {}
        target = target_from_arn(raw_target.get("Arn", ""))
        if target is None:
            raise ServiceError(
                ErrorKind.INTERNAL,
                f"Schedule {schedule_id} has an unrecognized target: {raw_target.get('Arn')}",
            )
        meta = parse_payload(raw_target.get("Input"))
        window = raw.get("FlexibleTimeWindow") or {}

        try:
            return Schedule(
                schedule_id=schedule_id,
                schedule_name=raw.get("Name") or schedule_name(schedule_id),
                schedule_type=meta.get("scheduleType") or UNKNOWN,
                tenant_id=meta.get("tenantId") or UNKNOWN,
                cron_expression=cron,
                timezone=tz,
                enabled=raw.get("State", ScheduleStatus.ENABLED.value) == ScheduleStatus.ENABLED.value,
                description=raw.get("Description"),
                flexible_window_minutes=window.get("MaximumWindowInMinutes") or 15,
                target=target,
                parameters=meta.get("parameters") or {},
                next_execution=next_execution,
                created_at=raw.get("CreationDate"),
                updated_at=raw.get("LastModificationDate"),
            )
        except ValidationError as exc:
            raise ServiceError(
                ErrorKind.INTERNAL,
                f"Schedule {schedule_id} has a malformed payload: {exc.error_count()} invalid field(s)",
            ) from exc


def _matches(schedule: Schedule, request: ScheduleListRequest) -> bool:
    if request.tenant_id and schedule.tenant_id != request.tenant_id:
        return False
    if request.schedule_type and schedule.schedule_type != request.schedule_type:
        return False
    if request.status and schedule.status != request.status:
        return False
    return True
