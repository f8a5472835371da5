"""EventRouter: received -> classified -> dispatched -> completed | failed.

Platform-delivered events never raise out of ``process`` (the bus would
redeliver them); manual triggers run with ``propagate_errors=True`` so the
caller sees the failure. Either way the ComplianceEvent record ends up
COMPLETED or FAILED.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from core.config import Settings
from core.errors import ErrorKind, ServiceError
from events.classifier import classify, tenant_of
from events.dispatch import ComplianceCheckInvoker, EventPublisher, WorkflowLauncher
from events.escalation import EscalationPolicy
from events.models import (
    ClassifiedEvent,
    ComplianceEvent,
    EventHistoryRequest,
    EventHistoryResult,
    EventProcessorRequest,
    EventProcessorResponse,
    EventStatus,
    PlatformEvent,
    ResourceCheck,
    ScheduledWorkflow,
    Unrecognized,
    Violation,
    ViolationDetected,
    WorkflowRequest,
)
from store.event_store import EventStore

logger = logging.getLogger(__name__)


class EventRouter:
    def __init__(
        self,
        settings: Settings,
        store: EventStore,
        launcher: WorkflowLauncher,
        checks: ComplianceCheckInvoker,
        escalation: EscalationPolicy,
        publisher: EventPublisher,
    ):
        self._settings = settings
        self._store = store
        self._launcher = launcher
        self._checks = checks
        self._escalation = escalation
        self._publisher = publisher

    # ── Processing ───────────────────────────────────────────────────────────

    async def process(
        self,
        raw: dict[str, Any],
        correlation_id: str | None = None,
        propagate_errors: bool = False,
    ) -> ComplianceEvent | None:
        """Classify and dispatch one inbound event.

        Returns the final record, or None when the event is malformed or
        unrecognized (nothing is recorded for those).
        """
        try:
            event = PlatformEvent.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Malformed platform event dropped", extra={"error": str(exc)})
            if propagate_errors:
                raise ServiceError.validation("Malformed platform event") from exc
            return None

        classified = classify(event, self._settings)
        if isinstance(classified, Unrecognized):
            logger.info("Unrecognized event dropped",
                        extra={"source": event.source, "event_type": event.type})
            return None

        record = await self._start_record(event, classified, correlation_id)
        if record.is_terminal:
            logger.info("Event already processed, skipping",
                        extra={"event_id": record.event_id, "status": record.status.value})
            return record

        logger.info("Event classified",
                    extra={"event_id": record.event_id, "kind": classified.kind,
                           "source": event.source, "event_type": event.type})
        try:
            result = await self._dispatch(classified, correlation_id)
        except Exception as exc:
            err = exc if isinstance(exc, ServiceError) else ServiceError(
                ErrorKind.INTERNAL, f"Event processing failed: {exc}"
            )
            record.transition(EventStatus.FAILED, error=err.message)
            await self._store.save(record)
            logger.error(
                "Event processing failed",
                extra={"event_id": record.event_id, "code": err.code, "error": err.message},
                exc_info=not isinstance(exc, ServiceError),
            )
            if propagate_errors:
                if err is exc:
                    raise
                raise err from exc
            return record

        record.transition(EventStatus.COMPLETED, result=result)
        await self._store.save(record)
        logger.info("Event processed", extra={"event_id": record.event_id, "kind": classified.kind})
        return record

    async def _start_record(
        self,
        event: PlatformEvent,
        classified: ClassifiedEvent,
        correlation_id: str | None,
    ) -> ComplianceEvent:
        # events we publish ourselves carry their record id in the detail
        event_id = event.detail.get("eventId") or event.id or str(uuid.uuid4())
        record = await self._store.get(event_id)
        if record is not None and record.is_terminal:
            return record

        if record is None:
            params = event.detail.get("parameters")
            record = ComplianceEvent(
                event_id=event_id,
                event_type=event.type or classified.kind,
                tenant_id=tenant_of(event),
                status=EventStatus.PROCESSING,
                source=event.source,
                correlation_id=correlation_id,
                parameters=params if isinstance(params, dict) else {},
            )
        elif record.status == EventStatus.TRIGGERED:
            record.transition(EventStatus.PROCESSING)
        await self._store.save(record)
        return record

    async def _dispatch(self, classified: ClassifiedEvent, correlation_id: str | None) -> dict[str, Any]:
        if isinstance(classified, ScheduledWorkflow):
            return await self._launcher.launch_scheduled(
                classified.workflow_type, classified.tenant_id, classified.parameters
            )
        if isinstance(classified, ResourceCheck):
            return await self._checks.invoke(
                classified.check_type, classified.parameters, correlation_id
            )
        if isinstance(classified, WorkflowRequest):
            return await self._launcher.launch(
                classified.workflow_type, classified.tenant_id,
                classified.parameters, correlation_id,
            )
        if isinstance(classified, ViolationDetected):
            violation = Violation.from_detail(classified.tenant_id, classified.detail)
            return await self._escalation.handle(violation)
        raise ServiceError(ErrorKind.INTERNAL, f"No dispatcher for {classified.kind}")

    # ── Manual trigger ───────────────────────────────────────────────────────

    async def trigger(
        self,
        request: EventProcessorRequest,
        correlation_id: str | None = None,
    ) -> EventProcessorResponse:
        """Publish a custom event and record it; optionally process it right away."""
        event_id = str(uuid.uuid4())
        triggered_at = datetime.now(timezone.utc)
        detail = {
            "eventId": event_id,
            "tenantId": request.tenant_id,
            "parameters": request.parameters,
            "triggeredBy": request.triggered_by or "manual",
            "triggeredAt": triggered_at.isoformat(),
            "correlationId": correlation_id,
        }
        try:
            await self._publisher.put(request.event_type, detail)
        except ServiceError as err:
            raise err.wrap("Failed to trigger event")

        record = ComplianceEvent(
            event_id=event_id,
            event_type=request.event_type,
            tenant_id=request.tenant_id,
            status=EventStatus.TRIGGERED,
            triggered_at=triggered_at,
            source=self._settings.event_source,
            correlation_id=correlation_id,
            parameters=request.parameters,
        )
        await self._store.save(record)
        logger.info("Event triggered",
                    extra={"event_id": event_id, "event_type": request.event_type,
                           "tenant_id": request.tenant_id})

        if request.process_immediately:
            processed = await self.process(
                {
                    "id": event_id,
                    "source": self._settings.event_source,
                    "detail-type": request.event_type,
                    "detail": detail,
                    "time": detail["triggeredAt"],
                },
                correlation_id,
                propagate_errors=True,
            )
            if processed is not None:
                record = processed

        return EventProcessorResponse.from_event(record)

    # ── History ──────────────────────────────────────────────────────────────

    async def history(self, request: EventHistoryRequest) -> EventHistoryResult:
        offset = 0
        if request.next_token:
            if not request.next_token.isdigit():
                raise ServiceError.validation("Invalid nextToken", nextToken=request.next_token)
            offset = int(request.next_token)
        events, next_offset = await self._store.query(
            tenant_id=request.tenant_id,
            event_type=request.event_type,
            status=request.status,
            limit=request.limit,
            offset=offset,
        )
        return EventHistoryResult(
            events=events,
            next_token=str(next_offset) if next_offset is not None else None,
        )
