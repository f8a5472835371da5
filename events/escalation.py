"""Violation escalation: incident workflow for severe findings, notification always."""

from __future__ import annotations

import logging
from typing import Any

from core.errors import ServiceError
from events.dispatch import Notifier, WorkflowLauncher, workflow_name_for
from events.models import Severity, Violation

logger = logging.getLogger(__name__)

ESCALATE_AT = frozenset({Severity.HIGH, Severity.CRITICAL})
INCIDENT_WORKFLOW_TYPE = "incident-response"


class EscalationPolicy:
    def __init__(self, launcher: WorkflowLauncher, notifier: Notifier):
        self._launcher = launcher
        self._notifier = notifier

    async def handle(self, violation: Violation) -> dict[str, Any]:
        result: dict[str, Any] = {"severity": violation.severity.value, "notified": False}

        if violation.severity in ESCALATE_AT:
            execution = await self._launcher.start(
                workflow_name_for(INCIDENT_WORKFLOW_TYPE),
                {
                    "tenantId": violation.tenant_id,
                    "incidentType": "compliance-violation",
                    "severity": violation.severity.value,
                    "findingId": violation.finding_id,
                },
                INCIDENT_WORKFLOW_TYPE,
            )
            result["incidentExecutionArn"] = execution["executionArn"]
            logger.info(
                "Incident response triggered",
                extra={"tenant_id": violation.tenant_id, "severity": violation.severity.value,
                       "finding_id": violation.finding_id},
            )

        try:
            await self._notifier.publish(
                f"Compliance Violation Detected - {violation.severity.value}",
                violation.description,
            )
            result["notified"] = True
        except ServiceError as err:
            logger.warning(
                "Violation notification failed",
                extra={"tenant_id": violation.tenant_id, "code": err.code, "error": err.message},
            )
        return result
