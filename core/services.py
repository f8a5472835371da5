"""Process-wide wiring: one ResilienceContext, one set of clients, every component built on them."""

from __future__ import annotations

from dataclasses import dataclass

from core.aws import AwsClients
from core.config import Settings
from core.resilience import ResilienceContext
from events.dispatch import ComplianceCheckInvoker, EventPublisher, Notifier, WorkflowLauncher
from events.escalation import EscalationPolicy
from events.router import EventRouter
from scheduler.registry import ScheduleRegistry
from scheduler.targets import NamespaceIdentity, TargetResolver
from store.event_store import EventStore


@dataclass
class Services:
    settings: Settings
    resilience: ResilienceContext
    registry: ScheduleRegistry
    router: EventRouter
    event_store: EventStore


def build_services(
    settings: Settings,
    clients: AwsClients | None = None,
    resilience: ResilienceContext | None = None,
) -> Services:
    clients = clients or AwsClients.from_settings(settings)
    resilience = resilience or ResilienceContext.from_settings(settings)

    identity = NamespaceIdentity(clients.sts, resilience, settings)
    resolver = TargetResolver(identity, settings)
    launcher = WorkflowLauncher(clients.stepfunctions, resolver, resilience, settings)
    notifier = Notifier(clients.sns, resolver, resilience, settings)
    event_store = EventStore(settings.event_store_url)

    router = EventRouter(
        settings,
        event_store,
        launcher,
        ComplianceCheckInvoker(clients.lambda_, resolver, resilience, settings),
        EscalationPolicy(launcher, notifier),
        EventPublisher(clients.events, resilience, settings),
    )
    registry = ScheduleRegistry(clients.scheduler, resolver, resilience, settings)
    return Services(settings, resilience, registry, router, event_store)
