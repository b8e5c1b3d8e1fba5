"""Wires store, resolver, prober, engine and reporters from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fleet.config import settings
from orchestrate.dependency_graph import GraphResolver, ResolvedGraph
from orchestrate.engine import Orchestrator
from orchestrate.fleet_file import load_fleet_file
from orchestrate.health import DryRunHealthChecker, HttpHealthChecker
from orchestrate.process import DryRunProcessController, ProcessController, ProcessControllerClient
from orchestrate.readiness import HealthChecker, ReadinessProber
from orchestrate.reporter import (
    CollectingReporter,
    DatabaseReporter,
    FanoutReporter,
    LoggingReporter,
    ResultReporter,
    WebhookReporter,
)
from orchestrate.store import ConfigStore

logger = logging.getLogger(__name__)


@dataclass
class FleetRuntime:
    store: ConfigStore
    controller: ProcessController
    checker: HealthChecker
    prober: ReadinessProber
    orchestrator: Orchestrator
    events: CollectingReporter
    resolver: GraphResolver = field(init=False)
    # Plan of the last start request; what a profile-less stop targets.
    last_plan: ResolvedGraph | None = None

    def __post_init__(self):
        self.resolver = GraphResolver(self.store)

    async def resolve(self, profile_id: str | None = None) -> ResolvedGraph:
        if profile_id is None and hasattr(self.store, "active_profile"):
            profile_id = await self.store.active_profile()
        plan = await self.resolver.resolve(profile_id)
        if isinstance(self.checker, HttpHealthChecker):
            for service in plan.services.values():
                self.checker.register(service)
        return plan

    async def close(self) -> None:
        await self.prober.close()
        for collaborator in (self.checker, self.controller):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()


def build_runtime(
    dry_run: bool = False,
    fleet_file: str | None = None,
    store: ConfigStore | None = None,
    controller: ProcessController | None = None,
    checker: HealthChecker | None = None,
    persist_events: bool = False,
    extra_reporters: tuple[ResultReporter, ...] = (),
) -> FleetRuntime:
    fleet_file = fleet_file or settings.fleet_file
    if store is None:
        if fleet_file:
            logger.info("Loading fleet definition from %s", fleet_file)
            store = load_fleet_file(fleet_file)
        else:
            from orchestrate.sql_store import SqlConfigStore

            store = SqlConfigStore()

    if controller is None:
        controller = DryRunProcessController() if dry_run else ProcessControllerClient()

    if checker is None:
        if isinstance(controller, DryRunProcessController):
            checker = DryRunHealthChecker(controller)
        else:
            checker = HttpHealthChecker(process_status=getattr(controller, "is_running", None))

    events = CollectingReporter()
    reporters: list[ResultReporter] = [LoggingReporter(), events]
    if persist_events:
        reporters.append(DatabaseReporter())
    if settings.notification_webhook_url:
        reporters.append(WebhookReporter())
    reporters.extend(extra_reporters)

    prober = ReadinessProber(checker, min_interval=settings.min_poll_interval)
    orchestrator = Orchestrator(controller, prober, FanoutReporter(*reporters))
    return FleetRuntime(
        store=store,
        controller=controller,
        checker=checker,
        prober=prober,
        orchestrator=orchestrator,
        events=events,
    )
