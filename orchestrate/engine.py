"""Orchestration engine — drives services through a resolved startup order.

One asyncio task per service. A task only suspends while its service is
waiting on dependencies; launch failures and dependency timeouts stay local
to the service and the services that hard-depend on it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from orchestrate.dependency_graph import ResolvedGraph
from orchestrate.errors import (
    DependencyTimeout,
    LaunchError,
    OrchestrationError,
    UnknownService,
)
from orchestrate.models import (
    TERMINAL_PHASES,
    DependencyEdge,
    OrchestrationEvent,
    ServicePhase,
)
from orchestrate.process import ProcessController
from orchestrate.readiness import ReadinessProber
from orchestrate.reporter import LoggingReporter, ResultReporter, format_summary

logger = logging.getLogger(__name__)

CANCELLED_BY_STOP = "CancelledByStop"


@dataclass
class ServiceOutcome:
    service_id: str
    phase: ServicePhase
    reason: str = ""
    error: Exception | None = None


@dataclass
class RunSummary:
    outcomes: dict[str, ServiceOutcome] = field(default_factory=dict)

    def count(self, phase: ServicePhase) -> int:
        return sum(1 for o in self.outcomes.values() if o.phase == phase)

    def phase_of(self, service_id: str) -> ServicePhase:
        return self.outcomes[service_id].phase

    def counts(self) -> dict[str, int]:
        return {
            "started": self.count(ServicePhase.STARTED),
            "failed": self.count(ServicePhase.FAILED),
            "skipped": self.count(ServicePhase.SKIPPED),
        }

    def __str__(self) -> str:
        return format_summary(self.counts())


@dataclass
class _Worker:
    service_id: str
    done: asyncio.Future
    phase: ServicePhase | None = None
    task: asyncio.Task | None = None
    outcome: ServiceOutcome | None = None


@dataclass
class _StartRun:
    plan: ResolvedGraph
    workers: dict[str, _Worker] = field(default_factory=dict)
    cancelled: bool = False


class Orchestrator:
    """Starts and stops a resolved fleet through external collaborators."""

    def __init__(
        self,
        controller: ProcessController,
        prober: ReadinessProber,
        reporter: ResultReporter | None = None,
    ):
        self.controller = controller
        self.prober = prober
        self.reporter = reporter or LoggingReporter()
        self.phases: dict[str, ServicePhase] = {}
        self._run: _StartRun | None = None
        self._active: dict[str, _Worker] = {}

    @property
    def running(self) -> bool:
        return self._run is not None

    async def _transition(self, worker: _Worker, to_state: ServicePhase, reason: str = "") -> None:
        # Phase changes synchronously so stop_all never sees a stale one.
        event = OrchestrationEvent(
            service_id=worker.service_id,
            from_state=worker.phase,
            to_state=to_state,
            reason=reason,
        )
        worker.phase = to_state
        self.phases[worker.service_id] = to_state
        try:
            await self.reporter.publish(event)
        except Exception as exc:
            logger.warning("Reporter failed for %s (non-fatal): %s", worker.service_id, exc)

    async def _finish(
        self,
        worker: _Worker,
        phase: ServicePhase,
        reason: str = "",
        error: Exception | None = None,
    ) -> ServiceOutcome:
        if worker.outcome is not None:
            return worker.outcome
        worker.outcome = ServiceOutcome(worker.service_id, phase, reason, error)
        if not worker.done.done():
            worker.done.set_result(worker.outcome)
        await self._transition(worker, phase, reason)
        return worker.outcome

    def _new_worker(self, service_id: str) -> _Worker:
        worker = _Worker(service_id, asyncio.get_running_loop().create_future())
        worker.phase = self.phases.get(service_id)
        return worker

    async def _wait_for_edge(
        self,
        plan: ResolvedGraph,
        worker: _Worker,
        edge: DependencyEdge,
        peers: dict[str, _Worker],
    ) -> ServiceOutcome | None:
        """Block on one dependency edge; returns an outcome only if it ends the service."""
        sid = worker.service_id
        if edge.is_soft:
            return None

        if not edge.required:
            state = self.prober.observe(edge.to_service)
            if not edge.satisfied_by(state):
                logger.warning(
                    "Optional dependency %s of %s not ready (%s); continuing",
                    edge.to_service, sid, state.value,
                )
            return None

        await self._transition(worker, ServicePhase.WAITING, f"waiting for {edge.to_service}")

        if edge.to_service not in plan.services:
            err = DependencyTimeout(edge, 0, None, detail=f"{edge.to_service} is not enabled")
            return ServiceOutcome(sid, ServicePhase.SKIPPED, f"DependencyTimeout: {err}", err)

        # One wall-clock budget covers both the peer's launch and its readiness.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + edge.timeout_seconds

        peer = peers.get(edge.to_service)
        if peer is not None:
            try:
                # shield: cancelling this waiter must not cancel the peer's result.
                dep = await asyncio.wait_for(asyncio.shield(peer.done), edge.timeout_seconds)
            except asyncio.TimeoutError:
                phase = peer.phase.value if peer.phase else "pending"
                err = DependencyTimeout(
                    edge,
                    edge.timeout_seconds,
                    self.prober.observe(edge.to_service),
                    detail=(
                        f"Timed out after {edge.timeout_seconds:.1f}s waiting for "
                        f"{edge.to_service} to launch (still {phase})"
                    ),
                )
                logger.warning("%s: %s", sid, err)
                return ServiceOutcome(sid, ServicePhase.SKIPPED, f"DependencyTimeout: {err}", err)
            if dep.phase != ServicePhase.STARTED:
                return ServiceOutcome(
                    sid,
                    ServicePhase.SKIPPED,
                    f"dependency {edge.to_service} {dep.phase.value}",
                )

        ok, last_state = await self.prober.await_ready(
            edge.to_service,
            want_healthy=edge.health_check_required,
            timeout=max(0.0, deadline - loop.time()),
            interval=edge.retry_interval_seconds,
        )
        if ok:
            logger.info("Dependency %s is ready for %s", edge.to_service, sid)
            return None

        err = DependencyTimeout(edge, edge.timeout_seconds, last_state)
        logger.warning("%s: %s", sid, err)
        return ServiceOutcome(sid, ServicePhase.SKIPPED, f"DependencyTimeout: {err}", err)

    async def _await_dependencies(
        self,
        plan: ResolvedGraph,
        worker: _Worker,
        peers: dict[str, _Worker],
    ) -> ServiceOutcome | None:
        for edge in plan.edges_of(worker.service_id):
            outcome = await self._wait_for_edge(plan, worker, edge, peers)
            if outcome is not None:
                return outcome

        delay = plan.services[worker.service_id].startup_delay_seconds
        if delay > 0:
            await self._transition(worker, ServicePhase.WAITING, f"startup delay {delay}s")
            await asyncio.sleep(delay)
        return None

    def _watch_interval(self, plan: ResolvedGraph, service_id: str) -> float | None:
        intervals = [
            e.retry_interval_seconds
            for edges in plan.edges.values()
            for e in edges
            if e.to_service == service_id
        ]
        return min(intervals) if intervals else None

    async def _launch(self, plan: ResolvedGraph, worker: _Worker) -> ServiceOutcome:
        sid = worker.service_id
        await self._transition(worker, ServicePhase.LAUNCHING)
        try:
            await self.controller.launch(sid)
        except Exception as exc:
            err = exc if isinstance(exc, LaunchError) else LaunchError(sid, exc)
            logger.error("%s", err)
            return await self._finish(worker, ServicePhase.FAILED, str(err), err)

        # Start polling right away so dependents can unblock.
        self.prober.watch(sid, self._watch_interval(plan, sid))
        return await self._finish(worker, ServicePhase.STARTED)

    async def _drive(
        self,
        plan: ResolvedGraph,
        worker: _Worker,
        peers: dict[str, _Worker],
        run: _StartRun | None = None,
    ) -> ServiceOutcome:
        if worker.outcome is not None:
            return worker.outcome
        try:
            if run is not None and run.cancelled:
                raise asyncio.CancelledError()
            outcome = await self._await_dependencies(plan, worker, peers)
        except asyncio.CancelledError:
            return await self._finish(worker, ServicePhase.SKIPPED, CANCELLED_BY_STOP)

        if outcome is not None:
            return await self._finish(worker, outcome.phase, outcome.reason, outcome.error)
        return await self._launch(plan, worker)

    async def _finalize_cancelled(self, workers: list[_Worker]) -> None:
        """Close out workers whose task was cancelled before it ever ran."""
        for worker in workers:
            if worker.outcome is None:
                await self._finish(worker, ServicePhase.SKIPPED, CANCELLED_BY_STOP)

    async def start_all(self, plan: ResolvedGraph) -> RunSummary:
        """Start every service in ``plan.order``, honouring dependency waits.

        Always returns a per-service outcome; one failed branch never
        aborts the others.
        """
        if self._run is not None:
            raise OrchestrationError("A startup run is already in progress")

        run = _StartRun(plan)
        self._run = run
        logger.info("Starting %d services: %s", len(plan.order), ", ".join(plan.order))
        try:
            for sid in plan.order:
                worker = self._new_worker(sid)
                run.workers[sid] = worker
                self._active[sid] = worker
                await self._transition(worker, ServicePhase.PENDING)

            for sid in plan.order:
                worker = run.workers[sid]
                worker.task = asyncio.create_task(
                    self._drive(plan, worker, run.workers, run), name=f"start:{sid}"
                )

            tasks = [w.task for w in run.workers.values() if w.task is not None]
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Startup worker exception: %s", result)
            await self._finalize_cancelled(list(run.workers.values()))
        finally:
            for sid in run.workers:
                self._active.pop(sid, None)
            self._run = None

        summary = RunSummary({sid: w.outcome for sid, w in run.workers.items() if w.outcome})
        logger.info("Startup complete: %s", summary)
        return summary

    async def start_one(self, plan: ResolvedGraph, service_id: str) -> ServiceOutcome:
        """Start a single service; its dependency waits still apply."""
        if service_id not in plan.services:
            raise UnknownService(service_id)
        if service_id in self._active:
            raise OrchestrationError(f"{service_id} is already being started")

        peers = {k: v for k, v in self._active.items() if k != service_id}
        worker = self._new_worker(service_id)
        self._active[service_id] = worker
        try:
            await self._transition(worker, ServicePhase.PENDING)
            worker.task = asyncio.create_task(
                self._drive(plan, worker, peers), name=f"start:{service_id}"
            )
            try:
                await asyncio.shield(worker.task)
            except asyncio.CancelledError:
                if not worker.task.done():
                    raise
            await self._finalize_cancelled([worker])
            return worker.outcome
        finally:
            self._active.pop(service_id, None)

    async def _cancel_pending(self) -> None:
        run = self._run
        if run is not None:
            run.cancelled = True

        workers = list(self._active.values())
        for worker in workers:
            if worker.phase in (ServicePhase.PENDING, ServicePhase.WAITING) and worker.task:
                worker.task.cancel()

        # Launching services finish their launch; they are stopped below.
        tasks = [w.task for w in workers if w.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._finalize_cancelled(workers)

    async def _stop_one(self, service_id: str) -> ServiceOutcome:
        worker = self._new_worker(service_id)
        await self._transition(worker, ServicePhase.STOPPING)
        try:
            await self.controller.terminate(service_id)
        except Exception as exc:
            logger.warning("Failed to stop %s: %s", service_id, exc)
            outcome = ServiceOutcome(service_id, ServicePhase.FAILED, f"terminate failed: {exc}", exc)
            await self._transition(worker, ServicePhase.FAILED, outcome.reason)
            return outcome

        await self.prober.stop_watching(service_id)
        await self._transition(worker, ServicePhase.STOPPED)
        return ServiceOutcome(service_id, ServicePhase.STOPPED)

    async def stop_all(self, plan: ResolvedGraph) -> RunSummary:
        """Stop every service in reverse order, best effort.

        Called mid-startup, pending and waiting services are cancelled first.
        """
        if self._active:
            logger.info("Cancelling %d in-flight startup workers", len(self._active))
            await self._cancel_pending()

        summary = RunSummary()
        for sid in plan.shutdown_order():
            summary.outcomes[sid] = await self._stop_one(sid)

        stopped = summary.count(ServicePhase.STOPPED)
        logger.info("Shutdown complete: %d stopped, %d failed", stopped, summary.count(ServicePhase.FAILED))
        return summary

    async def restart(self, plan: ResolvedGraph, service_id: str) -> ServiceOutcome:
        if service_id not in plan.services:
            raise UnknownService(service_id)
        await self._stop_one(service_id)
        return await self.start_one(plan, service_id)
