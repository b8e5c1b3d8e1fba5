"""Orchestration endpoints — resolve order, start and stop the fleet."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fleet.schemas.orchestration import (
    EdgeResponse,
    EventResponse,
    OrderResponse,
    RunResponse,
    ServiceOutcomeResponse,
    ValidationResponse,
)
from orchestrate.dependency_graph import ResolvedGraph, build_dependency_graph
from orchestrate.engine import RunSummary
from orchestrate.errors import CycleDetected, OrchestrationError, UnknownService
from orchestrate.models import DependencyEdge, ServicePhase
from orchestrate.runtime import FleetRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orchestration", tags=["orchestration"])


def get_runtime(request: Request) -> FleetRuntime:
    return request.app.state.runtime


def _edge(edge: DependencyEdge) -> EdgeResponse:
    data = asdict(edge)
    data["type"] = edge.type.value
    return EdgeResponse(**data)


def _cycle_error(exc: CycleDetected) -> HTTPException:
    return HTTPException(status_code=409, detail={"message": str(exc), "cycle": exc.path})


async def _resolve(runtime: FleetRuntime, profile: str | None) -> ResolvedGraph:
    try:
        return await runtime.resolve(profile)
    except CycleDetected as exc:
        raise _cycle_error(exc)


def _run_response(plan: ResolvedGraph, summary: RunSummary | None) -> RunResponse:
    response = RunResponse(profile_id=plan.profile_id, order=plan.order)
    if summary is None:
        return response
    counts = summary.counts()
    response.started = counts["started"]
    response.failed = counts["failed"]
    response.skipped = counts["skipped"]
    response.stopped = summary.count(ServicePhase.STOPPED)
    response.outcomes = [
        ServiceOutcomeResponse(service_id=o.service_id, phase=o.phase.value, reason=o.reason)
        for o in summary.outcomes.values()
    ]
    return response


@router.get("/order", response_model=OrderResponse)
async def get_order(
    profile: str | None = Query(None),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Resolve the startup order for a profile (or the active one)."""
    plan = await _resolve(runtime, profile)
    graph = build_dependency_graph(plan.services.values(), plan.edges)
    return OrderResponse(
        profile_id=plan.profile_id,
        order=plan.order,
        waves=graph.waves(),
        warnings=plan.warnings,
        dropped_edges=[_edge(e) for e in plan.dropped_edges],
    )


@router.get("/validate", response_model=ValidationResponse)
async def validate(
    profile: str | None = Query(None),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Report cycles and dependencies on services that are not enabled."""
    try:
        plan = await runtime.resolve(profile)
    except CycleDetected as exc:
        return ValidationResponse(valid=False, cycle=exc.path)

    graph = build_dependency_graph(plan.services.values(), plan.edges)
    missing = graph.missing_targets()
    return ValidationResponse(
        valid=not any(e.blocking for e in missing),
        missing_dependencies=[_edge(e) for e in missing],
        warnings=plan.warnings,
    )


@router.post("/start", response_model=RunResponse)
async def start_all(
    request: Request,
    profile: str | None = Query(None),
    wait: bool = Query(False),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Apply a profile: resolve its order and start every service in it."""
    plan = await _resolve(runtime, profile)
    if runtime.orchestrator.running:
        raise HTTPException(status_code=409, detail="A startup run is already in progress")

    runtime.last_plan = plan

    if wait:
        summary = await runtime.orchestrator.start_all(plan)
        return _run_response(plan, summary)

    task = asyncio.create_task(runtime.orchestrator.start_all(plan), name="start_all")
    request.app.state.background.add(task)
    task.add_done_callback(request.app.state.background.discard)
    return _run_response(plan, None)


@router.post("/stop", response_model=RunResponse)
async def stop_all(
    profile: str | None = Query(None),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Stop the fleet in reverse startup order."""
    plan = runtime.last_plan if profile is None and runtime.last_plan else await _resolve(runtime, profile)
    summary = await runtime.orchestrator.stop_all(plan)
    return _run_response(plan, summary)


@router.post("/services/{service_id}/start", response_model=ServiceOutcomeResponse)
async def start_one(
    service_id: str,
    profile: str | None = Query(None),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Start one service, still waiting on its dependencies."""
    plan = await _resolve(runtime, profile)
    if service_id in plan.services:
        runtime.last_plan = plan
    try:
        outcome = await runtime.orchestrator.start_one(plan, service_id)
    except UnknownService as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except OrchestrationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ServiceOutcomeResponse(
        service_id=outcome.service_id, phase=outcome.phase.value, reason=outcome.reason
    )


@router.get("/events", response_model=list[EventResponse])
async def list_events(
    service_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    runtime: FleetRuntime = Depends(get_runtime),
):
    """Most recent phase transitions, oldest first."""
    events = runtime.events.for_service(service_id) if service_id else runtime.events.events
    return [
        EventResponse(
            service_id=e.service_id,
            from_state=e.from_state.value if e.from_state else None,
            to_state=e.to_state.value,
            reason=e.reason,
            timestamp=e.timestamp,
        )
        for e in events[-limit:]
    ]


@router.get("/readiness")
async def readiness(runtime: FleetRuntime = Depends(get_runtime)):
    """Last observed readiness state per service."""
    return {sid: state.value for sid, state in runtime.prober.snapshot().items()}
