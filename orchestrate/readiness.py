"""Readiness prober — one shared polling loop per service.

Each service owns a cell holding its last observed ReadinessState and an
asyncio.Condition. Only the service's own poll loop writes the cell; any
number of waiters read it and are woken on every poll result, so dependents
waiting on the same hub service never multiply health checks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from orchestrate.errors import HealthCheckUnreachable
from orchestrate.models import DEFAULT_RETRY_INTERVAL_SECONDS, ReadinessState

logger = logging.getLogger(__name__)


class HealthChecker(Protocol):
    async def check(self, service_id: str) -> ReadinessState:
        ...


@dataclass
class _ReadinessCell:
    state: ReadinessState = ReadinessState.UNKNOWN
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    interval: float | None = None
    polls: int = 0
    task: asyncio.Task | None = None


class ReadinessProber:
    def __init__(
        self,
        checker: HealthChecker,
        min_interval: float = 0.1,
        default_interval: float = DEFAULT_RETRY_INTERVAL_SECONDS,
    ):
        self.checker = checker
        self.min_interval = min_interval
        self.default_interval = default_interval
        self._cells: dict[str, _ReadinessCell] = {}

    def _cell(self, service_id: str) -> _ReadinessCell:
        cell = self._cells.get(service_id)
        if cell is None:
            cell = self._cells[service_id] = _ReadinessCell()
        return cell

    def observe(self, service_id: str) -> ReadinessState:
        """Non-blocking snapshot of the last poll result."""
        cell = self._cells.get(service_id)
        return cell.state if cell else ReadinessState.UNKNOWN

    def snapshot(self) -> dict[str, ReadinessState]:
        return {sid: cell.state for sid, cell in self._cells.items()}

    def is_watching(self, service_id: str) -> bool:
        cell = self._cells.get(service_id)
        return bool(cell and cell.task and not cell.task.done())

    def watch(self, service_id: str, interval: float | None = None) -> None:
        """Start the service's poll loop, or tighten its interval if running."""
        interval = max(
            self.min_interval,
            self.default_interval if interval is None else interval,
        )
        cell = self._cell(service_id)
        if cell.interval is None or interval < cell.interval:
            cell.interval = interval
            cell.wake.set()
        if cell.task is None or cell.task.done():
            cell.task = asyncio.create_task(
                self._poll_loop(service_id, cell), name=f"readiness:{service_id}"
            )

    async def stop_watching(
        self,
        service_id: str,
        final_state: ReadinessState = ReadinessState.STOPPED,
    ) -> None:
        """Cancel the poll loop and publish a final state to any waiters."""
        cell = self._cells.get(service_id)
        if cell is None:
            return
        await self._cancel(cell)
        cell.interval = None
        await self._record(cell, final_state)

    async def close(self) -> None:
        for cell in self._cells.values():
            await self._cancel(cell)

    async def _cancel(self, cell: _ReadinessCell) -> None:
        task, cell.task = cell.task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def poll_once(self, service_id: str) -> ReadinessState:
        """Run one health check; any failure reads as unhealthy."""
        try:
            return await self.checker.check(service_id)
        except HealthCheckUnreachable as exc:
            logger.debug("%s", exc)
        except Exception as exc:
            logger.warning("Health check for %s failed: %s", service_id, exc)
        return ReadinessState.UNHEALTHY

    async def _poll_loop(self, service_id: str, cell: _ReadinessCell) -> None:
        while True:
            # Clear first: a watch() landing mid-poll must still wake the sleep.
            cell.wake.clear()
            state = await self.poll_once(service_id)
            cell.polls += 1
            if state != cell.state:
                logger.debug("%s readiness %s -> %s", service_id, cell.state.value, state.value)
            await self._record(cell, state)

            try:
                await asyncio.wait_for(cell.wake.wait(), cell.interval or self.default_interval)
            except asyncio.TimeoutError:
                pass

    @staticmethod
    async def _record(cell: _ReadinessCell, state: ReadinessState) -> None:
        async with cell.changed:
            cell.state = state
            cell.changed.notify_all()

    async def await_ready(
        self,
        service_id: str,
        want_healthy: bool,
        timeout: float,
        interval: float | None = None,
    ) -> tuple[bool, ReadinessState]:
        """Block until the service is healthy (or merely running).

        The timeout is wall clock. Returns (ok, last observed state).
        """
        if want_healthy:
            def satisfied(state: ReadinessState) -> bool:
                return state == ReadinessState.HEALTHY
        else:
            def satisfied(state: ReadinessState) -> bool:
                return state.running

        self.watch(service_id, interval)
        cell = self._cell(service_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with cell.changed:
            while not satisfied(cell.state):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False, cell.state
                try:
                    await asyncio.wait_for(cell.changed.wait(), remaining)
                except asyncio.TimeoutError:
                    return False, cell.state
            return True, cell.state
