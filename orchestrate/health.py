"""Health checker implementations consumed by the readiness prober."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

import httpx

from fleet.config import settings
from orchestrate.errors import HealthCheckUnreachable
from orchestrate.models import ReadinessState, Service

if TYPE_CHECKING:
    from orchestrate.process import DryRunProcessController

logger = logging.getLogger(__name__)

ProcessStatus = Callable[[str], Awaitable[bool]]


class HttpHealthChecker:
    """GET each service's health URL; 2xx means healthy.

    Services without a health URL count as healthy once the process is
    running, when a ``process_status`` callback is available to tell.
    """

    def __init__(
        self,
        services: Iterable[Service] = (),
        process_status: ProcessStatus | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._services: dict[str, Service] = {s.id: s for s in services}
        self._process_status = process_status
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.health_check_timeout,
            transport=transport,
        )

    def register(self, service: Service) -> None:
        self._services[service.id] = service

    async def close(self):
        await self._client.aclose()

    async def check(self, service_id: str) -> ReadinessState:
        if self._process_status is not None:
            if not await self._process_status(service_id):
                return ReadinessState.STOPPED

        service = self._services.get(service_id)
        url = service.health_url if service else None
        if not url:
            if self._process_status is not None:
                return ReadinessState.HEALTHY
            return ReadinessState.UNKNOWN

        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise HealthCheckUnreachable(service_id, exc) from exc

        if 200 <= resp.status_code < 300:
            return ReadinessState.HEALTHY
        logger.debug("Health check for %s returned status %d", service_id, resp.status_code)
        return ReadinessState.UNHEALTHY


class DryRunHealthChecker:
    """Reports services healthy once the dry-run controller has launched them."""

    def __init__(self, controller: "DryRunProcessController", warmup_polls: int = 1):
        self.controller = controller
        self.warmup_polls = warmup_polls
        self._polls: dict[str, int] = {}

    async def check(self, service_id: str) -> ReadinessState:
        if service_id not in self.controller.running:
            self._polls.pop(service_id, None)
            return ReadinessState.STOPPED
        polls = self._polls[service_id] = self._polls.get(service_id, 0) + 1
        if polls <= self.warmup_polls:
            return ReadinessState.STARTING
        return ReadinessState.HEALTHY
