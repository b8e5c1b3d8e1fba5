"""Process controller clients — the orchestrator never spawns processes itself."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from fleet.config import settings
from orchestrate.errors import LaunchError

logger = logging.getLogger(__name__)

# Errors worth retrying (transient)
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_MAX_RETRIES = 3
_BASE_DELAY = 1.0  # seconds


class ProcessController(Protocol):
    async def launch(self, service_id: str) -> None:
        ...

    async def terminate(self, service_id: str) -> None:
        """Must be safe to call on an already-stopped service."""
        ...


class ProcessControllerClient:
    """Client for a REST process controller exposing /api/services/{id}/start|stop."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_delay: float = _BASE_DELAY,
    ):
        self.base_url = (base_url or settings.process_controller_url).rstrip("/")
        if not self.base_url:
            raise ValueError(
                "Process controller URL is required. "
                "Set FLEET_PROCESS_CONTROLLER_URL as an environment variable."
            )
        self.base_delay = base_delay
        self._client = httpx.AsyncClient(
            timeout=settings.process_controller_timeout,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with exponential backoff retry on transient errors."""
        for attempt in range(_MAX_RETRIES + 1):
            try:
                resp = await self._client.request(method, url, **kwargs)
                if resp.status_code in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRIES:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        "Retryable %d from %s %s, retrying in %.1fs (attempt %d/%d)",
                        resp.status_code, method, url,
                        delay, attempt + 1, _MAX_RETRIES,
                    )
                    await asyncio.sleep(delay)
                    continue
                resp.raise_for_status()
                return resp
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                if attempt >= _MAX_RETRIES:
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "%s on %s %s, retrying in %.1fs (attempt %d/%d)",
                    type(exc).__name__, method, url,
                    delay, attempt + 1, _MAX_RETRIES,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")  # loop always returns or raises

    async def launch(self, service_id: str) -> None:
        try:
            await self._request_with_retry(
                "POST", f"{self.base_url}/api/services/{service_id}/start"
            )
        except httpx.HTTPError as exc:
            raise LaunchError(service_id, exc) from exc
        logger.info("Launch requested for %s", service_id)

    async def terminate(self, service_id: str) -> None:
        resp = await self._client.post(f"{self.base_url}/api/services/{service_id}/stop")
        # Stopping an already-stopped service is not an error.
        if resp.status_code in (404, 409):
            logger.debug("Terminate %s: already stopped (%d)", service_id, resp.status_code)
            return
        resp.raise_for_status()

    async def is_running(self, service_id: str) -> bool:
        """Process status as reported by the controller; used by the health checker."""
        try:
            resp = await self._client.get(f"{self.base_url}/api/services/{service_id}")
        except httpx.HTTPError as exc:
            logger.debug("Status lookup for %s failed: %s", service_id, exc)
            return False
        if resp.status_code != 200:
            return False
        return resp.json().get("status") == "running"


class DryRunProcessController:
    """Records launches and terminations without touching any process."""

    def __init__(self, fail: set[str] | None = None):
        self.fail = set(fail or ())
        self.running: set[str] = set()
        self.launched: list[str] = []
        self.terminated: list[str] = []

    async def launch(self, service_id: str) -> None:
        self.launched.append(service_id)
        if service_id in self.fail:
            raise LaunchError(service_id, "simulated launch failure")
        self.running.add(service_id)
        logger.info("[dry-run] launch %s", service_id)

    async def terminate(self, service_id: str) -> None:
        self.terminated.append(service_id)
        self.running.discard(service_id)
        logger.info("[dry-run] terminate %s", service_id)

    async def is_running(self, service_id: str) -> bool:
        return service_id in self.running
