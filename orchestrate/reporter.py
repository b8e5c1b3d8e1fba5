"""Result reporters — receive one event per service phase transition.

Delivery is in order per service; events for different services may
interleave. Reporter failures are logged and never reach the engine.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet.config import settings
from orchestrate.models import TERMINAL_PHASES, OrchestrationEvent, ServicePhase

logger = logging.getLogger(__name__)

_TIMEOUT = 5.0


class ResultReporter(Protocol):
    async def publish(self, event: OrchestrationEvent) -> None:
        ...


def final_states(events: Iterable[OrchestrationEvent]) -> dict[str, ServicePhase]:
    """Last terminal phase reached by each service in an event stream."""
    states: dict[str, ServicePhase] = {}
    for event in events:
        if event.to_state in TERMINAL_PHASES:
            states[event.service_id] = event.to_state
    return states


def summarize(events: Iterable[OrchestrationEvent]) -> dict[str, int]:
    counts = Counter(state.value for state in final_states(events).values())
    return {
        "started": counts.get(ServicePhase.STARTED.value, 0),
        "failed": counts.get(ServicePhase.FAILED.value, 0),
        "skipped": counts.get(ServicePhase.SKIPPED.value, 0),
    }


def format_summary(counts: dict[str, int]) -> str:
    return f"{counts['started']} started, {counts['failed']} failed, {counts['skipped']} skipped"


class LoggingReporter:
    async def publish(self, event: OrchestrationEvent) -> None:
        level = logging.WARNING if event.to_state == ServicePhase.FAILED else logging.INFO
        source = event.from_state.value if event.from_state else "-"
        reason = f" ({event.reason})" if event.reason else ""
        logger.log(level, "[%s] %s -> %s%s", event.service_id, source, event.to_state.value, reason)


class CollectingReporter:
    """Keeps the event stream in memory; backs the events API and tests."""

    def __init__(self, limit: int | None = 1000):
        self.limit = limit
        self.events: list[OrchestrationEvent] = []

    async def publish(self, event: OrchestrationEvent) -> None:
        self.events.append(event)
        if self.limit is not None and len(self.events) > self.limit:
            del self.events[: len(self.events) - self.limit]

    def for_service(self, service_id: str) -> list[OrchestrationEvent]:
        return [e for e in self.events if e.service_id == service_id]

    def transitions(self, service_id: str) -> list[ServicePhase]:
        return [e.to_state for e in self.for_service(service_id)]

    def summary(self) -> dict[str, int]:
        return summarize(self.events)

    def clear(self) -> None:
        self.events.clear()


class DatabaseReporter:
    """Persists every transition as an orchestration_events row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from fleet.database import async_session

            session_factory = async_session
        self.session_factory = session_factory

    async def publish(self, event: OrchestrationEvent) -> None:
        from fleet.entities.orchestration_event import OrchestrationEventRecord

        async with self.session_factory() as db:
            db.add(OrchestrationEventRecord(
                service_id=event.service_id,
                from_state=event.from_state.value if event.from_state else None,
                to_state=event.to_state.value,
                reason=event.reason or None,
                occurred_at=event.timestamp,
            ))
            await db.commit()


class WebhookReporter:
    """Fire-and-forget POST of each event to the notification webhook.

    Failures are logged but never raised.
    """

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url if base_url is not None else settings.notification_webhook_url
        self._transport = transport

    async def publish(self, event: OrchestrationEvent) -> None:
        if not self.base_url:
            logger.debug("notification_webhook_url not configured — skipping webhook")
            return

        url = f"{self.base_url.rstrip('/')}/orchestration/events"
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(url, json=event.to_dict())
                resp.raise_for_status()
        except Exception as exc:
            logger.warning("Webhook to %s failed (non-fatal): %s", url, exc)


class FanoutReporter:
    def __init__(self, *reporters: ResultReporter):
        self.reporters = list(reporters)

    async def publish(self, event: OrchestrationEvent) -> None:
        for reporter in self.reporters:
            try:
                await reporter.publish(event)
            except Exception as exc:
                logger.warning(
                    "%s failed for %s (non-fatal): %s",
                    type(reporter).__name__, event.service_id, exc,
                )
