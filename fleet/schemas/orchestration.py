"""Pydantic schemas for orchestration endpoints."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel


class EdgeResponse(BaseModel):
    from_service: str
    to_service: str
    type: str
    health_check_required: bool
    timeout_seconds: float
    retry_interval_seconds: float
    required: bool
    description: str = ""


class OrderResponse(BaseModel):
    profile_id: str | None = None
    order: list[str]
    waves: list[list[str]]
    warnings: list[str] = []
    dropped_edges: list[EdgeResponse] = []


class ValidationResponse(BaseModel):
    valid: bool
    cycle: list[str] | None = None
    missing_dependencies: list[EdgeResponse] = []
    warnings: list[str] = []


class ServiceOutcomeResponse(BaseModel):
    service_id: str
    phase: str
    reason: str = ""


class RunResponse(BaseModel):
    profile_id: str | None = None
    order: list[str]
    accepted: bool = True
    started: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: int = 0
    outcomes: list[ServiceOutcomeResponse] = []


class EventResponse(BaseModel):
    service_id: str
    from_state: str | None = None
    to_state: str
    reason: str = ""
    timestamp: datetime
