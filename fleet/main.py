"""Fleet orchestrator API — resolves dependency order and drives startup/shutdown."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleet.config import settings
from fleet.database import close_db, init_db
from fleet.routes import orchestration
from orchestrate.runtime import build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.fleet_file:
        await init_db()
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(
            dry_run=not settings.process_controller_url,
            persist_events=True,
        )
    app.state.background = set()
    yield
    for task in list(app.state.background):
        task.cancel()
    await asyncio.gather(*app.state.background, return_exceptions=True)
    await app.state.runtime.close()
    await close_db()


app = FastAPI(
    title="Fleet Orchestrator",
    description="Dependency-driven startup and shutdown for locally-run microservices",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orchestration.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "fleet-orchestrator", "version": settings.api_version}
