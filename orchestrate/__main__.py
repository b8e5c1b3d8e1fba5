"""Entry point: python -m orchestrate

Resolves the dependency order for a profile and drives startup/shutdown
through the configured process controller.

Usage:
    python -m orchestrate order --fleet-file fleet.yaml            # print startup order
    python -m orchestrate start --profile dev --dry-run            # simulate a startup run
    python -m orchestrate stop --fleet-file fleet.yaml             # stop in reverse order
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from fleet.config import settings
from orchestrate.dependency_graph import build_dependency_graph
from orchestrate.errors import CycleDetected
from orchestrate.models import ServicePhase
from orchestrate.runtime import build_runtime

logger = logging.getLogger(__name__)


def print_plan(plan) -> None:
    graph = build_dependency_graph(plan.services.values(), plan.edges)
    print("=" * 60)
    print(f"STARTUP ORDER ({plan.profile_id or 'global'})")
    print("=" * 60)
    for idx, sid in enumerate(plan.order, start=1):
        deps = ", ".join(
            f"{e.to_service}{'' if e.blocking else ' (' + e.type.value + ')'}"
            for e in plan.edges_of(sid)
        )
        print(f"  {idx:>2}. {sid}" + (f"  <- {deps}" if deps else ""))
    print(f"\n  Waves: {graph.waves()}")
    for warning in plan.warnings:
        print(f"  WARNING: {warning}")
    print("=" * 60)


async def main(command: str, profile: str | None, fleet_file: str | None, dry_run: bool) -> int:
    use_db = not (fleet_file or settings.fleet_file)
    if use_db:
        from fleet.database import init_db

        await init_db()

    runtime = build_runtime(dry_run=dry_run or command == "order", fleet_file=fleet_file, persist_events=use_db)
    try:
        try:
            plan = await runtime.resolve(profile)
        except CycleDetected as exc:
            print(f"ERROR: {exc}")
            print("Refusing to start anything from this graph.")
            return 2

        print_plan(plan)
        if command == "order":
            return 0

        if command == "start":
            summary = await runtime.orchestrator.start_all(plan)
            print(f"\nStartup finished: {summary}")
            for outcome in summary.outcomes.values():
                reason = f" — {outcome.reason}" if outcome.reason else ""
                print(f"  {outcome.phase.value:>8}  {outcome.service_id}{reason}")
            return 1 if summary.count(ServicePhase.FAILED) or summary.count(ServicePhase.SKIPPED) else 0

        summary = await runtime.orchestrator.stop_all(plan)
        print(f"\nShutdown finished for {len(summary.outcomes)} services")
        return 0
    finally:
        await runtime.close()


def cli() -> None:
    parser = argparse.ArgumentParser(description="Dependency-driven fleet orchestrator")
    parser.add_argument("command", choices=["order", "start", "stop"])
    parser.add_argument("--profile", default=None, help="Profile id to activate")
    parser.add_argument("--fleet-file", default=None, help="YAML fleet definition")
    parser.add_argument("--dry-run", action="store_true", help="Simulate launches")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    sys.exit(asyncio.run(main(args.command, args.profile, args.fleet_file, args.dry_run)))


if __name__ == "__main__":
    cli()
