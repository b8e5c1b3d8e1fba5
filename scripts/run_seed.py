"""Load the demo fleet (registry, config, cache, auth, gateway) into the database.

Usage:
    python scripts/run_seed.py          # seed an empty database
    python scripts/run_seed.py --reset  # drop the fleet tables and reseed
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from sqlalchemy import func, select

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fleet.database import Base, async_session, close_db, engine, init_db
from fleet.entities import ServiceRecord
from fleet.seed import DEPENDENCIES, PROFILES, SERVICES, seed_data


async def main(reset: bool = False) -> int:
    if reset:
        print("Dropping fleet tables...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    await init_db()

    try:
        async with async_session() as db:
            existing = await db.scalar(select(func.count()).select_from(ServiceRecord))
            if existing:
                print(f"Fleet already has {existing} services; use --reset to reseed.")
                return 1
            await seed_data(db)
    finally:
        await close_db()

    print(
        f"Seeded {len(SERVICES)} services, {len(DEPENDENCIES)} dependencies, "
        f"{len(PROFILES)} profiles."
    )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the demo fleet")
    parser.add_argument("--reset", action="store_true", help="Drop the fleet tables first")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(reset=args.reset)))
