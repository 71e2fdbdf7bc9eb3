#!/usr/bin/env python3
"""
seed_progression.py
-------------------

Load level curves and achievement definitions from config/ into the database,
and run the bulk "sync reached achievements" job.

USAGE:
  python scripts/seed_progression.py schema          # create tables (dev only)
  python scripts/seed_progression.py seed            # upsert levels + achievements
  python scripts/seed_progression.py seed --kind town
  python scripts/seed_progression.py sync --kind town

The database URL comes from DATABASE_URL (see .env) unless --database-url is given.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from nordics.core.config.manager import ConfigManager
from nordics.core.database.service import DatabaseService
from nordics.core.logging.logger import get_logger, shutdown_logging
from nordics.core.services.container import ServiceContainer
from nordics.modules.achievements.seeding import DefinitionSeeder

logger = get_logger("scripts.seed_progression")


async def _schema(database_url: Optional[str]) -> dict:
    await DatabaseService.initialize(url=database_url)
    try:
        await DatabaseService.create_all()
        return {"schema": "created"}
    finally:
        await DatabaseService.shutdown()


async def _seed(database_url: Optional[str], kinds: Optional[List[str]]) -> dict:
    await ConfigManager.initialize()
    await DatabaseService.initialize(url=database_url)
    try:
        return await DefinitionSeeder(ConfigManager).seed_all(kinds)
    finally:
        await DatabaseService.shutdown()


async def _sync(database_url: Optional[str], kind: str) -> dict:
    container = ServiceContainer(database_url=database_url)
    await container.initialize()
    try:
        return await container.achievements.sync_all(kind)
    finally:
        await container.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Nordics progression data tools")
    parser.add_argument("--database-url", default=None, help="override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("schema", help="create all tables")

    seed = sub.add_parser("seed", help="upsert level and achievement definitions")
    seed.add_argument("--kind", action="append", choices=["player", "town"])

    sync = sub.add_parser("sync", help="record reached tiers for every entity of a kind")
    sync.add_argument("--kind", default="town", choices=["player", "town"])

    args = parser.parse_args(argv)

    if args.command == "schema":
        coro = _schema(args.database_url)
    elif args.command == "seed":
        coro = _seed(args.database_url, args.kind)
    else:
        coro = _sync(args.database_url, args.kind)

    try:
        report = asyncio.run(coro)
    except Exception:
        logger.exception("Command failed", extra={"command": args.command})
        return 1
    finally:
        shutdown_logging()

    print(json.dumps(report, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
