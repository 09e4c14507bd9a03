"""
Run imports once, or start the recurring scheduler.

Examples:
    python scripts/run_ingest.py                   # every source once
    python scripts/run_ingest.py --source weather  # one source once
    python scripts/run_ingest.py --schedule        # run until interrupted
    python scripts/run_ingest.py --dry-run         # in-memory store, no database
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.loaders.memory_store import InMemoryStore
from ingestion.loaders.postgres_loader import SQLAlchemyStore
from ingestion.runner import ImportRunner
from ingestion.scheduler import IngestionScheduler, build_extractors
from models.base import SourceKind

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Public data ingestion")
    parser.add_argument(
        "--source",
        choices=[kind.value for kind in SourceKind],
        help="Import a single source (default: all sources)",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Start the recurring scheduler and keep running",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory store instead of the database",
    )
    return parser.parse_args(argv)


async def run_once(store, kinds) -> int:
    """Run each source in turn; returns the number of sources that failed"""
    runner = ImportRunner(store, settings)
    factories = build_extractors(settings)
    failures = 0

    for kind in kinds:
        adapter = factories[kind]()
        try:
            logger.info(f"Running import for source: {adapter.source_name}")
            result = await runner.run(adapter)
            logger.info(
                f"Import {result.status.value} for {adapter.source_name}: "
                f"Found={result.items_found}, Upserted={result.items_upserted}, "
                f"Skipped={result.items_skipped}, Failed={result.items_failed}"
            )
        except ETLException as e:
            failures += 1
            logger.error(f"Import failed for {adapter.source_name}: {e}", extra={"error_context": e.to_dict()})
            continue

    return failures


async def run_scheduled(store):
    scheduler = IngestionScheduler(store, settings)
    scheduler.start()
    scheduler.run_all_now()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()


async def main(argv=None) -> int:
    args = parse_args(argv)

    if args.dry_run:
        store = InMemoryStore()
    else:
        store = SQLAlchemyStore.from_url(settings.DATABASE_URL)

    try:
        await EntityResolver(store, settings.STATE_CODE).seed_counties()

        if args.schedule:
            await run_scheduled(store)
            return 0

        kinds = [SourceKind(args.source)] if args.source else list(SourceKind)
        failures = await run_once(store, kinds)
        logger.info("All imports completed")
        return 1 if failures else 0
    finally:
        if isinstance(store, SQLAlchemyStore):
            await store.close()


if __name__ == "__main__":
    setup_logging()
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
