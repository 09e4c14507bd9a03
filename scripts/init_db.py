"""
Create tables and seed the county registry for the owning state
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_engine, create_session_maker, create_tables
from core.logging import setup_logging
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.loaders.postgres_loader import SQLAlchemyStore

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    engine = create_engine(settings.DATABASE_URL)

    try:
        await create_tables(engine)

        store = SQLAlchemyStore(create_session_maker(engine), engine)
        created = await EntityResolver(store, settings.STATE_CODE).seed_counties()
        logger.info(f"Database ready ({created} counties seeded)")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
