"""
Pytest configuration and fixtures
"""

from datetime import datetime
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from core.config import Settings
from core.database import create_engine, create_session_maker, create_tables
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.loaders.memory_store import InMemoryStore
from ingestion.loaders.postgres_loader import SQLAlchemyStore

# Fixed "now" for runs, expiry and pruning
FIXED_NOW = datetime(2024, 11, 20, 12, 0, 0)


def fixed_clock() -> datetime:
    return FIXED_NOW


def json_transport(routes):
    """
    MockTransport answering by URL path.

    routes maps a path to a payload, an httpx.Response, or a callable
    taking the request and returning either.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        answer = routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    return httpx.MockTransport(handler)


@pytest.fixture
def clock():
    """Frozen clock at FIXED_NOW"""
    return fixed_clock


@pytest.fixture
def transport():
    """Factory for path-routed httpx.MockTransport instances"""
    return json_transport


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast retries and the default retention windows"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        MAX_RETRIES=2,
        RETRY_DELAY_SECONDS=0.0,
        FETCH_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest_asyncio.fixture
async def seeded_store(memory_store) -> InMemoryStore:
    """In-memory store with the 100 North Carolina counties"""
    await EntityResolver(memory_store, "NC").seed_counties()
    return memory_store


@pytest_asyncio.fixture(scope="function")
async def sql_store(tmp_path) -> AsyncGenerator[SQLAlchemyStore, None]:
    """SQLAlchemy store on a throwaway aiosqlite file database"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}")
    await create_tables(engine)

    store = SQLAlchemyStore(create_session_maker(engine), engine)
    yield store

    await store.close()


@pytest.fixture
def warn_csv() -> str:
    """Ten layoff notices; headers as in the current state export"""
    return (
        "Company Name,County,City,Notice Date,Effective Date,Employees Affected,Industry\n"
        "Acme Inc.,Wake County,Raleigh,11/15/2024,01/15/2025,150,Manufacturing\n"
        "Globex LLC,Durham,Durham,11/14/2024,01/14/2025,\"1,200\",Technology\n"
        "Initech Corp,Mecklenburg,Charlotte,11/13/2024,01/13/2025,85,Software\n"
        "Umbrella Co.,Guilford,Greensboro,11/12/2024,,40,Pharmaceuticals\n"
        "Hooli Inc,Forsyth,Winston-Salem,2024-11-11,,60,Technology\n"
        "Vandelay Industries,New Hanover,Wilmington,11/10/24,,25,Import/Export\n"
        "Soylent Corporation,Buncombe,Asheville,11/09/2024,,300,Food\n"
        "Stark Industries LLC,Cumberland,Fayetteville,11/08/2024,,500,Defense\n"
        "Wayne Enterprises,Orange,Chapel Hill,11/07/2024,,75,Conglomerate\n"
        "Tyrell Corp,Pitt,Greenville,11/06/2024,,90,Biotech\n"
    )
