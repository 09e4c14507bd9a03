"""
Integration tests: full imports against the SQLAlchemy store (aiosqlite)
"""

from datetime import datetime, timedelta

import httpx
import pytest

from core.exceptions import DatabaseError, DuplicateEntityError
from ingestion.base import SourceAdapter
from ingestion.extractors.csv_extractor import WarnCSVExtractor
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.runner import ImportRunner
from models.base import EntityKind, ImportStatus, SourceKind
from schemas.normalized import WeatherAlertRecord


class RecordsAdapter(SourceAdapter):
    def __init__(self, kind, records):
        super().__init__(source_name=f"fixed_{kind.value}")
        self.source_kind = kind
        self.records = records

    async def fetch(self):
        return list(self.records)


def warn_extractor(csv_text, transport):
    return WarnCSVExtractor(
        source_url="https://warn.test/data",
        file_path="/nonexistent/manual.csv",
        mode="url",
        transport=transport({"/data/warn-notices.csv": httpx.Response(200, text=csv_text)}),
        max_retries=1,
        retry_delay=0.0,
    )


class TestWarnPipeline:
    @pytest.mark.asyncio
    async def test_import_twice(self, sql_store, test_settings, clock, transport, warn_csv):
        runner = ImportRunner(sql_store, test_settings, clock)
        assert await runner.resolver.seed_counties() == 100

        first = await runner.run(warn_extractor(warn_csv, transport))
        second = await runner.run(warn_extractor(warn_csv, transport))

        assert (first.status, first.items_upserted) == (ImportStatus.COMPLETED, 10)
        assert (second.status, second.items_skipped) == (ImportStatus.COMPLETED, 10)
        assert await sql_store.count(EntityKind.WARN_NOTICE) == 10
        assert await sql_store.count(EntityKind.COMPANY) == 10

        globex = await sql_store.find(EntityKind.COMPANY, {"slug": "globex"})
        notice = await sql_store.find(EntityKind.WARN_NOTICE, {"company_id": globex["id"]})
        assert notice["impacted"] == 1200

        run = await sql_store.find(EntityKind.IMPORT_RUN, {"id": second.run_id})
        assert run["source"] == SourceKind.WARN
        assert run["status"] == ImportStatus.COMPLETED
        assert run["items_skipped"] == 10
        assert run["finished_at"] == datetime(2024, 11, 20, 12, 0)
        assert await sql_store.count(EntityKind.IMPORT_RUN, {"status": ImportStatus.COMPLETED}) == 2

    @pytest.mark.asyncio
    async def test_partial_run_persisted(self, sql_store, test_settings, clock, transport, warn_csv):
        runner = ImportRunner(sql_store, test_settings, clock)
        await runner.resolver.seed_counties()

        result = await runner.run(warn_extractor(warn_csv.replace("11/06/2024", "TBD"), transport))

        run = await sql_store.find(EntityKind.IMPORT_RUN, {"id": result.run_id})
        assert run["status"] == ImportStatus.PARTIAL
        assert (run["items_found"], run["items_upserted"], run["items_failed"]) == (10, 9, 1)
        assert "Tyrell Corp" in run["error_summary"]


class TestWeatherPipeline:
    @pytest.mark.asyncio
    async def test_update_then_expire(self, sql_store, test_settings, clock):
        now = clock()
        await EntityResolver(sql_store, "NC").seed_counties()

        def alert(headline, ends_at):
            return WeatherAlertRecord(
                alert_id="urn:oid:flood", event="Flood Warning", status="Actual",
                severity="Severe", severity_level=3, category="flood",
                headline=headline, counties=["Wake", "Johnston"],
                starts_at=now - timedelta(hours=1), ends_at=ends_at,
                source_url="https://api.weather.gov/alerts/urn:oid:flood",
            )

        runner = ImportRunner(sql_store, test_settings, clock)
        first = await runner.run(
            RecordsAdapter(SourceKind.WEATHER, [alert("Flood Warning", now + timedelta(hours=1))])
        )
        second = await runner.run(
            RecordsAdapter(SourceKind.WEATHER, [alert("Flood Warning extended", now + timedelta(hours=1))])
        )

        assert first.inserted == 1
        assert second.updated == 1
        assert await sql_store.count(EntityKind.WEATHER_ALERT, {"headline": "Flood Warning extended"}) == 2

        later = ImportRunner(sql_store, test_settings, lambda: now + timedelta(hours=2))
        await later.run(RecordsAdapter(SourceKind.WEATHER, []))
        assert await sql_store.count(EntityKind.WEATHER_ALERT, {"status": "expired"}) == 2


class TestSQLStoreContract:
    @pytest.mark.asyncio
    async def test_duplicate_create(self, sql_store):
        fields = {
            "agency": "CPSC", "recall_id": "25-001", "title": "Space heater",
            "published_at": datetime(2024, 11, 18), "source_url": "https://www.cpsc.gov/Recalls/25-001",
        }
        created = await sql_store.create(EntityKind.RECALL, fields)
        assert created["id"] == 1

        with pytest.raises(DuplicateEntityError):
            await sql_store.create(EntityKind.RECALL, fields)
        assert await sql_store.count(EntityKind.RECALL) == 1

    @pytest.mark.asyncio
    async def test_update_missing(self, sql_store):
        with pytest.raises(DatabaseError):
            await sql_store.update(EntityKind.RECALL, 42, {"title": "x"})

    @pytest.mark.asyncio
    async def test_delete_older_than_and_update_before(self, sql_store):
        county = await sql_store.create(EntityKind.COUNTY, {
            "name": "Wake", "slug": "wake", "state_code": "NC", "fips": "37183",
        })
        cutoff = datetime(2024, 11, 13, 12, 0)
        for i, reported_at in enumerate([cutoff - timedelta(seconds=1), cutoff, cutoff + timedelta(hours=1)]):
            await sql_store.create(EntityKind.OUTAGE, {
                "utility": "Duke Energy", "county_id": county["id"], "customers_out": i + 1,
                "reported_at": reported_at, "source_url": "https://duke.test",
            })

        assert await sql_store.delete_older_than(EntityKind.OUTAGE, cutoff) == 1
        assert await sql_store.count(EntityKind.OUTAGE) == 2

        for alert_id, ends_at in [("a", cutoff - timedelta(hours=1)), ("b", None)]:
            await sql_store.create(EntityKind.WEATHER_ALERT, {
                "alert_id": alert_id, "county_id": county["id"], "event": "Wind Advisory",
                "status": "Actual", "starts_at": cutoff - timedelta(hours=3), "ends_at": ends_at,
                "source_url": "https://api.weather.gov/alerts/x",
            })

        changed = await sql_store.update_before(EntityKind.WEATHER_ALERT, "ends_at", cutoff, {"status": "expired"})
        again = await sql_store.update_before(EntityKind.WEATHER_ALERT, "ends_at", cutoff, {"status": "expired"})

        assert (changed, again) == (1, 0)
        assert (await sql_store.find(EntityKind.WEATHER_ALERT, {"alert_id": "b"}))["status"] == "Actual"
