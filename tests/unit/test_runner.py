"""
Unit tests for the import orchestrator
"""

import asyncio
from datetime import date, datetime, timedelta

import httpx
import pytest

from core.config import Settings
from core.exceptions import (
    CSVExtractionError,
    DatabaseError,
    ExtractionError,
    NetworkError,
)
from ingestion.base import SourceAdapter
from ingestion.extractors.csv_extractor import WarnCSVExtractor
from ingestion.loaders.memory_store import InMemoryStore
from ingestion.runner import ImportRunner
from models.base import EntityKind, ImportStatus, SourceKind
from schemas.normalized import OutageRecord, WarnNoticeRecord


class StaticAdapter(SourceAdapter):
    """Adapter returning fixed records (or failing) without any I/O"""

    def __init__(self, kind, records=None, error=None, delay=0.0):
        super().__init__(source_name=f"static_{kind.value}")
        self.source_kind = kind
        self.records = records or []
        self.error = error
        self.delay = delay

    async def fetch(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)


class FailingStore(InMemoryStore):
    """In-memory store whose writes of one kind fail"""

    def __init__(self, fail_create=None, fail_delete=False):
        super().__init__()
        self.fail_create = fail_create
        self.fail_delete = fail_delete

    async def create(self, kind, fields):
        if kind == self.fail_create:
            raise DatabaseError("connection reset", context={"operation": "create"})
        return await super().create(kind, fields)

    async def delete_older_than(self, kind, cutoff, field=None):
        if self.fail_delete:
            raise DatabaseError("connection reset", context={"operation": "delete"})
        return await super().delete_older_than(kind, cutoff, field)


def warn_adapter(csv_text, transport) -> WarnCSVExtractor:
    return WarnCSVExtractor(
        source_url="https://warn.test/data",
        file_path="/nonexistent/manual.csv",
        mode="auto",
        transport=transport({"/data/warn-notices.csv": httpx.Response(200, text=csv_text)}),
        max_retries=1,
        retry_delay=0.0,
    )


def bad_notice(n: int) -> WarnNoticeRecord:
    return WarnNoticeRecord(
        employer=f"Employer {n}", county="Wake", notice_date_raw="TBD", source_url="u"
    )


class TestImportRunner:
    @pytest.mark.asyncio
    async def test_reingestion_is_idempotent(self, seeded_store, test_settings, clock, transport, warn_csv):
        runner = ImportRunner(seeded_store, test_settings, clock)

        first = await runner.run(warn_adapter(warn_csv, transport))
        second = await runner.run(warn_adapter(warn_csv, transport))

        assert first.status == ImportStatus.COMPLETED
        assert (first.items_found, first.items_upserted, first.inserted) == (10, 10, 10)
        assert second.status == ImportStatus.COMPLETED
        assert (second.items_found, second.items_upserted, second.items_skipped) == (10, 0, 10)

        assert await seeded_store.count(EntityKind.WARN_NOTICE) == 10
        assert await seeded_store.count(EntityKind.COMPANY) == 10

        runs = seeded_store.all(EntityKind.IMPORT_RUN)
        assert [r["status"] for r in runs] == [ImportStatus.COMPLETED, ImportStatus.COMPLETED]
        assert runs[0]["source"] == SourceKind.WARN
        assert runs[0]["source_name"] == "nc_warn_csv"
        assert runs[0]["finished_at"] is not None
        assert runs[0]["error_summary"] is None

    @pytest.mark.asyncio
    async def test_one_bad_row_gives_partial(self, seeded_store, test_settings, clock, transport, warn_csv):
        csv_text = warn_csv.replace("11/06/2024", "TBD")
        runner = ImportRunner(seeded_store, test_settings, clock)

        result = await runner.run(warn_adapter(csv_text, transport))

        assert result.status == ImportStatus.PARTIAL
        assert (result.items_found, result.items_upserted, result.items_failed) == (10, 9, 1)
        assert result.items_upserted + result.items_skipped + result.items_failed == result.items_found
        assert await seeded_store.count(EntityKind.WARN_NOTICE) == 9

        run = seeded_store.all(EntityKind.IMPORT_RUN)[0]
        assert run["status"] == ImportStatus.PARTIAL
        assert run["items_failed"] == 1
        assert "Tyrell Corp" in run["error_summary"]
        assert "TBD" in run["error_summary"]

    @pytest.mark.asyncio
    async def test_every_record_failing_gives_failed(self, seeded_store, test_settings, clock):
        runner = ImportRunner(seeded_store, test_settings, clock)
        adapter = StaticAdapter(SourceKind.WARN, records=[bad_notice(1), bad_notice(2)])

        result = await runner.run(adapter)

        assert result.status == ImportStatus.FAILED
        assert result.items_failed == 2
        assert len(result.errors) == 2

    @pytest.mark.asyncio
    async def test_no_records_is_completed(self, memory_store, test_settings, clock):
        result = await ImportRunner(memory_store, test_settings, clock).run(
            StaticAdapter(SourceKind.SCAMS)
        )
        assert result.status == ImportStatus.COMPLETED
        assert result.items_found == 0

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_run_and_reraises(self, seeded_store, test_settings, clock, transport):
        adapter = WarnCSVExtractor(
            source_url="https://warn.test/data",
            file_path="/nonexistent/manual.csv",
            mode="auto",
            transport=transport({}),
            max_retries=1,
            retry_delay=0.0,
        )
        runner = ImportRunner(seeded_store, test_settings, clock)

        with pytest.raises(CSVExtractionError):
            await runner.run(adapter)

        runs = seeded_store.all(EntityKind.IMPORT_RUN)
        assert len(runs) == 1
        assert runs[0]["status"] == ImportStatus.FAILED
        assert "No usable layoff CSV" in runs[0]["error_summary"]
        assert await seeded_store.count(EntityKind.WARN_NOTICE) == 0

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, memory_store, clock):
        settings = Settings(FETCH_TIMEOUT_SECONDS=0.01)
        runner = ImportRunner(memory_store, settings, clock)

        with pytest.raises(NetworkError):
            await runner.run(StaticAdapter(SourceKind.WEATHER, delay=1.0))

        run = memory_store.all(EntityKind.IMPORT_RUN)[0]
        assert run["status"] == ImportStatus.FAILED
        assert "timed out" in run["error_summary"]

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_wrapped(self, memory_store, test_settings, clock):
        runner = ImportRunner(memory_store, test_settings, clock)

        with pytest.raises(ExtractionError) as exc_info:
            await runner.run(StaticAdapter(SourceKind.RECALLS, error=KeyError("results")))

        assert isinstance(exc_info.value.original_exception, KeyError)
        assert memory_store.all(EntityKind.IMPORT_RUN)[0]["status"] == ImportStatus.FAILED

    @pytest.mark.asyncio
    async def test_consecutive_store_failures_abort(self, test_settings, clock):
        store = FailingStore(fail_create=EntityKind.WARN_NOTICE)
        runner = ImportRunner(store, test_settings, clock)
        await runner.resolver.seed_counties()

        records = [
            WarnNoticeRecord(
                employer=f"Employer {n}", county="Wake", notice_date_raw="11/15/2024",
                notice_date=date(2024, 11, 15), impacted=n, source_url="u",
            )
            for n in range(1, 11)
        ]

        with pytest.raises(DatabaseError):
            await runner.run(StaticAdapter(SourceKind.WARN, records=records))

        run = store.all(EntityKind.IMPORT_RUN)[0]
        assert run["status"] == ImportStatus.FAILED
        assert run["items_found"] == 10
        assert run["items_failed"] == test_settings.MAX_CONSECUTIVE_STORE_FAILURES
        # The failure that ended the run is listed once, with its record
        lines = run["error_summary"].split("\n")
        assert len(lines) == test_settings.MAX_CONSECUTIVE_STORE_FAILURES
        assert lines[-1].startswith("Employer 5")
        assert run["run_metadata"]["error_count"] == test_settings.MAX_CONSECUTIVE_STORE_FAILURES

    @pytest.mark.asyncio
    async def test_cancelled_run_marked_failed(self, memory_store, test_settings, clock):
        runner = ImportRunner(memory_store, test_settings, clock)

        task = asyncio.create_task(runner.run(StaticAdapter(SourceKind.OUTAGES, delay=10.0)))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        run = memory_store.all(EntityKind.IMPORT_RUN)[0]
        assert run["status"] == ImportStatus.FAILED
        assert run["finished_at"] is not None
        assert "Import cancelled" in run["error_summary"]

    @pytest.mark.asyncio
    async def test_prune_failure_gives_partial(self, test_settings, clock):
        store = FailingStore(fail_delete=True)
        runner = ImportRunner(store, test_settings, clock)
        record = OutageRecord(
            utility="Duke Energy", county="Wake", customers_out=10,
            reported_at=clock(), source_url="https://duke.test",
        )

        result = await runner.run(StaticAdapter(SourceKind.OUTAGES, records=[record]))

        assert result.status == ImportStatus.PARTIAL
        assert result.items_upserted == 1
        assert result.items_failed == 0
        assert result.errors[0].startswith("prune:")

    @pytest.mark.asyncio
    async def test_pruning_counted(self, seeded_store, test_settings, clock):
        now = clock()
        await seeded_store.create(EntityKind.OUTAGE, {
            "utility": "Duke Energy", "county_id": 1, "customers_out": 5,
            "reported_at": now - timedelta(days=8),
        })
        record = OutageRecord(
            utility="Duke Energy", county="Wake", customers_out=10,
            reported_at=now, source_url="https://duke.test",
        )

        result = await ImportRunner(seeded_store, test_settings, clock).run(
            StaticAdapter(SourceKind.OUTAGES, records=[record])
        )

        assert result.items_pruned == 1
        assert seeded_store.all(EntityKind.IMPORT_RUN)[0]["items_pruned"] == 1
        assert await seeded_store.count(EntityKind.OUTAGE) == 1

    @pytest.mark.asyncio
    async def test_error_summary_capped(self, seeded_store, clock):
        settings = Settings(ERROR_SUMMARY_LIMIT=3, ERROR_MESSAGE_MAX_LENGTH=40)
        runner = ImportRunner(seeded_store, settings, clock)

        result = await runner.run(
            StaticAdapter(SourceKind.WARN, records=[bad_notice(n) for n in range(6)])
        )

        summary = seeded_store.all(EntityKind.IMPORT_RUN)[0]["error_summary"]
        assert len(result.errors) == 6
        assert len(summary.split("\n")) == 3
        assert all(len(line) <= 40 for line in summary.split("\n"))

    @pytest.mark.asyncio
    async def test_trigger_recorded(self, memory_store, test_settings, clock):
        await ImportRunner(memory_store, test_settings, clock).run(
            StaticAdapter(SourceKind.SCAMS), trigger="scheduled"
        )
        run = memory_store.all(EntityKind.IMPORT_RUN)[0]
        assert run["run_metadata"]["trigger"] == "scheduled"
        assert run["started_at"] == datetime(2024, 11, 20, 12, 0)
