"""
Unit tests for the per-source queues and the scheduler
"""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from core.exceptions import AuthenticationError, NetworkError, SchedulerError
from ingestion.base import SourceAdapter
from ingestion.queue import IngestionQueue, JobState, QueuePolicy
from ingestion.scheduler import DEFAULT_POLICIES, IngestionScheduler
from models.base import EntityKind, ImportStatus, SourceKind
from schemas.runs import ImportResult


def ok_result(kind=SourceKind.WARN) -> ImportResult:
    return ImportResult(run_id=1, source=kind, status=ImportStatus.COMPLETED)


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class EmptyAdapter(SourceAdapter):
    def __init__(self, kind, error=None):
        super().__init__(source_name=f"empty_{kind.value}")
        self.source_kind = kind
        self.error = error

    async def fetch(self):
        if self.error is not None:
            raise self.error
        return []


def empty_factories(failing=()):
    return {
        kind: (lambda kind=kind: EmptyAdapter(
            kind, error=NetworkError("provider down") if kind in failing else None
        ))
        for kind in SourceKind
    }


class TestIngestionQueue:
    @pytest.mark.asyncio
    async def test_single_worker_runs_jobs_in_order(self):
        running, peak, order = [0], [0], []

        async def handler(job):
            running[0] += 1
            peak[0] = max(peak[0], running[0])
            await asyncio.sleep(0.01)
            order.append(job.id)
            running[0] -= 1
            return ok_result()

        queue = IngestionQueue(SourceKind.WARN, handler, QueuePolicy(cron="0 6 * * *"))
        queue.start()
        ids = [queue.add() for _ in range(3)]
        await queue.wait_idle()
        await queue.stop()

        assert peak[0] == 1
        assert order == ids
        assert queue.stats().completed_count == 3

    @pytest.mark.asyncio
    async def test_retry_with_backoff_then_success(self):
        attempts = []

        async def handler(job):
            attempts.append(job.attempts_made)
            if len(attempts) < 3:
                raise NetworkError("provider down")
            return ok_result()

        queue = IngestionQueue(
            SourceKind.WEATHER, handler, QueuePolicy(cron="*/5 * * * *", attempts=3, backoff_seconds=0)
        )
        queue.start()
        job_id = queue.add()
        await queue.wait_idle()
        await queue.stop()

        job = queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.attempts_made == 3
        assert attempts == [1, 2, 3]
        assert job.error is None

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        async def handler(job):
            raise NetworkError("provider down")

        queue = IngestionQueue(
            SourceKind.OUTAGES, handler, QueuePolicy(cron="*/10 * * * *", attempts=2, backoff_seconds=0)
        )
        queue.start()
        job_id = queue.add()
        await queue.wait_idle()
        await queue.stop()

        job = queue.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts_made == 2
        assert "provider down" in job.error
        assert queue.stats().failed_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_not_retried(self):
        async def handler(job):
            raise AuthenticationError("forbidden")

        queue = IngestionQueue(
            SourceKind.RECALLS, handler, QueuePolicy(cron="0 7 * * *", attempts=3, backoff_seconds=0)
        )
        queue.start()
        job_id = queue.add()
        await queue.wait_idle()
        await queue.stop()

        assert queue.get_job(job_id).attempts_made == 1
        assert queue.get_job(job_id).state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_worker_survives_failed_job(self):
        async def handler(job):
            if job.trigger == "bad":
                raise ValueError("boom")
            return ok_result()

        queue = IngestionQueue(SourceKind.SCAMS, handler, QueuePolicy(cron="0 * * * *", attempts=1))
        queue.start()
        bad, good = queue.add("bad"), queue.add("good")
        await queue.wait_idle()
        await queue.stop()

        assert queue.get_job(bad).state == JobState.FAILED
        assert queue.get_job(good).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_keep_last_n(self):
        async def handler(job):
            return ok_result()

        queue = IngestionQueue(
            SourceKind.WEATHER, handler, QueuePolicy(cron="*/5 * * * *", keep_completed=2)
        )
        queue.start()
        ids = [queue.add() for _ in range(5)]
        await queue.wait_idle()
        await queue.stop()

        assert queue.stats().completed_count == 2
        assert [j.id for j in queue.jobs(JobState.COMPLETED)] == ids[-2:]

    @pytest.mark.asyncio
    async def test_run_window_cap(self):
        clock = MutableClock(datetime(2024, 11, 20, 0, 0))

        async def handler(job):
            return ok_result(SourceKind.REMOTE_JOBS)

        policy = QueuePolicy(cron="0 0,6,12,18 * * *", attempts=1, max_runs_per_window=2)
        queue = IngestionQueue(SourceKind.REMOTE_JOBS, handler, policy, clock)
        queue.start()
        first = [queue.add() for _ in range(3)]
        await queue.wait_idle()

        assert [queue.get_job(i).state for i in first] == [
            JobState.COMPLETED, JobState.COMPLETED, JobState.FAILED
        ]
        assert "Run limit" in queue.get_job(first[2]).error

        # Window has rolled over
        clock.now += timedelta(hours=24, seconds=1)
        later = queue.add()
        await queue.wait_idle()
        await queue.stop()
        assert queue.get_job(later).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_clean_by_age(self):
        clock = MutableClock(datetime(2024, 11, 20, 0, 0))

        async def handler(job):
            return ok_result()

        queue = IngestionQueue(SourceKind.WARN, handler, QueuePolicy(cron="0 6 * * *"), clock)
        queue.start()
        for _ in range(3):
            queue.add()
        await queue.wait_idle()
        await queue.stop()

        assert queue.clean(timedelta(hours=24), limit=100) == 0
        clock.now += timedelta(hours=25)
        assert queue.clean(timedelta(hours=24), limit=2) == 2
        assert queue.stats().completed_count == 1

    @pytest.mark.asyncio
    async def test_add_after_stop_rejected(self):
        async def handler(job):
            return ok_result()

        queue = IngestionQueue(SourceKind.WARN, handler, QueuePolicy(cron="0 6 * * *"))
        queue.start()
        await queue.stop()

        with pytest.raises(SchedulerError):
            queue.add()


class TestIngestionScheduler:
    def test_default_policies(self):
        assert DEFAULT_POLICIES[SourceKind.WEATHER].cron == "*/5 * * * *"
        assert DEFAULT_POLICIES[SourceKind.OUTAGES].cron == "*/10 * * * *"
        assert DEFAULT_POLICIES[SourceKind.WARN].cron == "0 6 * * *"
        assert DEFAULT_POLICIES[SourceKind.REMOTE_JOBS].attempts == 1
        assert DEFAULT_POLICIES[SourceKind.REMOTE_JOBS].max_runs_per_window == 4
        assert (DEFAULT_POLICIES[SourceKind.WEATHER].keep_completed,
                DEFAULT_POLICIES[SourceKind.WEATHER].keep_failed) == (5, 3)

    @pytest.mark.asyncio
    async def test_schedule_all_is_idempotent(self, memory_store, test_settings):
        scheduler = IngestionScheduler(memory_store, test_settings, adapter_factories=empty_factories())

        scheduler.schedule_all()
        scheduler.schedule_all()

        jobs = scheduler.scheduler.get_jobs()
        assert len(jobs) == len(SourceKind) + 1
        assert sorted(j.id for j in jobs) == sorted(
            [f"ingest-{kind.value}-recurring" for kind in SourceKind] + ["ingest-cleanup"]
        )

        weather = scheduler.scheduler.get_job("ingest-weather-recurring")
        fields = {f.name: str(f) for f in weather.trigger.fields}
        assert fields["minute"] == "*/5"

    @pytest.mark.asyncio
    async def test_run_now_unknown_source(self, memory_store, test_settings):
        scheduler = IngestionScheduler(memory_store, test_settings, adapter_factories=empty_factories())
        with pytest.raises(SchedulerError):
            scheduler.run_now("crypto")

    @pytest.mark.asyncio
    async def test_run_all_now(self, memory_store, test_settings):
        scheduler = IngestionScheduler(memory_store, test_settings, adapter_factories=empty_factories())
        for queue in scheduler.queues.values():
            queue.start()

        job_ids = scheduler.run_all_now()
        await scheduler.wait_idle()
        stats = scheduler.get_stats()
        await scheduler.stop()

        assert set(job_ids) == set(SourceKind)
        assert all(s.completed_count == 1 for s in stats.values())
        assert await memory_store.count(EntityKind.IMPORT_RUN) == len(SourceKind)
        assert scheduler.queue("warn").get_job(job_ids[SourceKind.WARN]).trigger == "manual"

    @pytest.mark.asyncio
    async def test_failing_source_isolated(self, memory_store, test_settings):
        scheduler = IngestionScheduler(
            memory_store,
            test_settings,
            adapter_factories=empty_factories(failing={SourceKind.WEATHER}),
            policies={SourceKind.WEATHER: QueuePolicy(cron="*/5 * * * *", attempts=2, backoff_seconds=0)},
        )
        for queue in scheduler.queues.values():
            queue.start()

        scheduler.run_now(SourceKind.WEATHER)
        scheduler.run_now(SourceKind.SCAMS)
        await scheduler.wait_idle()
        stats = scheduler.get_stats()
        await scheduler.stop()

        assert stats[SourceKind.WEATHER].failed_count == 1
        assert stats[SourceKind.SCAMS].completed_count == 1
        # Each attempt leaves a failed audit row
        assert await memory_store.count(
            EntityKind.IMPORT_RUN, {"source": SourceKind.WEATHER, "status": ImportStatus.FAILED}
        ) == 2

    @pytest.mark.asyncio
    async def test_adapter_reused_so_breaker_trips(self, memory_store, test_settings):
        built = []

        class MissingFeedAdapter(SourceAdapter):
            source_kind = SourceKind.SCAMS

            async def fetch(self):
                async with self._client() as client:
                    await self._get(client, "https://ncdoj.test/feed/")
                return []

        def factory():
            adapter = MissingFeedAdapter(
                source_name="missing_feed", max_retries=1, retry_delay=0.0,
                transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            )
            built.append(adapter)
            return adapter

        scheduler = IngestionScheduler(
            memory_store,
            test_settings,
            adapter_factories={**empty_factories(), SourceKind.SCAMS: factory},
            policies={SourceKind.SCAMS: QueuePolicy(cron="0 * * * *", attempts=1)},
        )
        scheduler.queue(SourceKind.SCAMS).start()

        for _ in range(6):
            scheduler.run_now(SourceKind.SCAMS)
        await scheduler.wait_idle()
        await scheduler.stop()

        assert len(built) == 1
        assert scheduler.adapter(SourceKind.SCAMS) is built[0]
        runs = memory_store.all(EntityKind.IMPORT_RUN)
        assert [r["status"] for r in runs] == [ImportStatus.FAILED] * 6
        assert "Circuit breaker is open" in runs[-1]["error_summary"]
        assert "Circuit breaker" not in runs[4]["error_summary"]

    @pytest.mark.asyncio
    async def test_clean_old_jobs(self, memory_store, test_settings):
        clock = MutableClock(datetime(2024, 11, 20, 0, 0))
        scheduler = IngestionScheduler(
            memory_store, test_settings, adapter_factories=empty_factories(), clock=clock
        )
        for queue in scheduler.queues.values():
            queue.start()

        scheduler.run_all_now()
        await scheduler.wait_idle()
        await scheduler.stop()

        assert scheduler.clean_old_jobs() == 0
        clock.now += timedelta(hours=test_settings.JOB_RETENTION_HOURS + 1)
        assert scheduler.clean_old_jobs() == len(SourceKind)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, memory_store, test_settings):
        scheduler = IngestionScheduler(memory_store, test_settings, adapter_factories=empty_factories())

        scheduler.start()
        assert scheduler.scheduler.running
        assert all(q.running for q in scheduler.queues.values())

        await scheduler.stop()
        assert not any(q.running for q in scheduler.queues.values())
