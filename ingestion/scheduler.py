"""
Recurring and on-demand imports for every source kind.

APScheduler fires one cron job per source; each firing only enqueues a
job on that source's IngestionQueue, so overlapping firings never run
two imports of the same source at once. An hourly housekeeping job
cleans old job bookkeeping.
"""

from datetime import timedelta
from typing import Callable, Dict, Optional, Union
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.clock import Clock, utc_now
from core.config import Settings, settings as default_settings
from core.exceptions import SchedulerError
from ingestion.base import SourceAdapter
from ingestion.extractors.csv_extractor import WarnCSVExtractor
from ingestion.extractors.outage_extractor import OutageExtractor
from ingestion.extractors.recall_extractor import RecallExtractor
from ingestion.extractors.remote_jobs_extractor import RemoteJobsExtractor
from ingestion.extractors.rss_extractor import ScamRSSExtractor
from ingestion.extractors.weather_extractor import WeatherAlertExtractor
from ingestion.loaders.store import Store
from ingestion.queue import IngestionQueue, JobRecord, QueuePolicy
from ingestion.runner import ImportRunner
from models.base import SourceKind
from schemas.runs import ImportResult, QueueStats

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "ingest-cleanup"

AdapterFactory = Callable[[], SourceAdapter]

DEFAULT_POLICIES: Dict[SourceKind, QueuePolicy] = {
    SourceKind.WARN: QueuePolicy(cron="0 6 * * *", keep_completed=10, keep_failed=5),
    SourceKind.WEATHER: QueuePolicy(cron="*/5 * * * *", keep_completed=5, keep_failed=3),
    SourceKind.OUTAGES: QueuePolicy(cron="*/10 * * * *", keep_completed=5, keep_failed=3),
    SourceKind.SCAMS: QueuePolicy(cron="0 * * * *", keep_completed=10, keep_failed=5),
    SourceKind.RECALLS: QueuePolicy(cron="0 7 * * *", keep_completed=10, keep_failed=5),
    # Provider asks for at most 4 requests a day; no retries
    SourceKind.REMOTE_JOBS: QueuePolicy(
        cron="0 0,6,12,18 * * *",
        keep_completed=10,
        keep_failed=5,
        attempts=1,
        max_runs_per_window=4,
        window=timedelta(hours=24),
    ),
}


def build_extractors(settings: Settings = default_settings) -> Dict[SourceKind, AdapterFactory]:
    """Adapter factories configured from settings"""
    return {
        SourceKind.WARN: lambda: WarnCSVExtractor(
            source_url=settings.NC_WARN_SOURCE_URL,
            file_path=settings.NC_WARN_CSV_PATH,
            mode=settings.WARN_SOURCE_MODE,
        ),
        SourceKind.WEATHER: lambda: WeatherAlertExtractor(
            api_base=settings.NWS_API_BASE, state_code=settings.STATE_CODE
        ),
        SourceKind.OUTAGES: lambda: OutageExtractor(state_code=settings.STATE_CODE),
        SourceKind.RECALLS: lambda: RecallExtractor(
            nhtsa_url=settings.NHTSA_API_URL,
            cpsc_url=settings.CPSC_API_URL,
            fda_url=settings.FDA_API_URL,
            state_code=settings.STATE_CODE,
        ),
        SourceKind.SCAMS: lambda: ScamRSSExtractor(feed_url=settings.SCAM_FEED_URL),
        SourceKind.REMOTE_JOBS: lambda: RemoteJobsExtractor(
            api_url=settings.REMOTIVE_API_URL,
            limit=settings.REMOTE_JOBS_LIMIT,
            max_pages=settings.REMOTE_JOBS_MAX_PAGES,
            referral_tag=settings.REMOTE_JOBS_REFERRAL_TAG,
        ),
    }


class IngestionScheduler:
    """
    Owns one IngestionQueue per source kind plus the APScheduler instance
    that feeds them.

    Usage:
        scheduler = IngestionScheduler(store)
        scheduler.start()          # workers + recurring jobs
        scheduler.run_now("warn")  # ad-hoc import
        await scheduler.stop()
    """

    def __init__(
        self,
        store: Store,
        settings: Settings = default_settings,
        adapter_factories: Optional[Dict[SourceKind, AdapterFactory]] = None,
        policies: Optional[Dict[SourceKind, QueuePolicy]] = None,
        clock: Clock = utc_now,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.settings = settings
        self.clock = clock
        self.runner = ImportRunner(store, settings, clock)
        self.adapter_factories = adapter_factories or build_extractors(settings)
        self.policies = {**DEFAULT_POLICIES, **(policies or {})}
        self.scheduler = scheduler or AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)

        # One adapter per source so circuit breaker state carries across runs
        self._adapters: Dict[SourceKind, SourceAdapter] = {}

        self.queues: Dict[SourceKind, IngestionQueue] = {
            kind: IngestionQueue(kind, self._handler(kind), self.policies[kind], clock)
            for kind in self.adapter_factories
        }

    def adapter(self, kind: SourceKind) -> SourceAdapter:
        """The adapter of a source, built on first use"""
        if kind not in self._adapters:
            self._adapters[kind] = self.adapter_factories[kind]()
        return self._adapters[kind]

    def _handler(self, kind: SourceKind):
        async def handle(job: JobRecord) -> ImportResult:
            return await self.runner.run(self.adapter(kind), trigger=job.trigger)
        return handle

    def queue(self, kind: Union[SourceKind, str]) -> IngestionQueue:
        try:
            return self.queues[SourceKind(kind)]
        except (KeyError, ValueError):
            raise SchedulerError(f"Unknown source kind: {kind}", context={"source_kind": str(kind)})

    # ------------------------------------------------------------------
    # Recurring jobs
    # ------------------------------------------------------------------

    async def _enqueue_scheduled(self, kind: SourceKind):
        self.queue(kind).add(trigger="scheduled")

    async def _cleanup(self):
        self.clean_old_jobs()

    def schedule_all(self):
        """
        Register the recurring job of every source, replacing what exists.

        Calling it again leaves exactly one recurring job per source.
        """
        for kind, queue in self.queues.items():
            job_id = f"{queue.name}-recurring"
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)

            self.scheduler.add_job(
                self._enqueue_scheduled,
                trigger=CronTrigger.from_crontab(
                    queue.policy.cron, timezone=self.settings.SCHEDULER_TIMEZONE
                ),
                args=[kind],
                id=job_id,
                name=f"Scheduled {kind.value} import",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info(f"Scheduled {kind.value} imports: {queue.policy.cron}")

        if self.scheduler.get_job(CLEANUP_JOB_ID) is not None:
            self.scheduler.remove_job(CLEANUP_JOB_ID)
        self.scheduler.add_job(
            self._cleanup,
            trigger=IntervalTrigger(hours=1),
            id=CLEANUP_JOB_ID,
            name="Clean old ingestion jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    # ------------------------------------------------------------------
    # On-demand
    # ------------------------------------------------------------------

    def run_now(self, kind: Union[SourceKind, str]) -> str:
        """Enqueue an immediate import; returns the job id"""
        job_id = self.queue(kind).add(trigger="manual")
        logger.info(f"Queued manual {SourceKind(kind).value} import ({job_id})")
        return job_id

    def run_all_now(self) -> Dict[SourceKind, str]:
        return {kind: self.run_now(kind) for kind in self.queues}

    def get_stats(self) -> Dict[SourceKind, QueueStats]:
        return {kind: queue.stats() for kind, queue in self.queues.items()}

    def clean_old_jobs(self, older_than_hours: Optional[int] = None, limit: Optional[int] = None) -> int:
        hours = older_than_hours if older_than_hours is not None else self.settings.JOB_RETENTION_HOURS
        limit = limit if limit is not None else self.settings.JOB_CLEAN_LIMIT
        removed = sum(
            queue.clean(timedelta(hours=hours), limit) for queue in self.queues.values()
        )
        if removed:
            logger.info(f"Cleaned {removed} ingestion jobs older than {hours}h")
        return removed

    async def wait_idle(self):
        for queue in self.queues.values():
            await queue.wait_idle()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start queue workers and the recurring schedule"""
        for queue in self.queues.values():
            queue.start()
        self.schedule_all()
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Ingestion scheduler started")

    async def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        for queue in self.queues.values():
            await queue.stop()
        logger.info("Ingestion scheduler stopped")
