"""
In-process job queue, one per source kind.

Each queue has exactly one worker task, so at most one import per source
is in flight. Failed jobs are retried with exponential backoff up to the
policy's attempt count. Finished job bookkeeping is trimmed to the last N
completed/failed entries and can be cleaned by age.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set
import asyncio
import enum
import logging
import uuid

from core.clock import Clock, utc_now
from core.exceptions import NonRetryableError, SchedulerError
from models.base import SourceKind
from schemas.runs import ImportResult, QueueStats

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class QueuePolicy:
    """Recurrence, retry and retention settings for one source queue"""

    cron: str
    keep_completed: int = 10
    keep_failed: int = 5
    attempts: int = 3
    backoff_seconds: float = 30.0
    max_runs_per_window: Optional[int] = None
    window: timedelta = timedelta(hours=24)


@dataclass
class JobRecord:
    id: str
    source: SourceKind
    trigger: str
    enqueued_at: datetime
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[ImportResult] = None
    error: Optional[str] = None


JobHandler = Callable[[JobRecord], Awaitable[ImportResult]]


class IngestionQueue:
    """
    Single-worker queue for one source kind.

    Features:
    - Concurrency 1 (one worker task pulling jobs in order)
    - Retry with exponential backoff (policy.attempts, policy.backoff_seconds)
    - Optional cap on job starts per rolling window (provider rate guidance)
    - Keep-last-N retention plus age-based clean()
    """

    def __init__(
        self,
        source: SourceKind,
        handler: JobHandler,
        policy: QueuePolicy,
        clock: Clock = utc_now,
    ):
        self.source = source
        self.name = f"ingest-{source.value}"
        self.handler = handler
        self.policy = policy
        self.clock = clock

        self._jobs: Dict[str, JobRecord] = {}
        self._pending: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._retry_tasks: Set[asyncio.Task] = set()
        self._run_starts: Deque[datetime] = deque()
        self._closed = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        if self._closed:
            raise SchedulerError(f"Queue {self.name} has been stopped", context={"queue": self.name})
        if self.running:
            return
        self._worker = asyncio.create_task(self._work(), name=f"{self.name}-worker")
        logger.info(f"Queue {self.name} worker started")

    async def stop(self):
        self._closed = True
        tasks = list(self._retry_tasks)
        if self._worker is not None:
            tasks.append(self._worker)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        self._retry_tasks.clear()
        logger.info(f"Queue {self.name} worker stopped")

    def add(self, trigger: str = "manual") -> str:
        """Enqueue one import job; returns its id"""
        if self._closed:
            raise SchedulerError(f"Queue {self.name} has been stopped", context={"queue": self.name})

        job = JobRecord(
            id=uuid.uuid4().hex,
            source=self.source,
            trigger=trigger,
            enqueued_at=self.clock(),
        )
        self._jobs[job.id] = job
        self._pending.put_nowait(job.id)
        logger.debug(f"Queue {self.name}: enqueued job {job.id} ({trigger})")
        return job.id

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def jobs(self, state: Optional[JobState] = None) -> List[JobRecord]:
        return [j for j in self._jobs.values() if state is None or j.state == state]

    def stats(self) -> QueueStats:
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state] += 1
        return QueueStats(
            waiting=counts[JobState.WAITING],
            active=counts[JobState.ACTIVE],
            completed_count=counts[JobState.COMPLETED],
            failed_count=counts[JobState.FAILED],
        )

    async def wait_idle(self):
        """Wait until no job is queued, running or waiting for a retry"""
        while True:
            await self._pending.join()
            if not self._retry_tasks:
                return
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    def clean(self, older_than: timedelta, limit: int) -> int:
        """Drop up to `limit` finished jobs that finished before now - older_than"""
        cutoff = self.clock() - older_than
        doomed = [
            job.id for job in self._finished()
            if job.finished_at is not None and job.finished_at < cutoff
        ][:limit]
        for job_id in doomed:
            del self._jobs[job_id]
        if doomed:
            logger.info(f"Queue {self.name}: cleaned {len(doomed)} old jobs")
        return len(doomed)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _work(self):
        while True:
            job_id = await self._pending.get()
            try:
                await self._process(job_id)
            finally:
                self._pending.task_done()

    def _window_full(self, now: datetime) -> bool:
        if self.policy.max_runs_per_window is None:
            return False
        while self._run_starts and self._run_starts[0] <= now - self.policy.window:
            self._run_starts.popleft()
        return len(self._run_starts) >= self.policy.max_runs_per_window

    async def _process(self, job_id: str):
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.WAITING:
            return

        now = self.clock()
        if self._window_full(now):
            job.state = JobState.FAILED
            job.finished_at = now
            job.error = (
                f"Run limit reached: {self.policy.max_runs_per_window} runs per "
                f"{self.policy.window}"
            )
            logger.warning(f"Queue {self.name}: job {job.id} not started ({job.error})")
            self._trim()
            return

        job.state = JobState.ACTIVE
        job.attempts_made += 1
        job.started_at = now
        self._run_starts.append(now)
        logger.info(f"Queue {self.name}: job {job.id} attempt {job.attempts_made}/{self.policy.attempts}")

        try:
            job.result = await self.handler(job)
        except Exception as e:
            job.error = str(e)
            if job.attempts_made < self.policy.attempts and not isinstance(e, NonRetryableError):
                delay = self.policy.backoff_seconds * (2 ** (job.attempts_made - 1))
                job.state = JobState.WAITING
                logger.warning(
                    f"Queue {self.name}: job {job.id} failed ({e}); retrying in {delay} seconds"
                )
                self._schedule_retry(job.id, delay)
            else:
                job.state = JobState.FAILED
                job.finished_at = self.clock()
                logger.error(
                    f"Queue {self.name}: job {job.id} failed after {job.attempts_made} attempts: {e}"
                )
        else:
            job.state = JobState.COMPLETED
            job.finished_at = self.clock()
            job.error = None
            logger.info(f"Queue {self.name}: job {job.id} completed ({job.result.status.value})")

        self._trim()

    def _schedule_retry(self, job_id: str, delay: float):
        task = asyncio.create_task(self._requeue(job_id, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue(self, job_id: str, delay: float):
        await asyncio.sleep(delay)
        if not self._closed and job_id in self._jobs:
            self._pending.put_nowait(job_id)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _finished(self) -> List[JobRecord]:
        finished = [j for j in self._jobs.values() if j.state in (JobState.COMPLETED, JobState.FAILED)]
        return sorted(finished, key=lambda j: j.finished_at or j.enqueued_at)

    def _trim(self):
        for state, keep in (
            (JobState.COMPLETED, self.policy.keep_completed),
            (JobState.FAILED, self.policy.keep_failed),
        ):
            finished = [j for j in self._finished() if j.state == state]
            for job in finished[: max(0, len(finished) - keep)]:
                del self._jobs[job.id]
