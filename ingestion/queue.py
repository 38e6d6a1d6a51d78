"""
In-process ingest queue.

Single node, single worker: pending jobs sit in a min-heap keyed by
(next_run_at, sequence), an APScheduler interval job fires every
poll_interval and spawns tick(), and the _processing flag guarantees that at
most one job executes at a time. stop() halts future ticks and never
interrupts a running job.

Retries happen for two separate causes:
- ZERO_RESULT: an event sync succeeded but saw no events yet
- FAILURE: the executor raised

A job that fails max_attempts times is dead: it goes to the dead-letter list,
is reported to the sink with a TerminalJobFailure and never runs again.
"""

import asyncio
import heapq
import itertools
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, Union
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from ingestion.backoff import BackoffPolicy
from ingestion.jobs import (
    DEFAULT_MAX_ATTEMPTS,
    IngestJob,
    JobKind,
    JobPayload,
    JobState,
    RescheduleCause,
)
from ingestion.sinks import JobEventSink, LoggingJobSink
from core.exceptions import TerminalJobFailure, ValidationError
import logging

logger = logging.getLogger(__name__)

Executor = Callable[[IngestJob], Awaitable[Optional[Dict[str, Any]]]]

DEAD_LETTER_LIMIT = 100
STATUS_PREVIEW_SIZE = 10


class IngestQueue:
    """
    Typed job queue with backoff, bounded retry and dead-lettering.

    Attributes:
        executor: Coroutine function running one job, usually the orchestrator
        poll_interval: Seconds between ticks; bounds scheduling granularity only
        backoff: Retry delay policy
        sink: Lifecycle observer
        clock: Wall clock in epoch seconds, injectable for tests
    """

    def __init__(
        self,
        executor: Executor,
        *,
        poll_interval: float = 1.0,
        backoff: Optional[BackoffPolicy] = None,
        sink: Optional[JobEventSink] = None,
        clock: Callable[[], float] = time.time,
        scheduler: Optional[AsyncIOScheduler] = None,
        job_id: str = "ingest_queue_tick"
    ):
        self.executor = executor
        self.poll_interval = poll_interval
        self.backoff = backoff or BackoffPolicy()
        self.sink = sink or LoggingJobSink()
        self.clock = clock

        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._timer_job_id = job_id

        self._heap: List[Tuple[float, int, IngestJob]] = []
        self._sequence = itertools.count()
        self._dead: Deque[IngestJob] = deque(maxlen=DEAD_LETTER_LIMIT)
        self._inflight: Set[asyncio.Task] = set()
        self._running = False
        self._processing = False
        self._current: Optional[IngestJob] = None

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        kind: Union[JobKind, str],
        payload: Optional[JobPayload] = None,
        *,
        max_attempts: Optional[int] = None,
        delay: float = 0.0
    ) -> str:
        """
        Add a job and return its id.

        Raises:
            ValidationError: Unknown kind or max_attempts below 1
        """
        kind = JobKind.parse(kind)
        if max_attempts is None:
            max_attempts = DEFAULT_MAX_ATTEMPTS[kind]
        if max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1",
                context={"field_name": "max_attempts", "field_value": max_attempts}
            )

        now = self.clock()
        job = IngestJob(
            kind=kind,
            payload=payload or JobPayload(),
            max_attempts=max_attempts,
            next_run_at=now + max(0.0, delay),
            enqueued_at=now,
        )
        self._push(job)

        logger.info(
            f"Job enqueued: {job.id}",
            extra={"job_id": job.id, "job_kind": kind.value, "next_run_at": job.next_run_at}
        )
        return job.id

    def _push(self, job: IngestJob):
        job.state = JobState.PENDING
        heapq.heappush(self._heap, (job.next_run_at, next(self._sequence), job))

    def _pop_due(self, now: float) -> Optional[IngestJob]:
        if self._heap and self._heap[0][0] <= now:
            return heapq.heappop(self._heap)[2]
        return None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[IngestJob]:
        """
        One scheduling step.

        Returns the executed job, or None when a job is already executing or
        nothing is due.
        """
        if self._processing:
            return None

        job = self._pop_due(self.clock())
        if job is None:
            return None

        self._processing = True
        self._current = job
        try:
            await self._execute(job)
        finally:
            self._processing = False
            self._current = None
        return job

    async def _execute(self, job: IngestJob):
        job.state = JobState.RUNNING
        await self._notify("on_job_started", job)
        started = time.monotonic()

        try:
            result = await self.executor(job) or {}
        except Exception as e:
            await self._handle_failure(job, e, time.monotonic() - started)
            return

        duration = time.monotonic() - started
        job.state = JobState.COMPLETED
        await self._notify("on_job_completed", job, result, duration)

        if (
            job.kind == JobKind.FETCH_EVENTS
            and result.get("eventsFetched", 0) == 0
            and job.attempts + 1 < job.max_attempts
        ):
            retry = job.copy_for_retry()
            retry.attempts = job.attempts + 1
            delay = self.backoff.delay(job.attempts)
            self._reschedule(retry, delay, RescheduleCause.ZERO_RESULT)
            await self._notify("on_job_requeued", retry, RescheduleCause.ZERO_RESULT, delay, None)

    async def _handle_failure(self, job: IngestJob, error: Exception, duration: float):
        job.last_error = str(error)
        await self._notify("on_job_failed", job, error, duration)

        job.attempts += 1
        if job.attempts < job.max_attempts:
            delay = self.backoff.delay(job.attempts - 1)
            self._reschedule(job, delay, RescheduleCause.FAILURE)
            await self._notify("on_job_requeued", job, RescheduleCause.FAILURE, delay, error)
            return

        job.state = JobState.DEAD
        self._dead.append(job)
        failure = TerminalJobFailure(
            f"Job {job.id} exhausted {job.max_attempts} attempts",
            context={
                "job_id": job.id,
                "job_kind": job.kind.value,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "final_error": str(error),
            },
            original_exception=error
        )
        await self._notify("on_job_dead", job, failure)

    def _reschedule(self, job: IngestJob, delay: float, cause: RescheduleCause):
        job.next_run_at = self.clock() + delay
        job.last_reschedule_cause = cause
        self._push(job)

    async def _notify(self, hook: str, *args):
        try:
            await getattr(self.sink, hook)(*args)
        except Exception:
            logger.exception(f"Job sink {hook} raised; continuing")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _on_timer(self):
        # must stay a coroutine: APScheduler runs plain callables in its thread pool
        if self._processing or not self._running:
            return
        task = asyncio.get_running_loop().create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def start(self):
        if self._running:
            return
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            self._on_timer,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id=self._timer_job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()

        self._running = True
        logger.info(
            f"Ingest queue started (poll every {self.poll_interval}s, base backoff {self.backoff.base}s)"
        )

    def stop(self):
        """Halt future ticks; a job already executing runs to completion"""
        if not self._running:
            return
        self._running = False

        if self._scheduler is not None:
            if self._scheduler.get_job(self._timer_job_id):
                self._scheduler.remove_job(self._timer_job_id)
            if self._owns_scheduler and self._scheduler.running:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None

        logger.info("Ingest queue stopped")

    async def drain(self):
        """Wait for the in-flight tick, if any"""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def size(self) -> int:
        return len(self._heap)

    @property
    def dead_jobs(self) -> List[IngestJob]:
        return list(self._dead)

    def pending(self) -> List[IngestJob]:
        return [entry[2] for entry in sorted(self._heap)]

    def has_pending(self, kind: JobKind) -> bool:
        return any(entry[2].kind == kind for entry in self._heap)

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "queueSize": len(self._heap),
            "running": self._running,
            "processing": self._processing,
            "currentJob": self._current.id if self._current else None,
            "nextJobs": [
                {
                    "id": job.id,
                    "type": job.kind.value,
                    "nextRunInMs": max(0, int((job.next_run_at - now) * 1000)),
                    "attempts": job.attempts,
                    "maxAttempts": job.max_attempts,
                    "lastRescheduleCause": job.last_reschedule_cause.value if job.last_reschedule_cause else None,
                }
                for _, _, job in heapq.nsmallest(STATUS_PREVIEW_SIZE, self._heap)
            ],
            "deadJobs": [
                {
                    "id": job.id,
                    "type": job.kind.value,
                    "attempts": job.attempts,
                    "lastError": job.last_error,
                }
                for job in self._dead
            ],
        }
