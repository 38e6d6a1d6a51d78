"""
Job lifecycle sinks.

The ingest queue reports every transition to a JobEventSink passed in at
construction. Sinks must not break scheduling: the queue logs and drops any
exception a sink raises.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ingestion.jobs import IngestJob, RescheduleCause
from models.ingest_run import IngestRun
from models.base import RunStatus
from core.exceptions import IngestionException, TerminalJobFailure
import logging

logger = logging.getLogger(__name__)


def _error_details(error: BaseException) -> Dict[str, Any]:
    if isinstance(error, IngestionException):
        return error.to_dict()
    return {"error_type": type(error).__name__, "message": str(error)}


class JobEventSink:
    """Base sink; every hook is a no-op"""

    async def on_job_started(self, job: IngestJob) -> None:
        pass

    async def on_job_completed(self, job: IngestJob, result: Dict[str, Any], duration: float) -> None:
        pass

    async def on_job_requeued(self, job: IngestJob, cause: RescheduleCause, delay: float, error: Optional[BaseException] = None) -> None:
        pass

    async def on_job_failed(self, job: IngestJob, error: BaseException, duration: float) -> None:
        pass

    async def on_job_dead(self, job: IngestJob, failure: TerminalJobFailure) -> None:
        pass


class LoggingJobSink(JobEventSink):

    async def on_job_started(self, job):
        logger.info(
            f"Job {job.id} started (attempt {job.attempts + 1}/{job.max_attempts})",
            extra={"job_id": job.id, "job_kind": job.kind.value}
        )

    async def on_job_completed(self, job, result, duration):
        logger.info(
            f"Job {job.id} completed in {duration:.2f}s: {result.get('message', '')}",
            extra={"job_id": job.id, "job_kind": job.kind.value}
        )

    async def on_job_requeued(self, job, cause, delay, error=None):
        logger.warning(
            f"Job {job.id} requeued ({cause.value}) in {delay:.1f}s, attempts={job.attempts}/{job.max_attempts}",
            extra={"job_id": job.id, "job_kind": job.kind.value, "cause": cause.value}
        )

    async def on_job_failed(self, job, error, duration):
        logger.error(
            f"Job {job.id} failed after {duration:.2f}s: {error}",
            extra={"job_id": job.id, "job_kind": job.kind.value}
        )

    async def on_job_dead(self, job, failure):
        logger.error(
            f"Job {job.id} is dead after {job.attempts} attempts: {failure}",
            extra={"job_id": job.id, "job_kind": job.kind.value}
        )


class RunRecorderSink(JobEventSink):
    """
    Persists one IngestRun row per execution outcome.

    Requeues are recorded through on_job_requeued and terminal failures
    through on_job_dead, so a dead-lettered job leaves a durable trace.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._started: Dict[str, datetime] = {}

    async def on_job_started(self, job):
        self._started[job.id] = datetime.utcnow()

    async def on_job_completed(self, job, result, duration):
        await self._record(job, RunStatus.COMPLETED, duration=duration, summary=result)

    async def on_job_requeued(self, job, cause, delay, error=None):
        await self._record(
            job,
            RunStatus.REQUEUED,
            error=error,
            reschedule_cause=cause.value,
            next_run_in_seconds=delay,
        )

    async def on_job_failed(self, job, error, duration):
        # the requeue/dead hooks that follow carry the outcome
        self._started.setdefault(job.id, datetime.utcnow())

    async def on_job_dead(self, job, failure):
        await self._record(job, RunStatus.DEAD, error=failure)

    async def _record(
        self,
        job: IngestJob,
        status: RunStatus,
        duration: Optional[float] = None,
        summary: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        reschedule_cause: Optional[str] = None,
        next_run_in_seconds: Optional[float] = None
    ):
        started_at = self._started.pop(job.id, None)
        finished_at = datetime.utcnow()
        if duration is None and started_at is not None:
            duration = (finished_at - started_at).total_seconds()

        run = IngestRun(
            job_id=job.id,
            job_kind=job.kind.value,
            status=status,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            started_at=started_at,
            finished_at=finished_at,
            duration_seconds=duration,
            payload=job.payload.to_dict(),
            summary=summary,
            error_message=str(error) if error else None,
            error_details=_error_details(error) if error else None,
            reschedule_cause=reschedule_cause,
            next_run_in_seconds=next_run_in_seconds,
        )

        session: AsyncSession
        async with self.session_factory() as session:
            session.add(run)
            await session.commit()


class CompositeJobSink(JobEventSink):
    """Fans every hook out to several sinks; one failing sink does not starve the others"""

    def __init__(self, sinks: Iterable[JobEventSink]):
        self.sinks = list(sinks)

    async def _fan_out(self, hook: str, *args):
        for sink in self.sinks:
            try:
                await getattr(sink, hook)(*args)
            except Exception:
                logger.exception(f"Sink {type(sink).__name__}.{hook} raised")

    async def on_job_started(self, job):
        await self._fan_out("on_job_started", job)

    async def on_job_completed(self, job, result, duration):
        await self._fan_out("on_job_completed", job, result, duration)

    async def on_job_requeued(self, job, cause, delay, error=None):
        await self._fan_out("on_job_requeued", job, cause, delay, error)

    async def on_job_failed(self, job, error, duration):
        await self._fan_out("on_job_failed", job, error, duration)

    async def on_job_dead(self, job, failure):
        await self._fan_out("on_job_dead", job, failure)
