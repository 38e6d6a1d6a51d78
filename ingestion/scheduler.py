import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import Settings, settings as default_settings
from ingestion.backoff import BackoffPolicy
from ingestion.extractors.horizon import HorizonClient
from ingestion.extractors.soroban_rpc import SorobanRpcClient
from ingestion.jobs import JobKind, JobPayload
from ingestion.loaders.checkpoint_store import GLOBAL_SCOPE, CheckpointStore
from ingestion.orchestrator import IngestionOrchestrator
from ingestion.queue import IngestQueue
from ingestion.sinks import CompositeJobSink, JobEventSink, LoggingJobSink, RunRecorderSink

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """
    Owns the ingest queue and the recurring sync.

    start() seeds a FetchEvents job from the global checkpoint so ingestion
    resumes instead of restarting, starts the queue and schedules a
    FetchComprehensive job every RECURRING_SYNC_INTERVAL_SECONDS.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        rpc_client: SorobanRpcClient,
        horizon_client: HorizonClient,
        settings: Settings = default_settings,
        sink: Optional[JobEventSink] = None
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.rpc_client = rpc_client
        self.horizon_client = horizon_client
        self.scheduler = AsyncIOScheduler()

        self.orchestrator = IngestionOrchestrator(
            session_factory,
            rpc_client,
            horizon_client,
            contract_ids=settings.contract_ids,
            settings=settings,
        )
        self.queue = IngestQueue(
            self.orchestrator.execute,
            poll_interval=settings.QUEUE_POLL_INTERVAL_SECONDS,
            backoff=BackoffPolicy(base=settings.QUEUE_BASE_BACKOFF_SECONDS),
            sink=sink or CompositeJobSink([LoggingJobSink(), RunRecorderSink(session_factory)]),
            scheduler=self.scheduler,
        )

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "IngestionScheduler":
        from core.database import async_session_maker

        return cls(
            async_session_maker,
            SorobanRpcClient(settings.soroban_rpc_url, timeout=settings.UPSTREAM_TIMEOUT_SECONDS),
            HorizonClient(settings.horizon_base_url, timeout=settings.UPSTREAM_TIMEOUT_SECONDS),
            settings=settings,
        )

    async def bootstrap(self) -> str:
        """Enqueue the startup event sync from the last checkpoint"""
        async with self.session_factory() as session:
            last = await CheckpointStore(session).last_processed_ledger(GLOBAL_SCOPE)

        start_ledger = last + 1 if last else None
        job_id = self.queue.enqueue(JobKind.FETCH_EVENTS, JobPayload(start_ledger=start_ledger))
        logger.info(f"Startup sync enqueued from ledger {start_ledger or 'lookback window'}")
        return job_id

    async def run_recurring_sync(self):
        """Job to enqueue the recurring comprehensive sync"""
        if self.queue.has_pending(JobKind.FETCH_COMPREHENSIVE):
            logger.debug("Recurring sync skipped: one is already pending")
            return
        self.queue.enqueue(JobKind.FETCH_COMPREHENSIVE, JobPayload())

    async def start(self):
        """Start the scheduler"""
        if not self.settings.contract_ids:
            logger.warning("CONTRACT_IDS is empty; jobs will find nothing to ingest")

        await self.bootstrap()
        self.queue.start()

        interval = self.settings.RECURRING_SYNC_INTERVAL_SECONDS
        if interval > 0:
            self.scheduler.add_job(
                self.run_recurring_sync,
                trigger=IntervalTrigger(seconds=interval),
                id="recurring_sync",
                replace_existing=True
            )

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Ingestion scheduler started (recurring sync every {interval}s)")

    async def stop(self):
        self.queue.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.rpc_client.close()
        await self.horizon_client.close()
        logger.info("Ingestion scheduler stopped")
