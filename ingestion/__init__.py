"""
Ledger ingestion core: scheduling, fetching, correlation and idempotent writes.

Modules:
    backoff: Retry delay policy (exponential with bounded jitter)
    jobs: Job kinds, payloads and the sync report
    sinks: Job lifecycle observers (logging, run recorder)
    queue: Single-worker ingest queue with retry and dead-lettering
    correlator: Operation → transaction correlation
    orchestrator: Job kind implementations
    scheduler: Service wiring, startup bootstrap and recurring sync

Subpackages:
    extractors: Soroban RPC and Horizon clients and fetchers
    transformers: Raw → canonical normalization
    loaders: Idempotent writer, checkpoint store and read-side queries

Data flow:
    fetchers → normalizer → correlator → writer → checkpoint advance

    Each job is one unit from the queue's point of view: it completes or it
    fails, and a failure is retried by the queue, never by the fetchers.

Usage:
    from ingestion.scheduler import IngestionScheduler

    service = IngestionScheduler.from_settings()
    await service.start()
    job_id = service.queue.enqueue(JobKind.FETCH_EVENTS, JobPayload(start_ledger=1000))
"""

__all__ = [
    "BackoffPolicy",
    "IngestQueue",
    "IngestJob",
    "JobKind",
    "JobPayload",
    "SyncReport",
    "Correlator",
    "IngestionOrchestrator",
    "IngestionScheduler",
]
