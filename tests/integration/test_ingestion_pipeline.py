"""
Integration tests for the ingestion pipeline

Orchestrator, queue, writer and checkpoints run for real against SQLite;
only Soroban RPC and Horizon are faked.
"""

import pytest
from sqlalchemy import func, select
from models import HorizonEvent, HorizonTransaction, IngestRun
from models.base import RunStatus, SyncStatus
from ingestion.jobs import JobKind, JobPayload, RescheduleCause
from ingestion.loaders.checkpoint_store import GLOBAL_SCOPE, CheckpointStore
from ingestion.orchestrator import IngestionOrchestrator
from ingestion.queue import IngestQueue
from ingestion.sinks import CompositeJobSink, LoggingJobSink, RunRecorderSink
from core.exceptions import RpcError
from conftest import CONTRACT_A, CONTRACT_B


class SteppingClock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


@pytest.fixture
def orchestrator(session_factory, rpc, horizon, test_settings):
    return IngestionOrchestrator(
        session_factory, rpc, horizon, contract_ids=test_settings.contract_ids, settings=test_settings
    )


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def checkpoint(session_factory, scope=GLOBAL_SCOPE):
    async with session_factory() as session:
        return await CheckpointStore(session).last_processed_ledger(scope)


@pytest.mark.asyncio
async def test_event_sync_requeues_on_zero_results_then_ingests(
    orchestrator, session_factory, rpc, horizon, make_event, make_transaction
):
    """Start at 1000; upstream has nothing twice, then five events"""
    clock = SteppingClock()
    arrivals = [make_event(1000 + i, tx_hash=f"{i:064x}") for i in range(5)]
    for e in arrivals:
        horizon.transactions[e["txHash"]] = make_transaction(e["txHash"], e["ledger"])

    runs = []

    async def executor(job):
        runs.append(job.attempts)
        if len(runs) == 3:
            rpc.events = arrivals
        return await orchestrator.execute(job)

    queue = IngestQueue(
        executor,
        sink=CompositeJobSink([LoggingJobSink(), RunRecorderSink(session_factory)]),
        clock=clock,
    )
    job_id = queue.enqueue(JobKind.FETCH_EVENTS, JobPayload(start_ledger=1000), max_attempts=3)

    for _ in range(6):
        await queue.tick()
        clock.now += 3600

    assert runs == [0, 1, 2]
    assert queue.size == 0
    assert queue.dead_jobs == []
    assert await count(session_factory, HorizonEvent) == 5
    assert await count(session_factory, HorizonTransaction) == 5
    assert await checkpoint(session_factory) == rpc.latest_ledger

    async with session_factory() as session:
        recorded = (await session.execute(
            select(IngestRun).where(IngestRun.job_id == job_id).order_by(IngestRun.id)
        )).scalars().all()

    statuses = [r.status for r in recorded]
    assert statuses.count(RunStatus.COMPLETED) == 3
    assert statuses.count(RunStatus.REQUEUED) == 2
    requeued = [r for r in recorded if r.status == RunStatus.REQUEUED]
    assert all(r.reschedule_cause == RescheduleCause.ZERO_RESULT.value for r in requeued)
    assert recorded[-1].summary["eventsFetched"] == 5


@pytest.mark.asyncio
async def test_event_sync_defaults_to_lookback_window(orchestrator, rpc, test_settings):
    rpc.latest_ledger = 50_000

    report = await orchestrator.fetch_events()

    lookback = test_settings.LEDGER_HISTORY_LIMIT_DAYS * 24 * 60 * 10
    assert rpc.event_calls[0]["start_ledger"] == 50_000 - lookback
    assert report.complete is True
    assert report.events_fetched == 0


@pytest.mark.asyncio
async def test_event_sync_resumes_after_checkpoint(orchestrator, session_factory, rpc, make_event):
    async with session_factory() as session:
        await CheckpointStore(session).advance(GLOBAL_SCOPE, 1500)
    rpc.events = [make_event(1400), make_event(1501), make_event(1502)]

    report = await orchestrator.fetch_events()

    assert rpc.event_calls[0]["start_ledger"] == 1501
    assert report.events_fetched == 2
    assert await count(session_factory, HorizonEvent) == 2
    assert await checkpoint(session_factory) == rpc.latest_ledger


@pytest.mark.asyncio
async def test_event_pages_advance_checkpoint_page_by_page(orchestrator, session_factory, rpc, make_event):
    # page size is 5 in tests; ledgers 1002 and 1004 straddle page boundaries
    rpc.events = [make_event(1000 + i // 2, index=i % 2 + 1) for i in range(12)]
    seen = []
    original = orchestrator._write_event_page

    async def spy(page, target):
        seen.append(target)
        return await original(page, target)

    orchestrator._write_event_page = spy

    report = await orchestrator.fetch_events(start_ledger=1000, end_ledger=1005)

    # a full page only commits up to the ledger below its last event
    assert seen == [1001, 1003, 1005]
    assert report.events_fetched == 12
    assert report.processed_up_to_ledger == 1005
    assert await checkpoint(session_factory) == 1005


@pytest.mark.asyncio
async def test_end_ledger_bounds_the_scan_and_checkpoint(orchestrator, session_factory, rpc, make_event):
    rpc.events = [make_event(1000), make_event(1100), make_event(1900)]

    report = await orchestrator.fetch_events(start_ledger=1000, end_ledger=1200)

    assert report.events_fetched == 2
    assert report.complete is True
    assert await checkpoint(session_factory) == 1200


@pytest.mark.asyncio
async def test_start_beyond_latest_is_a_no_op(orchestrator, session_factory, rpc):
    rpc.latest_ledger = 900

    report = await orchestrator.fetch_events(start_ledger=1000)

    assert report.events_fetched == 0
    assert report.complete is True
    assert rpc.event_calls == []
    assert await checkpoint(session_factory) is None


@pytest.mark.asyncio
async def test_gap_ahead_of_checkpoint_does_not_move_it(orchestrator, session_factory, rpc, make_event):
    async with session_factory() as session:
        await CheckpointStore(session).advance(GLOBAL_SCOPE, 100)
    rpc.events = [make_event(1000)]

    report = await orchestrator.fetch_events(start_ledger=1000)

    assert report.events_fetched == 1
    assert await count(session_factory, HorizonEvent) == 1
    assert await checkpoint(session_factory) == 100


@pytest.mark.asyncio
async def test_event_sync_failure_marks_checkpoint_and_raises(orchestrator, session_factory, rpc):
    async with session_factory() as session:
        await CheckpointStore(session).advance(GLOBAL_SCOPE, 700)

    async def broken_get_events(*args, **kwargs):
        raise RpcError("RPC error for getEvents: internal (Code: -32603)")

    rpc.get_events = broken_get_events

    with pytest.raises(RpcError):
        await orchestrator.fetch_events()

    async with session_factory() as session:
        stored = await CheckpointStore(session).get(GLOBAL_SCOPE)
    assert stored.last_processed_ledger == 700
    assert stored.sync_status == SyncStatus.FAILED
    assert "getEvents" in stored.error_message


@pytest.mark.asyncio
async def test_empty_contract_list_fetches_nothing(session_factory, rpc, horizon, test_settings):
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, contract_ids=[], settings=test_settings)

    report = await orchestrator.fetch_events()

    assert report.events_fetched == 0
    assert "No contract ids" in report.message
    assert rpc.event_calls == []


@pytest.mark.asyncio
async def test_events_of_untracked_contracts_are_ignored(orchestrator, session_factory, rpc, make_event):
    rpc.events = [make_event(1000, contract_id=CONTRACT_A), make_event(1001, contract_id=CONTRACT_B),
                  make_event(1002, contract_id="CUNTRACKED")]

    report = await orchestrator.fetch_events(start_ledger=1000)

    assert report.events_fetched == 2
