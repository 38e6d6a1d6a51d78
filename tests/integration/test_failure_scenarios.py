"""
Partial failures, failed transactions and backfill windows
"""

import pytest
from sqlalchemy import select
from models import HorizonAccount, HorizonContractData, HorizonEffect, HorizonEvent, HorizonOperation, HorizonPayment
from ingestion.loaders.checkpoint_store import CheckpointStore
from ingestion.orchestrator import IngestionOrchestrator
from core.config import Settings
from core.exceptions import UpstreamFetchError
from conftest import ACCOUNT_G, CONTRACT_A, CONTRACT_B, CONTRACT_C, TEST_DATABASE_URL, toid


@pytest.fixture
def orchestrator(session_factory, rpc, horizon, test_settings):
    return IngestionOrchestrator(
        session_factory, rpc, horizon, contract_ids=[CONTRACT_A, CONTRACT_B, CONTRACT_C], settings=test_settings
    )


async def rows(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(model))).scalars().all()


async def checkpoint(session_factory, scope):
    async with session_factory() as session:
        return await CheckpointStore(session).last_processed_ledger(scope)


def seed_operations(horizon, make_operation, make_transaction, contract_id, ledgers, successful=True):
    ops = []
    for ledger in ledgers:
        op = make_operation(ledger, tx_hash=f"{ledger:064x}")
        horizon.transactions[op["transaction_hash"]] = make_transaction(
            op["transaction_hash"], ledger, successful=successful
        )
        ops.append(op)
    horizon.operations.setdefault(contract_id, []).extend(ops)
    return ops


@pytest.mark.asyncio
async def test_failing_contract_is_reported_and_others_are_written(
    orchestrator, session_factory, horizon, make_operation, make_transaction
):
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1000, 1001])
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_B, [1002])
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_C, [1003])
    horizon.failing.add(CONTRACT_B)

    report = await orchestrator.fetch_contract_operations()

    assert report.operations_fetched == 3
    assert len(report.contract_failures) == 1
    failure = report.contract_failures[0]
    assert failure["context"]["item"] == CONTRACT_B
    assert failure["error_type"] == "PartialBatchFailure"
    assert report.complete is False

    stored = await rows(session_factory, HorizonOperation)
    assert sorted(op.contract_id for op in stored) == sorted([CONTRACT_A, CONTRACT_A, CONTRACT_C])
    assert await checkpoint(session_factory, CONTRACT_A) == 1001
    assert await checkpoint(session_factory, CONTRACT_B) is None
    assert await checkpoint(session_factory, CONTRACT_C) == 1003


@pytest.mark.asyncio
async def test_operations_resume_from_per_contract_checkpoint(
    orchestrator, session_factory, horizon, make_operation, make_transaction
):
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1000, 1001, 1002])
    async with session_factory() as session:
        await CheckpointStore(session).advance(CONTRACT_A, 1000)

    report = await orchestrator.fetch_contract_operations([CONTRACT_A])

    assert report.operations_fetched == 2
    assert sorted(op.ledger for op in await rows(session_factory, HorizonOperation)) == [1001, 1002]
    assert await checkpoint(session_factory, CONTRACT_A) == 1002


@pytest.mark.asyncio
async def test_failed_transactions_can_be_excluded(
    orchestrator, session_factory, horizon, make_operation, make_transaction
):
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1000])
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1001], successful=False)

    report = await orchestrator.fetch_contract_operations([CONTRACT_A], include_failed_tx=False)

    assert report.operations_fetched == 2
    assert report.failed_operations == 1
    assert [op.ledger for op in await rows(session_factory, HorizonOperation)] == [1000]


@pytest.mark.asyncio
async def test_failed_transactions_are_kept_and_flagged_by_default(
    orchestrator, session_factory, horizon, make_operation, make_transaction
):
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1001], successful=False)

    report = await orchestrator.fetch_contract_operations([CONTRACT_A])

    stored = await rows(session_factory, HorizonOperation)
    assert report.failed_operations == 1
    assert [op.successful for op in stored] == [False]


@pytest.mark.asyncio
async def test_comprehensive_sync_tolerates_effect_failures(
    orchestrator, session_factory, rpc, horizon, make_event, make_operation, make_transaction
):
    rpc.events = [make_event(1000, contract_id=CONTRACT_A)]
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1000])
    horizon.payments[CONTRACT_A] = [{
        "id": toid(1000, 2),
        "type": "payment",
        "transaction_hash": f"{1000:064x}",
        "from": ACCOUNT_G,
        "to": CONTRACT_A,
        "asset_type": "native",
        "amount": "5.0000000",
        "created_at": "2024-01-15T10:00:00Z",
    }]
    horizon.accounts[ACCOUNT_G] = {"account_id": ACCOUNT_G, "sequence": "42", "last_modified_ledger": 1000}

    async def broken_effects(*args, **kwargs):
        raise UpstreamFetchError("Horizon returned HTTP 500", context={"source": "horizon"})

    horizon.fetch_account_effects = broken_effects

    report = await orchestrator.fetch_comprehensive(contract_ids=[CONTRACT_A])

    assert report.events_fetched == 1
    assert report.operations_fetched == 1
    assert report.payments_fetched == 1
    assert report.effects_fetched == 0
    assert report.accounts_involved == 1
    assert [f["context"]["stage"] for f in report.contract_failures] == ["effects"]
    assert report.complete is False

    assert len(await rows(session_factory, HorizonPayment)) == 1
    assert await rows(session_factory, HorizonEffect) == []
    accounts = await rows(session_factory, HorizonAccount)
    assert [(a.account_id, a.sequence) for a in accounts] == [(ACCOUNT_G, "42")]


@pytest.mark.asyncio
async def test_backfill_window_completes(
    orchestrator, session_factory, rpc, horizon, make_event, make_operation, make_transaction
):
    rpc.events = [make_event(ledger) for ledger in (1000, 1005, 1010, 1500)]
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1001, 1009, 1600])

    report = await orchestrator.backfill(1000, 1010, [CONTRACT_A])

    assert report.complete is True
    assert report.message.startswith("Backfill [1000, 1010] complete.")
    assert report.events_fetched == 3
    assert report.operations_fetched == 2
    assert report.to_dict()["complete"] is True


@pytest.mark.asyncio
async def test_backfill_clamps_to_latest_and_handles_empty_windows(orchestrator, rpc):
    rpc.latest_ledger = 1200

    empty = await orchestrator.backfill(1500, 2000)
    assert empty.complete is True
    assert empty.events_fetched == 0
    assert rpc.event_calls == []

    clamped = await orchestrator.backfill(1100, 5000, [CONTRACT_A])
    assert clamped.message.startswith("Backfill [1100, 1200]")


@pytest.mark.asyncio
async def test_backfill_page_budget_reports_incomplete(session_factory, rpc, horizon, make_event):
    settings = Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        CONTRACT_IDS=CONTRACT_A,
        MAX_EVENTS_PER_FETCH=2,
        BACKFILL_MAX_PAGES=1,
    )
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, [CONTRACT_A], settings=settings)
    rpc.events = [make_event(ledger) for ledger in range(1000, 1006)]

    report = await orchestrator.backfill(1000, 1100)

    assert report.complete is False
    assert "incomplete" in report.message
    assert report.events_fetched == 2


@pytest.mark.asyncio
async def test_backfill_below_checkpoint_resumes_from_reported_ledger(
    session_factory, rpc, horizon, make_event
):
    settings = Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        CONTRACT_IDS=CONTRACT_A,
        MAX_EVENTS_PER_FETCH=2,
        BACKFILL_MAX_PAGES=1,
    )
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, [CONTRACT_A], settings=settings)
    rpc.latest_ledger = 6000
    rpc.events = [make_event(ledger) for ledger in range(1000, 1006)]
    async with session_factory() as session:
        await CheckpointStore(session).advance("global", 5000)

    start = 1000
    reports = []
    for _ in range(20):
        report = await orchestrator.backfill(start, 1100)
        reports.append(report)
        assert start - 1 <= report.processed_up_to_ledger <= 1100
        if report.complete:
            break
        assert report.processed_up_to_ledger >= start
        assert f"resume from ledger {report.processed_up_to_ledger + 1}" in report.message
        start = report.processed_up_to_ledger + 1

    assert reports[0].complete is False
    assert reports[0].processed_up_to_ledger == 1000
    assert reports[-1].complete is True
    assert reports[-1].processed_up_to_ledger == 1100

    stored = await rows(session_factory, HorizonEvent)
    assert sorted({event.ledger for event in stored}) == list(range(1000, 1006))
    assert await checkpoint(session_factory, "global") == 5000


@pytest.mark.asyncio
async def test_backfill_progress_is_bounded_by_slowest_contract(
    session_factory, rpc, horizon, make_operation, make_transaction
):
    settings = Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        CONTRACT_IDS=CONTRACT_A,
        MAX_OPERATIONS_PER_FETCH=2,
        BACKFILL_MAX_PAGES=1,
    )
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, [CONTRACT_A], settings=settings)
    seed_operations(horizon, make_operation, make_transaction, CONTRACT_A, [1000, 1001, 1002])

    report = await orchestrator.backfill(1000, 1100)

    assert report.complete is False
    assert report.processed_up_to_ledger == 1000


@pytest.mark.asyncio
async def test_backfill_without_contracts_is_complete(session_factory, rpc, horizon, test_settings):
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, contract_ids=[], settings=test_settings)

    report = await orchestrator.backfill(1000, 1100)

    assert report.complete is True
    assert report.message.startswith("Backfill [1000, 1100] complete.")
    assert rpc.event_calls == []


@pytest.mark.asyncio
async def test_comprehensive_sync_reads_configured_contract_data(session_factory, rpc, horizon):
    settings = Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        CONTRACT_IDS=f"{CONTRACT_A},{CONTRACT_B}",
        CONTRACT_DATA_KEYS="balance, admin",
    )
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, [CONTRACT_A, CONTRACT_B], settings=settings)
    rpc.ledger_entries[(CONTRACT_A, "balance")] = {"key": "AAAABg==", "xdr": "AAAAAQ==", "lastModifiedLedgerSeq": 1500}
    rpc.ledger_entries[(CONTRACT_B, "admin")] = {"key": "AAAABw==", "xdr": "AAAAAg==", "lastModifiedLedgerSeq": 1600}

    report = await orchestrator.fetch_comprehensive(contract_ids=[CONTRACT_A, CONTRACT_B])

    assert report.contract_data_fetched == 2
    assert report.to_dict()["contractDataFetched"] == 2
    assert report.contract_failures == []
    assert (CONTRACT_A, "admin", "persistent") in rpc.ledger_entry_calls

    stored = sorted(
        (row.contract_id, row.key, row.ledger, row.value, row.durability)
        for row in await rows(session_factory, HorizonContractData)
    )
    assert stored == sorted([
        (CONTRACT_A, "balance", 1500, "AAAAAQ==", "persistent"),
        (CONTRACT_B, "admin", 1600, "AAAAAg==", "persistent"),
    ])


@pytest.mark.asyncio
async def test_contract_data_failure_is_reported_per_key(session_factory, rpc, horizon):
    settings = Settings(DATABASE_URL=TEST_DATABASE_URL, CONTRACT_IDS=CONTRACT_A, CONTRACT_DATA_KEYS="balance")
    orchestrator = IngestionOrchestrator(session_factory, rpc, horizon, [CONTRACT_A], settings=settings)

    async def broken_entries(*args, **kwargs):
        raise UpstreamFetchError("RPC returned HTTP 503", context={"source": "soroban_rpc"})

    rpc.get_ledger_entries = broken_entries

    report = await orchestrator.fetch_comprehensive()

    assert report.contract_data_fetched == 0
    assert [f["context"]["item"] for f in report.contract_failures] == [f"{CONTRACT_A}/balance"]
    assert report.complete is False
    assert await rows(session_factory, HorizonContractData) == []


def test_contract_data_settings():
    settings = Settings(DATABASE_URL=TEST_DATABASE_URL, CONTRACT_DATA_KEYS=" balance,,admin ", CONTRACT_DATA_DURABILITY="Temporary")

    assert settings.contract_data_keys == ["balance", "admin"]
    assert settings.CONTRACT_DATA_DURABILITY == "temporary"
