"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from models import Base
from core.config import Settings
from core.exceptions import UpstreamFetchError
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

# In-memory SQLite shared by every session of a test through StaticPool
TEST_DATABASE_URL = "sqlite+aiosqlite://"

CONTRACT_A = "CAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
CONTRACT_B = "CBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
CONTRACT_C = "CCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"
ACCOUNT_G = "GDQJUTQYK2MQX2VGDR2FYWLIYAQIEGXTQVTFEMGH2BEWFG4BRUY4CKI7"


def toid(ledger: int, index: int = 1) -> str:
    """Horizon-style id for the index-th record of a ledger"""
    return str((ledger << 32) + index)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        CONTRACT_IDS=f"{CONTRACT_A},{CONTRACT_B}",
        MAX_EVENTS_PER_FETCH=5,
        MAX_OPERATIONS_PER_FETCH=5,
        EVENT_SYNC_MAX_PAGES=20,
        BACKFILL_MAX_PAGES=20,
        LEDGER_HISTORY_LIMIT_DAYS=1,
        UPSTREAM_CONCURRENCY=2,
        RECURRING_SYNC_INTERVAL_SECONDS=0,
    )


# ============================================================================
# Upstream fakes
# ============================================================================

class FakeRpcClient:
    """
    In-memory Soroban RPC.

    getEvents pages over `events` (sorted by ledger, filtered by contract) with
    the list offset as cursor. getLedgerEntries reads `ledger_entries` keyed by
    (contract_id, key). Setting `error` makes every call raise it.
    """

    def __init__(self, latest_ledger: int = 2000, events: Optional[List[Dict[str, Any]]] = None):
        self.latest_ledger = latest_ledger
        self.events = list(events or [])
        self.health = {"status": "healthy", "latestLedger": latest_ledger}
        self.error: Optional[Exception] = None
        self.event_calls: List[Dict[str, Any]] = []
        self.ledger_entries: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.ledger_entry_calls: List[Tuple[str, str, str]] = []
        self.closed = False

    async def get_latest_ledger(self) -> int:
        if self.error:
            raise self.error
        return self.latest_ledger

    async def get_events(self, contract_ids, start_ledger=None, cursor=None, limit=100):
        if self.error:
            raise self.error
        self.event_calls.append({"start_ledger": start_ledger, "cursor": cursor, "limit": limit})

        matching = sorted(
            (e for e in self.events if e["contractId"] in contract_ids),
            key=lambda e: e["ledger"]
        )
        if cursor is None:
            offset = next((i for i, e in enumerate(matching) if e["ledger"] >= (start_ledger or 1)), len(matching))
        else:
            offset = int(cursor)

        page = matching[offset:offset + limit]
        return {
            "events": page,
            "cursor": str(offset + len(page)) if page else cursor,
            "latestLedger": self.latest_ledger,
        }

    async def get_ledger_entries(self, contract_id, key, durability="persistent"):
        if self.error:
            raise self.error
        self.ledger_entry_calls.append((contract_id, key, durability))
        entry = self.ledger_entries.get((contract_id, key))
        return {"durability": durability, **entry} if entry else None

    async def get_health(self):
        if self.error:
            raise self.error
        return self.health

    async def close(self):
        self.closed = True


class FakeHorizonClient:
    """
    In-memory Horizon keyed by account/contract id.

    Records are ordered by their numeric id; an ascending cursor returns the
    records after it. Ids in `failing` raise UpstreamFetchError for every
    per-account endpoint.
    """

    def __init__(self):
        self.operations: Dict[str, List[Dict[str, Any]]] = {}
        self.effects: Dict[str, List[Dict[str, Any]]] = {}
        self.payments: Dict[str, List[Dict[str, Any]]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.failing: set = set()
        self.transaction_calls: List[str] = []
        self.closed = False

    def _page(self, store, account_id, cursor, limit, order):
        if account_id in self.failing:
            raise UpstreamFetchError(
                "Horizon returned HTTP 500",
                context={"source": "horizon", "status_code": 500, "account_id": account_id}
            )
        records = sorted(store.get(account_id, []), key=lambda r: int(str(r["id"]).split("-")[0]))
        if order == "desc":
            return list(reversed(records))[:limit]
        if cursor is not None:
            records = [r for r in records if int(str(r["id"]).split("-")[0]) > int(str(cursor).split("-")[0])]
        return records[:limit]

    async def fetch_account_operations(self, account_id, cursor=None, limit=200, order="asc", include_failed=True):
        return self._page(self.operations, account_id, cursor, limit, order)

    async def fetch_account_effects(self, account_id, cursor=None, limit=200, order="asc", include_failed=True):
        return self._page(self.effects, account_id, cursor, limit, order)

    async def fetch_account_payments(self, account_id, cursor=None, limit=200, order="asc", include_failed=True):
        return self._page(self.payments, account_id, cursor, limit, order)

    async def fetch_transaction(self, tx_hash):
        self.transaction_calls.append(tx_hash)
        return self.transactions.get(tx_hash)

    async def fetch_account(self, account_id):
        return self.accounts.get(account_id)

    async def close(self):
        self.closed = True


@pytest.fixture
def rpc():
    return FakeRpcClient()


@pytest.fixture
def horizon():
    return FakeHorizonClient()


# ============================================================================
# Sample upstream records
# ============================================================================

@pytest.fixture
def make_event():
    def _make(ledger: int, index: int = 1, contract_id: str = CONTRACT_A, tx_hash: Optional[str] = None):
        return {
            "id": f"{toid(ledger, index).zfill(19)}-0000000000",
            "type": "contract",
            "ledger": ledger,
            "ledgerClosedAt": "2024-01-15T10:00:00Z",
            "contractId": contract_id,
            "pagingToken": f"{toid(ledger, index).zfill(19)}-0000000000",
            "topic": ["AAAADwAAAAh0cmFuc2Zlcg=="],
            "value": "AAAACgAAAAAAAAAAAAAAAAAAAGQ=",
            "inSuccessfulContractCall": True,
            "txHash": tx_hash or f"{ledger:08x}{index:056x}",
        }
    return _make


@pytest.fixture
def make_operation():
    def _make(ledger: int, index: int = 1, tx_hash: Optional[str] = None, successful: bool = True,
              source_account: str = ACCOUNT_G):
        op_id = toid(ledger, index)
        return {
            "id": op_id,
            "paging_token": op_id,
            "transaction_successful": successful,
            "source_account": source_account,
            "type": "invoke_host_function",
            "type_i": 24,
            "created_at": "2024-01-15T10:00:00Z",
            "transaction_hash": tx_hash or f"{ledger:08x}{index:056x}",
            "function": "HostFunctionTypeHostFunctionTypeInvokeContract",
        }
    return _make


@pytest.fixture
def make_transaction():
    def _make(tx_hash: str, ledger: int, successful: bool = True, source_account: str = ACCOUNT_G):
        return {
            "id": tx_hash,
            "hash": tx_hash,
            "ledger": ledger,
            "created_at": "2024-01-15T10:00:00Z",
            "source_account": source_account,
            "fee_charged": "100",
            "max_fee": "1000",
            "operation_count": 1,
            "successful": successful,
            "envelope_xdr": "AAAAAgAAAAA=",
            "result_xdr": "AAAAAAAAAGQ=",
            "result_meta_xdr": "AAAAAwAAAAA=",
            "memo_type": "none",
        }
    return _make
