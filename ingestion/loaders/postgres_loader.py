"""
Load canonical ledger records with upsert logic (idempotency)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from models import (
    HorizonAccount,
    HorizonContractData,
    HorizonEffect,
    HorizonEvent,
    HorizonOperation,
    HorizonPayment,
    HorizonTransaction,
)
from schemas.canonical import (
    AccountRecord,
    CanonicalEffect,
    CanonicalEvent,
    CanonicalOperation,
    CanonicalTransaction,
    ContractDataEntry,
    PaymentRecord,
)
from ingestion.loaders.checkpoint_store import CheckpointStore
from core.database import dialect_insert
from core.exceptions import CheckpointError, UpsertError
import logging

logger = logging.getLogger(__name__)

# Written in this order so a transaction lands before the records referencing it
UPSERT_TARGETS: Sequence[Tuple[str, Type, Tuple[str, ...]]] = (
    ("transactions", HorizonTransaction, ("hash",)),
    ("events", HorizonEvent, ("event_id",)),
    ("operations", HorizonOperation, ("operation_id",)),
    ("effects", HorizonEffect, ("effect_id",)),
    ("payments", HorizonPayment, ("payment_id",)),
    ("accounts", HorizonAccount, ("account_id",)),
    ("contract_data", HorizonContractData, ("contract_id", "key", "ledger")),
)

IMMUTABLE_COLUMNS = {"id", "ingested_at"}


@dataclass
class LedgerBatch:
    """Canonical records written together under one transaction"""
    events: List[CanonicalEvent] = field(default_factory=list)
    transactions: List[CanonicalTransaction] = field(default_factory=list)
    operations: List[CanonicalOperation] = field(default_factory=list)
    effects: List[CanonicalEffect] = field(default_factory=list)
    payments: List[PaymentRecord] = field(default_factory=list)
    accounts: List[AccountRecord] = field(default_factory=list)
    contract_data: List[ContractDataEntry] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.total() == 0

    def total(self) -> int:
        return sum(len(getattr(self, name)) for name, _, _ in UPSERT_TARGETS)

    def extend(self, other: "LedgerBatch") -> "LedgerBatch":
        for name, _, _ in UPSERT_TARGETS:
            getattr(self, name).extend(getattr(other, name))
        return self


class LedgerWriter:
    """
    Write canonical records with idempotent upsert operations.

    Ensures:
    - No duplicate rows on repeated or overlapping runs
    - Later data for the same natural key replaces earlier data
    - One transaction per write(): records and the optional checkpoint
      commit together or not at all
    """

    def __init__(self, db_session: AsyncSession, batch_size: int = 200):
        self.db = db_session
        self.batch_size = batch_size

    async def write(
        self,
        batch: LedgerBatch,
        checkpoint: Optional[Union[Tuple[str, int], List[Tuple[str, int]]]] = None
    ) -> Dict[str, int]:
        """
        Upsert every record kind in the batch and commit once.

        Args:
            batch: Records to write
            checkpoint: Optional (scope, ledger), or a list of them, advanced in
                the same transaction

        Returns:
            Rows written per record kind

        Raises:
            UpsertError: Any failure; the whole batch is rolled back
        """
        counts: Dict[str, int] = {}
        current = "prepare"

        try:
            if batch.contract_data:
                await self._fill_previous_values(batch.contract_data)

            for name, model, keys in UPSERT_TARGETS:
                current = name
                counts[name] = await self._upsert(model, keys, getattr(batch, name))

            checkpoints = [checkpoint] if isinstance(checkpoint, tuple) else list(checkpoint or [])
            if checkpoints:
                current = "checkpoint"
                store = CheckpointStore(self.db)
                for scope, ledger in checkpoints:
                    await store.advance(
                        scope, ledger, records_processed=sum(counts.values()), commit=False
                    )

            await self.db.commit()

        except (SQLAlchemyError, CheckpointError) as e:
            await self.db.rollback()
            raise UpsertError(
                "Batch write failed and was rolled back",
                context={"table_name": current, "batch_size": batch.total()},
                original_exception=e
            )

        written = {k: v for k, v in counts.items() if v}
        logger.info(
            f"Wrote {sum(written.values())} records {written}",
            extra={"checkpoint": checkpoint}
        )
        return counts

    async def _upsert(self, model: Type, keys: Tuple[str, ...], records: List[BaseModel]) -> int:
        if not records:
            return 0

        now = datetime.utcnow()
        rows: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for record in records:
            row = record.model_dump()
            row["ingested_at"] = now
            row["updated_at"] = now
            # last occurrence of a key within the batch wins
            rows[tuple(row[k] for k in keys)] = row

        unique_rows = list(rows.values())
        for i in range(0, len(unique_rows), self.batch_size):
            chunk = unique_rows[i:i + self.batch_size]
            stmt = dialect_insert(self.db, model).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(keys),
                set_={
                    column: stmt.excluded[column]
                    for column in chunk[0]
                    if column not in keys and column not in IMMUTABLE_COLUMNS
                }
            )
            await self.db.execute(stmt)

        return len(unique_rows)

    async def _fill_previous_values(self, entries: List[ContractDataEntry]):
        """
        Chain previous_value across versions.

        An entry without previous_value takes the value of the version just
        below it, from the same batch or else from the store.
        """
        by_key: Dict[Tuple[str, str], List[ContractDataEntry]] = {}
        for entry in entries:
            by_key.setdefault((entry.contract_id, entry.key), []).append(entry)

        for (contract_id, key), versions in by_key.items():
            versions.sort(key=lambda e: e.ledger)
            prior: Optional[ContractDataEntry] = None
            for entry in versions:
                if entry.previous_value is None:
                    if prior is not None:
                        entry.previous_value = prior.value
                    else:
                        entry.previous_value = await self._stored_value_before(contract_id, key, entry.ledger)
                prior = entry

    async def _stored_value_before(self, contract_id: str, key: str, ledger: int) -> Optional[Any]:
        result = await self.db.execute(
            select(HorizonContractData.value)
            .where(
                HorizonContractData.contract_id == contract_id,
                HorizonContractData.key == key,
                HorizonContractData.ledger < ledger,
            )
            .order_by(HorizonContractData.ledger.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
