"""
Durable "last processed ledger" per scope.

Scopes are "global" for event sync and the contract id for per-contract
operation sync. advance() only ever moves a checkpoint forward: the update is
a single upsert taking the greater of the stored and the new ledger, so
overlapping writers can never regress it.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from models.checkpoint import IngestCheckpoint
from models.base import SyncStatus
from core.database import dialect_insert, greatest
from core.exceptions import CheckpointError
import logging

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"


class CheckpointStore:

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, scope: str = GLOBAL_SCOPE) -> Optional[IngestCheckpoint]:
        try:
            result = await self.db.execute(
                select(IngestCheckpoint)
                .where(IngestCheckpoint.scope == scope)
                # upserts bypass the identity map
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to read checkpoint",
                context={"scope": scope, "operation": "read"},
                original_exception=e
            )

    async def last_processed_ledger(self, scope: str = GLOBAL_SCOPE) -> Optional[int]:
        """Last processed ledger, or None when nothing was processed yet"""
        checkpoint = await self.get(scope)
        if checkpoint is None or not checkpoint.last_processed_ledger:
            return None
        return checkpoint.last_processed_ledger

    async def advance(
        self,
        scope: str,
        ledger: int,
        records_processed: int = 0,
        commit: bool = True
    ) -> None:
        """
        Move the checkpoint to max(stored, ledger).

        With commit=False the statement joins the caller's transaction; the
        writer uses this to persist records and progress atomically.
        """
        now = datetime.utcnow()
        table = IngestCheckpoint.__table__

        stmt = dialect_insert(self.db, IngestCheckpoint).values(
            scope=scope,
            last_processed_ledger=ledger,
            last_processed_at=now,
            last_success_at=now,
            total_runs=1,
            total_records_processed=records_processed,
            last_records_processed=records_processed,
            sync_status=SyncStatus.SUCCESS,
            error_message=None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["scope"],
            set_={
                "last_processed_ledger": greatest(
                    self.db, table.c.last_processed_ledger, stmt.excluded.last_processed_ledger
                ),
                "last_processed_at": now,
                "last_success_at": now,
                "total_runs": table.c.total_runs + 1,
                "total_records_processed": table.c.total_records_processed + records_processed,
                "last_records_processed": records_processed,
                "sync_status": SyncStatus.SUCCESS,
                "error_message": None,
                "updated_at": now,
            }
        )

        try:
            await self.db.execute(stmt)
            if commit:
                await self.db.commit()
        except SQLAlchemyError as e:
            if commit:
                await self.db.rollback()
            raise CheckpointError(
                "Failed to advance checkpoint",
                context={"scope": scope, "ledger": ledger, "operation": "advance"},
                original_exception=e
            )

        logger.debug(f"Checkpoint {scope} advanced to >= {ledger}", extra={"scope": scope, "ledger": ledger})

    async def mark_failed(self, scope: str, error: str) -> None:
        """Record a failure without moving the ledger"""
        now = datetime.utcnow()
        table = IngestCheckpoint.__table__

        stmt = dialect_insert(self.db, IngestCheckpoint).values(
            scope=scope,
            last_processed_ledger=0,
            last_failure_at=now,
            total_runs=1,
            total_records_processed=0,
            last_records_processed=0,
            sync_status=SyncStatus.FAILED,
            error_message=error[:2000],
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["scope"],
            set_={
                "last_failure_at": now,
                "total_runs": table.c.total_runs + 1,
                "sync_status": SyncStatus.FAILED,
                "error_message": error[:2000],
                "updated_at": now,
            }
        )

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise CheckpointError(
                "Failed to record checkpoint failure",
                context={"scope": scope, "operation": "mark_failed"},
                original_exception=e
            )

    async def list(self) -> List[IngestCheckpoint]:
        try:
            result = await self.db.execute(
                select(IngestCheckpoint)
                .order_by(IngestCheckpoint.scope)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to list checkpoints",
                context={"operation": "list"},
                original_exception=e
            )
        return list(result.scalars().all())
