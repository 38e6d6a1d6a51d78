"""
Read-side storage contract used by the query layer.

Every canonical kind is reachable by natural key and by ledger range;
contract data additionally has latest-version and full-history modes.
"""

from typing import Any, List, Optional, Tuple, Type, Union
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from models import HorizonAccount, HorizonContractData
from ingestion.loaders.postgres_loader import UPSERT_TARGETS

NATURAL_KEYS = {model: keys for _, model, keys in UPSERT_TARGETS}


def _ledger_column(model: Type):
    if model is HorizonAccount:
        return HorizonAccount.last_modified_ledger
    return model.ledger


class LedgerReader:

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, model: Type, key: Union[str, Tuple[Any, ...]]) -> Optional[Any]:
        """Fetch one record by its natural key (a tuple for composite keys)"""
        columns = NATURAL_KEYS[model]
        values = key if isinstance(key, tuple) else (key,)
        if len(values) != len(columns):
            raise ValueError(f"{model.__name__} is keyed by {columns}")

        result = await self.db.execute(
            select(model).where(and_(*[getattr(model, c) == v for c, v in zip(columns, values)]))
        )
        return result.scalar_one_or_none()

    async def by_ledger_range(
        self,
        model: Type,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Any]:
        ledger = _ledger_column(model)
        query = select(model)
        if start_ledger is not None:
            query = query.where(ledger >= start_ledger)
        if end_ledger is not None:
            query = query.where(ledger <= end_ledger)
        query = query.order_by(ledger.asc(), model.id.asc()).limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def contract_data(
        self,
        contract_id: str,
        key: Optional[str] = None,
        latest_only: bool = True,
        limit: int = 100,
        offset: int = 0
    ) -> List[HorizonContractData]:
        """
        Contract storage entries.

        latest_only: newest version per (contract_id, key), omitted when that
        version is a deletion. Otherwise every version, newest ledger first.
        """
        filters = [HorizonContractData.contract_id == contract_id]
        if key is not None:
            filters.append(HorizonContractData.key == key)

        if not latest_only:
            query = (
                select(HorizonContractData)
                .where(*filters)
                .order_by(HorizonContractData.ledger.desc(), HorizonContractData.key)
                .limit(limit)
                .offset(offset)
            )
            result = await self.db.execute(query)
            return list(result.scalars().all())

        newest = (
            select(
                HorizonContractData.contract_id.label("contract_id"),
                HorizonContractData.key.label("key"),
                func.max(HorizonContractData.ledger).label("ledger"),
            )
            .where(*filters)
            .group_by(HorizonContractData.contract_id, HorizonContractData.key)
            .subquery()
        )
        query = (
            select(HorizonContractData)
            .join(
                newest,
                and_(
                    HorizonContractData.contract_id == newest.c.contract_id,
                    HorizonContractData.key == newest.c.key,
                    HorizonContractData.ledger == newest.c.ledger,
                )
            )
            .where(HorizonContractData.is_deleted.is_(False))
            .order_by(HorizonContractData.key)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
