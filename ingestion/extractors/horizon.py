"""
Horizon REST client and cursor-paginated account fetchers.

Horizon has no "by contract" filter for operations, effects or payments;
contracts are addressable like accounts, so every per-contract fetch goes
through /accounts/{id}/... .
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from ingestion.extractors.base import UpstreamClient
from ingestion.transformers.normalizer import ledger_from_toid
from core.config import HORIZON_MAX_RECORDS_LIMIT
from core.exceptions import ResourceNotFoundError, UpstreamFetchError
import logging

logger = logging.getLogger(__name__)


class HorizonClient(UpstreamClient):

    source = "horizon"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._request("GET", f"{self.base_url}{path}", params=params)
        body = self._json(response, self.source)
        if not isinstance(body, dict):
            raise UpstreamFetchError(
                "Unexpected Horizon response shape",
                context={"source": self.source, "path": path}
            )
        return body

    async def _records(
        self,
        path: str,
        cursor: Optional[str],
        limit: int,
        order: str,
        include_failed: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "limit": min(limit, HORIZON_MAX_RECORDS_LIMIT),
            "order": order,
        }
        if cursor:
            params["cursor"] = cursor
        if include_failed is not None:
            params["include_failed"] = "true" if include_failed else "false"

        body = await self._get(path, params)
        return body.get("_embedded", {}).get("records", [])

    async def fetch_account_operations(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = HORIZON_MAX_RECORDS_LIMIT,
        order: str = "asc",
        include_failed: bool = True
    ) -> List[Dict[str, Any]]:
        return await self._records(f"/accounts/{account_id}/operations", cursor, limit, order, include_failed)

    async def fetch_account_effects(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = HORIZON_MAX_RECORDS_LIMIT,
        order: str = "asc",
        include_failed: bool = True
    ) -> List[Dict[str, Any]]:
        # effects of failed transactions do not exist
        return await self._records(f"/accounts/{account_id}/effects", cursor, limit, order)

    async def fetch_account_payments(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = HORIZON_MAX_RECORDS_LIMIT,
        order: str = "asc",
        include_failed: bool = True
    ) -> List[Dict[str, Any]]:
        return await self._records(f"/accounts/{account_id}/payments", cursor, limit, order, include_failed)

    async def fetch_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Transaction by hash, or None when Horizon does not know it"""
        try:
            return await self._get(f"/transactions/{tx_hash}")
        except ResourceNotFoundError:
            logger.info(f"Transaction {tx_hash} not found on Horizon")
            return None

    async def fetch_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._get(f"/accounts/{account_id}")
        except ResourceNotFoundError:
            return None


PageFn = Callable[..., Awaitable[List[Dict[str, Any]]]]


@dataclass
class FetchResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    complete: bool = True
    cursor: Optional[str] = None

    @property
    def highest_ledger(self) -> Optional[int]:
        ledgers = [ledger_from_toid(r.get("id")) for r in self.records]
        return max(ledgers) if ledgers else None


class OperationFetcher:
    """
    Per-contract paging over Horizon account endpoints.

    With a start ledger, pages ascending from the first id of that ledger
    (start_ledger << 32) until a short page, end_ledger or the page budget.
    Without one, reads the latest page in descending order.
    """

    def __init__(self, client: HorizonClient, page_size: int = 200, max_pages: int = 1000):
        self.client = client
        self.page_size = min(page_size, HORIZON_MAX_RECORDS_LIMIT)
        self.max_pages = max_pages

    async def fetch(
        self,
        contract_id: str,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        include_failed: bool = True,
        max_pages: Optional[int] = None
    ) -> FetchResult:
        return await self._page_through(
            self.client.fetch_account_operations, contract_id, start_ledger, end_ledger, include_failed, max_pages
        )

    async def fetch_effects(
        self,
        contract_id: str,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> FetchResult:
        return await self._page_through(
            self.client.fetch_account_effects, contract_id, start_ledger, end_ledger, True, max_pages
        )

    async def fetch_payments(
        self,
        contract_id: str,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        include_failed: bool = True,
        max_pages: Optional[int] = None
    ) -> FetchResult:
        return await self._page_through(
            self.client.fetch_account_payments, contract_id, start_ledger, end_ledger, include_failed, max_pages
        )

    async def _page_through(
        self,
        page_fn: PageFn,
        account_id: str,
        start_ledger: Optional[int],
        end_ledger: Optional[int],
        include_failed: bool,
        max_pages: Optional[int]
    ) -> FetchResult:
        if start_ledger is None:
            records = await page_fn(
                account_id, cursor=None, limit=self.page_size, order="desc", include_failed=include_failed
            )
            if end_ledger is not None:
                records = [r for r in records if ledger_from_toid(r.get("id")) <= end_ledger]
            return FetchResult(records=records, pages=1, complete=True)

        budget = max_pages or self.max_pages
        result = FetchResult(complete=False, cursor=str(max(start_ledger, 0) << 32))

        while result.pages < budget:
            records = await page_fn(
                account_id, cursor=result.cursor, limit=self.page_size, order="asc", include_failed=include_failed
            )
            result.pages += 1

            in_range = records
            if end_ledger is not None:
                in_range = [r for r in records if ledger_from_toid(r.get("id")) <= end_ledger]
            result.records.extend(in_range)

            if records:
                last = records[-1]
                result.cursor = last.get("paging_token") or str(last.get("id"))

            if len(records) < self.page_size or len(in_range) < len(records):
                result.complete = True
                break

        logger.debug(
            f"Fetched {len(result.records)} records for {account_id} in {result.pages} pages",
            extra={"account_id": account_id, "complete": result.complete}
        )
        return result
