"""
Soroban JSON-RPC client and contract event fetcher.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4
from ingestion.extractors.base import UpstreamClient
from core.config import RPC_MAX_EVENTS_LIMIT
from core.exceptions import RpcError
import logging

logger = logging.getLogger(__name__)


class SorobanRpcClient(UpstreamClient):
    """JSON-RPC 2.0 over a single POST endpoint"""

    source = "soroban_rpc"

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Invoke an RPC method and return its result.

        Raises:
            RpcError: The response carries an error object or no result
            UpstreamFetchError: Transport or HTTP failure
        """
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": f"{method}-{uuid4().hex[:12]}",
            "method": method,
        }
        if params is not None:
            payload["params"] = params

        response = await self._request("POST", self.base_url, json=payload)
        body = self._json(response, self.source)

        if not isinstance(body, dict):
            raise RpcError(
                f"Malformed RPC response for {method}",
                context={"source": self.source, "method": method}
            )

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(
                f"RPC error for {method}: {message} (Code: {code})",
                context={"source": self.source, "method": method, "rpc_code": code}
            )

        if "result" not in body:
            raise RpcError(
                f"RPC response for {method} has no result",
                context={"source": self.source, "method": method}
            )

        return body["result"]

    async def get_latest_ledger(self) -> int:
        result = await self.call("getLatestLedger")
        sequence = result.get("sequence") if isinstance(result, dict) else None
        if not isinstance(sequence, int):
            raise RpcError(
                "Invalid response from getLatestLedger: sequence number missing",
                context={"source": self.source, "method": "getLatestLedger"}
            )
        return sequence

    async def get_events(
        self,
        contract_ids: List[str],
        start_ledger: Optional[int] = None,
        cursor: Optional[str] = None,
        limit: int = 100
    ) -> Dict[str, Any]:
        """
        One getEvents page.

        startLedger is only sent when there is no cursor; the RPC rejects
        requests carrying both.
        """
        params: Dict[str, Any] = {
            "filters": [{"type": "contract", "contractIds": list(contract_ids), "topics": []}],
            "pagination": {"limit": min(limit, RPC_MAX_EVENTS_LIMIT)},
        }
        if cursor:
            params["pagination"]["cursor"] = cursor
        else:
            params["startLedger"] = max(1, start_ledger or 1)

        result = await self.call("getEvents", params)
        return result if isinstance(result, dict) else {}

    async def get_ledger_entries(
        self,
        contract_id: str,
        key: str,
        durability: str = "persistent"
    ) -> Optional[Dict[str, Any]]:
        """
        Current value of one contract storage entry via getLedgerEntries.

        Returns the first entry, with the requested durability filled in when
        the RPC omits it, or None when the key has no live entry.
        """
        params = {
            "keys": [{
                "type": "contractData",
                "contractId": contract_id,
                "key": key,
                "durability": durability,
            }]
        }
        result = await self.call("getLedgerEntries", params)
        entries = result.get("entries") if isinstance(result, dict) else None
        if not entries:
            return None

        entry = dict(entries[0])
        entry.setdefault("durability", durability)
        return entry

    async def get_health(self) -> Dict[str, Any]:
        result = await self.call("getHealth")
        return result if isinstance(result, dict) else {"status": str(result)}


@dataclass
class EventPage:
    """One page handed to the caller before the next page is requested"""
    events: List[Dict[str, Any]]
    cursor: Optional[str]
    latest_ledger: Optional[int]
    is_last: bool

    @property
    def highest_ledger(self) -> Optional[int]:
        ledgers = [int(e["ledger"]) for e in self.events if e.get("ledger") is not None]
        return max(ledgers) if ledgers else None


@dataclass
class EventScan:
    events_fetched: int = 0
    pages: int = 0
    complete: bool = False
    latest_ledger: Optional[int] = None
    highest_ledger: Optional[int] = None
    cursors: List[str] = field(default_factory=list)


class EventFetcher:
    """
    Pages getEvents for the tracked contracts.

    Stops on a short page, an unchanged cursor, an event past end_ledger or
    when the page budget runs out. complete is False only in the last case.
    """

    def __init__(
        self,
        client: SorobanRpcClient,
        contract_ids: List[str],
        page_size: int = 100,
        max_pages: int = 1000
    ):
        self.client = client
        self.contract_ids = list(contract_ids)
        self.page_size = min(page_size, RPC_MAX_EVENTS_LIMIT)
        self.max_pages = max_pages

    async def fetch(
        self,
        start_ledger: int,
        end_ledger: Optional[int] = None,
        on_page: Optional[Callable[[EventPage], Awaitable[None]]] = None,
        max_pages: Optional[int] = None
    ) -> EventScan:
        budget = max_pages or self.max_pages
        scan = EventScan()
        cursor: Optional[str] = None

        while scan.pages < budget:
            result = await self.client.get_events(
                self.contract_ids,
                start_ledger=start_ledger if cursor is None else None,
                cursor=cursor,
                limit=self.page_size
            )
            scan.pages += 1

            raw_events = result.get("events") or []
            next_cursor = result.get("cursor")
            latest = result.get("latestLedger")
            if isinstance(latest, int):
                scan.latest_ledger = latest

            events = raw_events
            passed_end = False
            if end_ledger is not None:
                events = [e for e in raw_events if int(e.get("ledger", 0)) <= end_ledger]
                passed_end = len(events) < len(raw_events)

            is_last = (
                len(raw_events) < self.page_size
                or not next_cursor
                or next_cursor == cursor
                or passed_end
            )

            page = EventPage(events=events, cursor=next_cursor, latest_ledger=scan.latest_ledger, is_last=is_last)
            scan.events_fetched += len(events)
            if page.highest_ledger is not None:
                scan.highest_ledger = max(scan.highest_ledger or 0, page.highest_ledger)
            if next_cursor:
                scan.cursors.append(next_cursor)

            logger.debug(
                f"getEvents page {scan.pages}: {len(events)} events, cursor={next_cursor}",
                extra={"page": scan.pages, "events": len(events)}
            )

            if on_page is not None:
                await on_page(page)

            if is_last:
                scan.complete = True
                break

            cursor = next_cursor

        if not scan.complete:
            logger.warning(f"Event scan stopped after {scan.pages} pages with more pages pending")

        return scan
