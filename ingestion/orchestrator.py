# ============================================================================
# File: ingestion/orchestrator.py
# Description: Composes fetchers, correlator and writer into the job kinds
# ============================================================================
"""
Ingestion Orchestrator - runs one job kind end to end.

Job kinds:
- FetchEvents: contract events from Soroban RPC, written page by page with
  the global checkpoint advanced in the same transaction
- FetchContractOperations: Horizon operations per tracked contract,
  correlated with their transactions; a failing contract is reported and
  skipped
- FetchComprehensive: both of the above plus effects, payments, the accounts
  involved and the configured contract storage keys
- Backfill: comprehensive over a bounded historical window with a page budget

Retries are not handled here. Any error that escapes a job method fails the
job and the ingest queue decides what happens next.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import async_sessionmaker

from ingestion.correlator import Correlator
from ingestion.extractors.horizon import FetchResult, HorizonClient, OperationFetcher
from ingestion.extractors.soroban_rpc import EventFetcher, EventPage, SorobanRpcClient
from ingestion.jobs import IngestJob, JobKind, SyncReport
from ingestion.loaders.checkpoint_store import GLOBAL_SCOPE, CheckpointStore
from ingestion.loaders.postgres_loader import LedgerBatch, LedgerWriter
from ingestion.transformers.normalizer import LedgerNormalizer
from core.config import Settings, settings as default_settings
from core.exceptions import (
    CheckpointError,
    PartialBatchFailure,
    UpstreamFetchError,
    ValidationError,
)
import logging

logger = logging.getLogger(__name__)

# Stellar closes roughly ten ledgers per minute
LEDGERS_PER_DAY = 24 * 60 * 10


class IngestionOrchestrator:
    """
    Production ingestion orchestrator

    Responsibilities:
    - Resolve start ledgers from checkpoints or the lookback window
    - Orchestrate fetch → normalize → correlate → write
    - Advance checkpoints only for contiguous, durably written ranges
    - Collect per-contract partial failures instead of raising them
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        rpc_client: SorobanRpcClient,
        horizon_client: HorizonClient,
        contract_ids: List[str],
        settings: Settings = default_settings,
        normalizer: Optional[LedgerNormalizer] = None
    ):
        self.session_factory = session_factory
        self.rpc = rpc_client
        self.horizon = horizon_client
        self.contract_ids = list(contract_ids)
        self.settings = settings
        self.normalizer = normalizer or LedgerNormalizer()

        self.operation_fetcher = OperationFetcher(
            horizon_client,
            page_size=settings.MAX_OPERATIONS_PER_FETCH,
            max_pages=settings.EVENT_SYNC_MAX_PAGES,
        )
        self.correlator = Correlator(horizon_client.fetch_transaction, settings.UPSTREAM_CONCURRENCY)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, job: IngestJob) -> Dict[str, Any]:
        """Run a queued job and return its camelCase summary"""
        payload = job.payload

        if job.kind == JobKind.FETCH_EVENTS:
            report = await self.fetch_events(payload.start_ledger, payload.end_ledger)
        elif job.kind == JobKind.FETCH_CONTRACT_OPERATIONS:
            report = await self.fetch_contract_operations(
                payload.contract_ids, payload.start_ledger, payload.end_ledger, payload.include_failed_tx
            )
        elif job.kind == JobKind.FETCH_COMPREHENSIVE:
            report = await self.fetch_comprehensive(
                payload.start_ledger, payload.end_ledger, payload.contract_ids, payload.include_failed_tx
            )
        elif job.kind == JobKind.BACKFILL:
            report = await self.backfill(payload.start_ledger, payload.end_ledger, payload.contract_ids)
        else:
            raise ValidationError(f"Unsupported job kind: {job.kind}", context={"job_id": job.id})

        return report.to_dict()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def fetch_events(
        self,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        contract_ids: Optional[List[str]] = None,
        max_pages: Optional[int] = None
    ) -> SyncReport:
        """
        Sync contract events.

        Start ledger: explicit start, else checkpoint + 1, else the lookback
        window below upstream latest. The global checkpoint only moves when
        the scanned range is contiguous with it.
        """
        ids = contract_ids or self.contract_ids
        report = SyncReport()

        if not ids:
            logger.warning("No contract ids configured; skipping event sync")
            report.message = "No contract ids configured. Nothing to fetch."
            report.complete = True
            return report

        latest = await self.rpc.get_latest_ledger()
        report.last_upstream_ledger = latest
        checkpoint = await self._checkpoint(GLOBAL_SCOPE)

        if start_ledger is not None:
            start = max(1, start_ledger)
        elif checkpoint:
            start = checkpoint + 1
        else:
            lookback = self.settings.LEDGER_HISTORY_LIMIT_DAYS * LEDGERS_PER_DAY
            start = max(1, latest - lookback)

        if start > latest:
            report.processed_up_to_ledger = start - 1
            report.complete = True
            report.message = "Start ledger is ahead of the latest upstream ledger. No new events to process."
            logger.info(report.message, extra={"start_ledger": start, "latest_ledger": latest})
            return report

        advance = checkpoint is None or start <= checkpoint + 1
        durable = (checkpoint or 0) if advance else 0
        # progress within this scan, independent of the global checkpoint
        reached = start - 1

        logger.info(
            f"Event sync from ledger {start} (checkpoint={checkpoint}, latest={latest}, end={end_ledger})",
            extra={"start_ledger": start, "latest_ledger": latest}
        )

        async def on_page(page: EventPage):
            nonlocal durable, reached
            written_through = None
            if page.highest_ledger is not None:
                # a full page may be followed by more events from the same ledger
                written_through = page.highest_ledger if page.is_last else page.highest_ledger - 1
            target = written_through if advance else None
            hashes = await self._write_event_page(page, target)
            report.events_fetched += len(page.events)
            report.transaction_hashes |= hashes
            if target:
                durable = max(durable, target)
            if written_through is not None:
                reached = max(reached, written_through)

        fetcher = EventFetcher(
            self.rpc,
            ids,
            page_size=self.settings.MAX_EVENTS_PER_FETCH,
            max_pages=self.settings.EVENT_SYNC_MAX_PAGES,
        )

        try:
            scan = await fetcher.fetch(start, end_ledger, on_page=on_page, max_pages=max_pages)
        except Exception as e:
            await self._record_failure(GLOBAL_SCOPE, e)
            raise

        report.complete = scan.complete
        if scan.latest_ledger:
            report.last_upstream_ledger = scan.latest_ledger

        if scan.complete:
            scanned_through = report.last_upstream_ledger
            if end_ledger is not None:
                scanned_through = min(end_ledger, scanned_through)
            if advance and scanned_through > durable:
                await self._advance(GLOBAL_SCOPE, scanned_through)
            reached = max(reached, scanned_through)

        if end_ledger is not None:
            reached = min(reached, end_ledger)
        report.processed_up_to_ledger = reached
        report.transactions_fetched = len(report.transaction_hashes)
        report.message = (
            f"Event ingestion cycle finished. Fetched {report.events_fetched} events. "
            f"Processed up to ledger {report.processed_up_to_ledger}."
        )
        logger.info(report.message)
        return report

    async def _write_event_page(self, page: EventPage, checkpoint_ledger: Optional[int]) -> set:
        events = self.normalizer.normalize_many(page.events, self.normalizer.normalize_event)
        transactions = await self.correlator.resolve_transactions(e.tx_hash for e in events)

        batch = LedgerBatch(
            events=events,
            transactions=self.normalizer.normalize_many(
                list(transactions.values()), self.normalizer.normalize_transaction
            ),
        )
        checkpoint = (GLOBAL_SCOPE, checkpoint_ledger) if checkpoint_ledger and checkpoint_ledger > 0 else None

        if not batch.is_empty() or checkpoint:
            async with self.session_factory() as session:
                await LedgerWriter(session, self.settings.INGEST_BATCH_SIZE).write(batch, checkpoint=checkpoint)

        return set(transactions)

    # ------------------------------------------------------------------
    # Contract operations
    # ------------------------------------------------------------------

    async def fetch_contract_operations(
        self,
        contract_ids: Optional[List[str]] = None,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        include_failed_tx: bool = True,
        max_pages: Optional[int] = None
    ) -> SyncReport:
        """
        Fetch, correlate and write operations for every tracked contract.

        A contract whose fetch fails is recorded in contractFailures and the
        loop continues. Without an explicit start each contract resumes from
        its own checkpoint, or reads its latest page on first sync.
        """
        ids = contract_ids or self.contract_ids
        report = SyncReport()
        fetched: List[Tuple[str, FetchResult, bool]] = []

        for contract_id in ids:
            try:
                checkpoint = await self._checkpoint(contract_id)
                start = start_ledger
                if start is None and checkpoint:
                    start = checkpoint + 1
                advance = checkpoint is None or start is None or start <= checkpoint + 1

                result = await self.operation_fetcher.fetch(
                    contract_id, start, end_ledger, include_failed_tx, max_pages
                )
                fetched.append((contract_id, result, advance))
                logger.info(f"Found {len(result.records)} operations for contract {contract_id}")

            except Exception as e:
                failure = PartialBatchFailure(
                    f"Operations fetch failed for contract {contract_id}",
                    context={"stage": "operations", "item": contract_id},
                    original_exception=e
                )
                logger.warning(str(failure))
                report.contract_failures.append(failure.to_dict())

        raw_operations = [op for _, result, _ in fetched for op in result.records]
        correlation = await self.correlator.correlate(raw_operations)
        failed = {id(op) for op in correlation.failed_operations}

        operations = []
        checkpoints = []
        for contract_id, result, advance in fetched:
            for op in result.records:
                if id(op) in failed and not include_failed_tx:
                    continue
                operations.extend(
                    self.normalizer.normalize_many(
                        [op], self.normalizer.normalize_operation, contract_id, id(op) not in failed
                    )
                )

            highest = result.highest_ledger
            if advance and highest:
                target = highest if result.complete else highest - 1
                if target > 0:
                    checkpoints.append((contract_id, target))

        batch = LedgerBatch(
            operations=operations,
            transactions=self.normalizer.normalize_many(
                list(correlation.transactions.values()), self.normalizer.normalize_transaction
            ),
        )
        if not batch.is_empty() or checkpoints:
            async with self.session_factory() as session:
                await LedgerWriter(session, self.settings.INGEST_BATCH_SIZE).write(batch, checkpoint=checkpoints)

        report.operations_fetched = len(raw_operations)
        report.transactions_fetched = len(correlation.transactions)
        report.transaction_hashes = set(correlation.transactions)
        report.accounts = set(correlation.accounts)
        report.accounts_involved = len(correlation.accounts)
        report.failed_operations = len(correlation.failed_operations)
        report.complete = not report.contract_failures and all(r.complete for _, r, _ in fetched)
        if start_ledger is not None:
            # window mode: the slowest contract bounds the contiguous range
            reached = [self._operations_reached(r, start_ledger, end_ledger) for _, r, _ in fetched]
            if report.contract_failures:
                reached.append(start_ledger - 1)
            report.processed_up_to_ledger = min(reached) if reached else start_ledger - 1
        else:
            ledgers = [r.highest_ledger for _, r, _ in fetched if r.highest_ledger]
            report.processed_up_to_ledger = max(ledgers) if ledgers else None
        report.message = (
            f"Fetched {report.operations_fetched} operations for {len(fetched)}/{len(ids)} contracts"
            + (f", {len(report.contract_failures)} failed" if report.contract_failures else "")
        )
        logger.info(report.message)
        return report

    # ------------------------------------------------------------------
    # Comprehensive / backfill
    # ------------------------------------------------------------------

    async def fetch_comprehensive(
        self,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        contract_ids: Optional[List[str]] = None,
        include_failed_tx: bool = True,
        max_pages: Optional[int] = None
    ) -> SyncReport:
        """
        Events, operations, effects, payments and involved accounts.

        Effects, payments and accounts are best-effort per source: a failure
        lands in contractFailures and never fails the job.
        """
        ids = contract_ids or self.contract_ids

        events = await self.fetch_events(start_ledger, end_ledger, ids, max_pages)
        operations = await self.fetch_contract_operations(
            ids, start_ledger, end_ledger, include_failed_tx, max_pages
        )

        report = SyncReport(
            events_fetched=events.events_fetched,
            operations_fetched=operations.operations_fetched,
            failed_operations=operations.failed_operations,
            processed_up_to_ledger=events.processed_up_to_ledger,
            last_upstream_ledger=events.last_upstream_ledger,
            contract_failures=list(operations.contract_failures),
            transaction_hashes=events.transaction_hashes | operations.transaction_hashes,
            accounts=set(operations.accounts),
        )
        report.transactions_fetched = len(report.transaction_hashes)
        report.accounts_involved = len(report.accounts)
        if start_ledger is not None and ids:
            report.processed_up_to_ledger = min(
                events.processed_up_to_ledger, operations.processed_up_to_ledger
            )

        extra = LedgerBatch()
        for contract_id in ids:
            effects = await self._best_effort(
                report, "effects", contract_id,
                self.operation_fetcher.fetch_effects(contract_id, start_ledger, end_ledger, max_pages)
            )
            if effects is not None:
                extra.effects.extend(
                    self.normalizer.normalize_many(effects.records, self.normalizer.normalize_effect)
                )

            payments = await self._best_effort(
                report, "payments", contract_id,
                self.operation_fetcher.fetch_payments(contract_id, start_ledger, end_ledger, include_failed_tx, max_pages)
            )
            if payments is not None:
                extra.payments.extend(
                    self.normalizer.normalize_many(payments.records, self.normalizer.normalize_payment)
                )

        extra.accounts = await self._fetch_accounts(report, sorted(report.accounts))
        extra.contract_data = await self._fetch_contract_data(report, ids)

        if not extra.is_empty():
            async with self.session_factory() as session:
                await LedgerWriter(session, self.settings.INGEST_BATCH_SIZE).write(extra)

        report.effects_fetched = len(extra.effects)
        report.payments_fetched = len(extra.payments)
        report.contract_data_fetched = len(extra.contract_data)
        report.complete = bool(events.complete) and bool(operations.complete) and not report.contract_failures
        report.message = (
            f"Comprehensive sync finished: {report.events_fetched} events, "
            f"{report.operations_fetched} operations, {report.transactions_fetched} transactions, "
            f"{report.accounts_involved} accounts"
        )
        logger.info(report.message)
        return report

    async def backfill(
        self,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        contract_ids: Optional[List[str]] = None
    ) -> SyncReport:
        """
        Comprehensive sync over [start_ledger, end_ledger] with a page budget.

        Meant to be called repeatedly until the report says complete.
        """
        latest = await self.rpc.get_latest_ledger()
        start = max(1, start_ledger if start_ledger is not None else 1)
        end = min(end_ledger, latest) if end_ledger is not None else latest

        if end < start:
            report = SyncReport(
                processed_up_to_ledger=end,
                last_upstream_ledger=latest,
                complete=True,
                message=f"Backfill window [{start}, {end}] is empty.",
            )
            return report

        logger.info(f"Backfill of ledgers [{start}, {end}]", extra={"start_ledger": start, "end_ledger": end})
        report = await self.fetch_comprehensive(
            start, end, contract_ids, include_failed_tx=True, max_pages=self.settings.BACKFILL_MAX_PAGES
        )
        if report.processed_up_to_ledger is None:
            report.processed_up_to_ledger = end if report.complete else start - 1
        report.message = (
            f"Backfill [{start}, {end}] "
            + (
                "complete. " if report.complete
                else f"incomplete, resume from ledger {report.processed_up_to_ledger + 1}. "
            )
            + report.message
        )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _best_effort(self, report: SyncReport, stage: str, item: str, fetch) -> Optional[Any]:
        try:
            return await fetch
        except Exception as e:
            failure = PartialBatchFailure(
                f"{stage} fetch failed for {item}",
                context={"stage": stage, "item": item},
                original_exception=e
            )
            logger.warning(str(failure))
            report.contract_failures.append(failure.to_dict())
            return None

    async def _fetch_accounts(self, report: SyncReport, account_ids: List[str]) -> list:
        semaphore = asyncio.Semaphore(self.settings.UPSTREAM_CONCURRENCY)

        async def fetch_one(account_id: str):
            async with semaphore:
                try:
                    return await self.horizon.fetch_account(account_id)
                except UpstreamFetchError as e:
                    failure = PartialBatchFailure(
                        f"Account fetch failed for {account_id}",
                        context={"stage": "account", "item": account_id},
                        original_exception=e
                    )
                    logger.warning(str(failure))
                    report.contract_failures.append(failure.to_dict())
                    return None

        raws = await asyncio.gather(*(fetch_one(a) for a in account_ids))
        return self.normalizer.normalize_many([r for r in raws if r], self.normalizer.normalize_account)

    async def _fetch_contract_data(self, report: SyncReport, contract_ids: List[str]) -> list:
        keys = self.settings.contract_data_keys
        durability = self.settings.CONTRACT_DATA_DURABILITY
        entries = []

        for contract_id in contract_ids:
            for key in keys:
                raw = await self._best_effort(
                    report, "contract_data", f"{contract_id}/{key}",
                    self.rpc.get_ledger_entries(contract_id, key, durability)
                )
                if raw is None:
                    continue
                entries.extend(
                    self.normalizer.normalize_many([raw], self.normalizer.normalize_contract_data, contract_id, key)
                )

        return entries

    @staticmethod
    def _operations_reached(result: FetchResult, start_ledger: int, end_ledger: Optional[int]) -> int:
        if result.complete and end_ledger is not None:
            return end_ledger
        highest = result.highest_ledger
        if highest is None:
            return start_ledger - 1
        return max(start_ledger - 1, highest if result.complete else highest - 1)

    async def _checkpoint(self, scope: str) -> Optional[int]:
        async with self.session_factory() as session:
            return await CheckpointStore(session).last_processed_ledger(scope)

    async def _advance(self, scope: str, ledger: int):
        async with self.session_factory() as session:
            await CheckpointStore(session).advance(scope, ledger)

    async def _record_failure(self, scope: str, error: Exception):
        try:
            async with self.session_factory() as session:
                await CheckpointStore(session).mark_failed(scope, str(error))
        except CheckpointError:
            logger.exception(f"Could not record failure on checkpoint {scope}")
