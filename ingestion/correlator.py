"""
Operation → transaction correlation.

Given raw Horizon operations: collect the distinct transaction hashes they
reference, resolve every hash to its full transaction (concurrently, bounded,
best-effort), collect the source accounts involved and split operations into
successful and failed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set
from core.exceptions import UpstreamFetchError
import logging

logger = logging.getLogger(__name__)

FetchTransaction = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


@dataclass
class CorrelationResult:
    operations: List[Dict[str, Any]] = field(default_factory=list)
    transactions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    accounts: Set[str] = field(default_factory=set)
    failed_operations: List[Dict[str, Any]] = field(default_factory=list)
    skipped_hashes: List[str] = field(default_factory=list)

    @property
    def transaction_hashes(self) -> Set[str]:
        return {op["transaction_hash"] for op in self.operations if op.get("transaction_hash")}

    @property
    def successful_operations(self) -> List[Dict[str, Any]]:
        failed = {id(op) for op in self.failed_operations}
        return [op for op in self.operations if id(op) not in failed]

    def summary(self) -> Dict[str, int]:
        return {
            "operationsFetched": len(self.operations),
            "transactionsFetched": len(self.transactions),
            "accountsInvolved": len(self.accounts),
            "failedOperations": len(self.failed_operations),
            "skippedTransactions": len(self.skipped_hashes),
        }


class Correlator:

    def __init__(self, fetch_transaction: FetchTransaction, concurrency: int = 8):
        self.fetch_transaction = fetch_transaction
        self.concurrency = max(1, concurrency)

    async def resolve_transactions(self, hashes: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """
        Fetch every distinct hash; a failing or unknown hash is logged and
        left out of the result.
        """
        unique = list(dict.fromkeys(h for h in hashes if h))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def resolve(tx_hash: str):
            async with semaphore:
                try:
                    return tx_hash, await self.fetch_transaction(tx_hash)
                except UpstreamFetchError as e:
                    logger.warning(f"Skipping transaction {tx_hash}: {e}", extra={"tx_hash": tx_hash})
                    return tx_hash, None

        resolved = await asyncio.gather(*(resolve(h) for h in unique))
        return {tx_hash: tx for tx_hash, tx in resolved if tx is not None}

    async def correlate(self, raw_operations: List[Dict[str, Any]]) -> CorrelationResult:
        result = CorrelationResult(operations=list(raw_operations))

        result.transactions = await self.resolve_transactions(
            op.get("transaction_hash") for op in result.operations
        )
        result.skipped_hashes = sorted(result.transaction_hashes - set(result.transactions))

        for op in result.operations:
            if op.get("source_account"):
                result.accounts.add(op["source_account"])
            tx = result.transactions.get(op.get("transaction_hash"))
            if tx and tx.get("source_account"):
                result.accounts.add(tx["source_account"])

            if is_failed(op, tx):
                result.failed_operations.append(op)

        logger.info(f"Correlated operations: {result.summary()}")
        return result


def is_failed(operation: Dict[str, Any], transaction: Optional[Dict[str, Any]] = None) -> bool:
    """An operation fails with its own flag or with its parent transaction"""
    if operation.get("successful") is False or operation.get("transaction_successful") is False:
        return True
    return bool(transaction) and transaction.get("successful") is False
