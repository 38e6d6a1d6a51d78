"""
Transform raw upstream records into canonical ledger records with Pydantic validation
"""

from typing import Dict, Any, Optional, List, Callable, TypeVar
from datetime import datetime, timezone
from pydantic import ValidationError as PydanticValidationError
from schemas.canonical import (
    CanonicalEvent,
    CanonicalOperation,
    CanonicalTransaction,
    CanonicalEffect,
    ContractDataEntry,
    AccountRecord,
    PaymentRecord,
)
from core.exceptions import NormalizationError
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ledger_from_toid(toid: Any) -> int:
    """Horizon ids (operations, payments) encode the ledger in their high 32 bits"""
    try:
        return int(str(toid).split("-")[0]) >> 32
    except (ValueError, TypeError):
        return 0


class LedgerNormalizer:
    """
    Normalize Soroban RPC and Horizon payloads into canonical records.

    Handles:
    - Field mapping from both upstream naming styles (camelCase RPC, snake_case Horizon)
    - Type conversion (string ledgers, string fees, ISO or epoch timestamps)
    - Validation through the canonical Pydantic schemas

    A record that cannot be mapped raises NormalizationError; normalize_many
    logs and skips it so one bad record never fails a page.
    """

    def normalize_event(self, raw: Dict[str, Any]) -> CanonicalEvent:
        """Normalize a getEvents entry"""
        return self._build(
            "event",
            raw.get("id"),
            lambda: CanonicalEvent(
                event_id=raw["id"],
                ledger=self._parse_int(raw.get("ledger")) or 0,
                timestamp=self._parse_datetime(raw.get("ledgerClosedAt") or raw.get("timestamp")) or datetime.utcnow(),
                contract_id=raw.get("contractId") or "",
                event_type=raw.get("type") or "unknown",
                event_data={
                    "topic": raw.get("topic"),
                    "value": raw.get("value"),
                },
                tx_hash=raw.get("txHash"),
                paging_token=raw.get("pagingToken"),
                in_successful_contract_call=raw.get("inSuccessfulContractCall"),
            ),
        )

    def normalize_operation(self, raw: Dict[str, Any], contract_id: str, successful: Optional[bool] = None) -> CanonicalOperation:
        """
        Normalize a Horizon operation fetched for a tracked contract.

        successful overrides the operation's own flag once the correlator
        has looked at the parent transaction.
        """
        if successful is None:
            successful = raw.get("transaction_successful", raw.get("successful", True)) is not False

        op_id = raw.get("id")
        return self._build(
            "operation",
            op_id,
            lambda: CanonicalOperation(
                operation_id=str(op_id),
                contract_id=contract_id,
                source_account=raw.get("source_account") or "",
                operation_type=raw.get("type") or "invoke_host_function",
                operation_index=self._parse_int(raw.get("type_i")) or 0,
                function=raw.get("function"),
                successful=successful,
                tx_hash=raw["transaction_hash"],
                ledger=ledger_from_toid(op_id),
                raw=raw,
            ),
        )

    def normalize_transaction(self, raw: Dict[str, Any]) -> CanonicalTransaction:
        """Normalize a Horizon /transactions/{hash} response"""
        tx_hash = raw.get("hash") or raw.get("id")
        return self._build(
            "transaction",
            tx_hash,
            lambda: CanonicalTransaction(
                hash=tx_hash,
                ledger=self._parse_int(raw.get("ledger")) or 0,
                timestamp=self._parse_datetime(raw.get("created_at")) or datetime.utcnow(),
                source_account=raw.get("source_account") or "",
                fee=raw.get("fee_charged") or raw.get("max_fee"),
                successful=raw.get("successful") is not False,
                operation_count=self._parse_int(raw.get("operation_count")) or 0,
                envelope_xdr=raw.get("envelope_xdr"),
                result_xdr=raw.get("result_xdr"),
                result_meta_xdr=raw.get("result_meta_xdr"),
                memo=raw.get("memo"),
                memo_type=raw.get("memo_type"),
                fee_bump="fee_bump_transaction" in raw,
            ),
        )

    def normalize_effect(self, raw: Dict[str, Any]) -> CanonicalEffect:
        effect_id = raw.get("id")
        operation_id = str(effect_id).split("-")[0] if effect_id else ""
        details = {
            k: v for k, v in raw.items()
            if k not in ("_links", "id", "paging_token", "account", "type", "type_i", "created_at")
        }
        return self._build(
            "effect",
            effect_id,
            lambda: CanonicalEffect(
                effect_id=effect_id,
                operation_id=operation_id,
                tx_hash=raw.get("transaction_hash"),
                type=raw["type"],
                type_i=self._parse_int(raw.get("type_i")) or 0,
                account=raw.get("account"),
                ledger=ledger_from_toid(operation_id),
                details=details,
                created_at=self._parse_datetime(raw.get("created_at")),
            ),
        )

    def normalize_payment(self, raw: Dict[str, Any]) -> PaymentRecord:
        payment_id = raw.get("id")
        asset = {
            "asset_type": raw.get("asset_type", "native"),
            "asset_code": raw.get("asset_code"),
            "asset_issuer": raw.get("asset_issuer"),
        }
        return self._build(
            "payment",
            payment_id,
            lambda: PaymentRecord(
                payment_id=str(payment_id),
                operation_id=str(payment_id),
                tx_hash=raw["transaction_hash"],
                from_account=raw.get("from") or raw.get("source_account"),
                to_account=raw.get("to") or raw.get("account"),
                asset=asset,
                amount=str(raw.get("amount") or raw.get("starting_balance") or "0"),
                ledger=ledger_from_toid(payment_id),
                timestamp=self._parse_datetime(raw.get("created_at")) or datetime.utcnow(),
            ),
        )

    def normalize_account(self, raw: Dict[str, Any]) -> AccountRecord:
        account_id = raw.get("account_id") or raw.get("id")
        return self._build(
            "account",
            account_id,
            lambda: AccountRecord(
                account_id=account_id,
                sequence=raw.get("sequence"),
                balances=raw.get("balances") or [],
                signers=raw.get("signers") or [],
                data=raw.get("data") or {},
                flags=raw.get("flags") or {},
                thresholds=raw.get("thresholds") or {},
                home_domain=raw.get("home_domain"),
                is_contract=str(account_id).startswith("C"),
                last_modified_ledger=self._parse_int(raw.get("last_modified_ledger")) or 0,
                last_activity=self._parse_datetime(raw.get("last_modified_time")),
            ),
        )

    def normalize_contract_data(self, raw: Dict[str, Any], contract_id: str, key: str) -> ContractDataEntry:
        """Normalize a getLedgerEntries contract data entry"""
        return self._build(
            "contract_data",
            f"{contract_id}/{key}",
            lambda: ContractDataEntry(
                contract_id=contract_id,
                key=key,
                ledger=self._parse_int(raw.get("lastModifiedLedgerSeq") or raw.get("ledger")) or 0,
                durability=raw.get("durability") or "persistent",
                value=raw.get("xdr", raw.get("value")),
                previous_value=raw.get("previousValue"),
                is_deleted=bool(raw.get("deleted", False)),
                timestamp=self._parse_datetime(raw.get("timestamp")),
            ),
        )

    def normalize_many(self, raws: List[Dict[str, Any]], fn: Callable[..., T], *args) -> List[T]:
        """Normalize a page, skipping records that cannot be mapped"""
        records = []
        for raw in raws:
            try:
                records.append(fn(raw, *args))
            except NormalizationError as e:
                logger.warning(f"Skipping record: {e}")
        return records

    @staticmethod
    def _build(record_kind: str, record_id: Any, factory: Callable[[], T]) -> T:
        try:
            return factory()
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise NormalizationError(
                f"Cannot normalize {record_kind}",
                context={"record_kind": record_kind, "record_id": record_id},
                original_exception=e,
            )

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        """Safely parse int value"""
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Parse ISO-8601 or unix seconds into naive UTC"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
        else:
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
