"""
Job type contracts shared by the ingest queue, the orchestrator and the API.
"""

import copy
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4
from core.exceptions import ValidationError


class JobKind(str, enum.Enum):
    FETCH_EVENTS = "fetch-events"
    FETCH_CONTRACT_OPERATIONS = "fetch-contract-operations"
    FETCH_COMPREHENSIVE = "fetch-comprehensive-data"
    BACKFILL = "backfill"

    @classmethod
    def parse(cls, value: Union["JobKind", str]) -> "JobKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unknown job kind: {value}",
                context={"field_name": "kind", "field_value": value}
            )


class RescheduleCause(str, enum.Enum):
    """Why a job went back into the pending set"""
    ZERO_RESULT = "zero-result"
    FAILURE = "failure"


class JobState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    DEAD = "dead"


DEFAULT_MAX_ATTEMPTS = {
    JobKind.FETCH_EVENTS: 5,
    JobKind.FETCH_CONTRACT_OPERATIONS: 5,
    JobKind.FETCH_COMPREHENSIVE: 3,
    JobKind.BACKFILL: 3,
}


@dataclass
class JobPayload:
    start_ledger: Optional[int] = None
    end_ledger: Optional[int] = None
    contract_ids: Optional[List[str]] = None
    include_failed_tx: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startLedger": self.start_ledger,
            "endLedger": self.end_ledger,
            "contractIds": self.contract_ids,
            "includeFailedTx": self.include_failed_tx,
        }


@dataclass
class IngestJob:
    """
    Unit of scheduled work.

    attempts only grows on failure or on the zero-result retry path;
    next_run_at is wall-clock epoch seconds.
    """
    kind: JobKind
    payload: JobPayload
    max_attempts: int
    next_run_at: float
    id: str = ""
    attempts: int = 0
    enqueued_at: float = 0.0
    state: JobState = JobState.PENDING
    last_error: Optional[str] = None
    last_reschedule_cause: Optional[RescheduleCause] = None

    def __post_init__(self):
        if not self.id:
            self.id = new_job_id(self.kind)

    def copy_for_retry(self) -> "IngestJob":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": self.payload.to_dict(),
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "nextRunAt": self.next_run_at,
            "state": self.state.value,
            "lastError": self.last_error,
            "lastRescheduleCause": self.last_reschedule_cause.value if self.last_reschedule_cause else None,
        }


def new_job_id(kind: JobKind) -> str:
    return f"{kind.value}-{uuid4().hex}"


@dataclass
class SyncReport:
    """
    Result of one orchestrator run; to_dict() gives the camelCase summary
    returned by the API and stored on ingest runs.
    """
    message: str = ""
    events_fetched: int = 0
    operations_fetched: int = 0
    transactions_fetched: int = 0
    accounts_involved: int = 0
    failed_operations: int = 0
    effects_fetched: int = 0
    payments_fetched: int = 0
    contract_data_fetched: int = 0
    processed_up_to_ledger: Optional[int] = None
    last_upstream_ledger: Optional[int] = None
    complete: Optional[bool] = None
    contract_failures: List[Dict[str, Any]] = field(default_factory=list)
    transaction_hashes: set = field(default_factory=set, repr=False)
    accounts: set = field(default_factory=set, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "message": self.message,
            "eventsFetched": self.events_fetched,
            "operationsFetched": self.operations_fetched,
            "transactionsFetched": self.transactions_fetched,
            "accountsInvolved": self.accounts_involved,
            "failedOperations": self.failed_operations,
            "effectsFetched": self.effects_fetched,
            "paymentsFetched": self.payments_fetched,
            "contractDataFetched": self.contract_data_fetched,
            "processedUpToLedger": self.processed_up_to_ledger,
            "lastUpstreamLedger": self.last_upstream_ledger,
            "contractFailures": self.contract_failures,
        }
        if self.complete is not None:
            data["complete"] = self.complete
        return data
