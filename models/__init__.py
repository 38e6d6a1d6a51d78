"""
SQLAlchemy ORM models for database tables.

This package defines the ledger store schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, portable column types and shared enums
    event: Soroban contract events (horizon_events)
    operation: Horizon operations per tracked contract (horizon_operations)
    transaction: Transactions resolved by hash (horizon_transactions)
    effect: Operation effects (horizon_effects)
    account: Account state snapshots (horizon_accounts)
    payment: Payments (horizon_payments)
    contract_data: Versioned contract storage (horizon_contract_data)
    checkpoint: Per-scope last processed ledger (ingest_checkpoints)
    ingest_run: Job execution outcomes (ingest_runs)

Database Schema:
    Every canonical table carries a unique natural key so writes can be
    upserts. JSON payloads use JSONB on PostgreSQL and JSON elsewhere.

Usage:
    from models import HorizonEvent, IngestCheckpoint
    from models.base import SyncStatus
"""

from models.base import Base, SyncStatus, RunStatus
from models.event import HorizonEvent
from models.operation import HorizonOperation
from models.transaction import HorizonTransaction
from models.effect import HorizonEffect
from models.account import HorizonAccount
from models.payment import HorizonPayment
from models.contract_data import HorizonContractData
from models.checkpoint import IngestCheckpoint
from models.ingest_run import IngestRun

__all__ = [
    "Base",
    "SyncStatus",
    "RunStatus",
    "HorizonEvent",
    "HorizonOperation",
    "HorizonTransaction",
    "HorizonEffect",
    "HorizonAccount",
    "HorizonPayment",
    "HorizonContractData",
    "IngestCheckpoint",
    "IngestRun",
]
