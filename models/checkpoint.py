from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, BigInteger
from datetime import datetime
from models.base import Base, BigIntPK, SyncStatus


class IngestCheckpoint(Base):
    """
    Tracks the last fully ingested ledger per scope.

    Purpose:
    - Resume ingestion from the last confirmed ledger after a restart
    - Seed the startup sync instead of re-reading from genesis

    Design:
    - One row per scope: "global" for event sync, a contract id for
      per-contract operation sync
    - last_processed_ledger only moves forward
    - A failure records status and error without touching the ledger
    """
    __tablename__ = "ingest_checkpoints"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    scope = Column(String(128), nullable=False, unique=True, index=True)

    last_processed_ledger = Column(Integer, nullable=False, default=0)
    last_processed_at = Column(DateTime, nullable=True)

    # Statistics
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    total_runs = Column(Integer, default=0)
    total_records_processed = Column(BigInteger, default=0)
    last_records_processed = Column(Integer, default=0)

    # Status
    sync_status = Column(Enum(SyncStatus), default=SyncStatus.PENDING, nullable=False)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
