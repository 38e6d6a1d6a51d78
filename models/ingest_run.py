from sqlalchemy import Column, String, Enum, DateTime, Float, Integer, Text, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, RunStatus


class IngestRun(Base):
    """
    One row per queued job execution outcome.

    Purpose:
    - Audit trail of every execution attempt
    - Durable record of dead-lettered jobs and their final error
    - Summary counters for completed syncs
    """
    __tablename__ = "ingest_runs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    job_id = Column(String(128), nullable=False, index=True)
    job_kind = Column(String(64), nullable=False, index=True)

    status = Column(Enum(RunStatus), nullable=False, index=True)
    attempt = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    duration_seconds = Column(Float, nullable=True)

    payload = Column(JSONType, nullable=True)
    summary = Column(JSONType, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    # Requeue info
    reschedule_cause = Column(String(32), nullable=True)
    next_run_in_seconds = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_ingest_run_kind_finished", "job_kind", "finished_at"),
    )
