from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text
from datetime import datetime
from models.base import Base, BigIntPK


class HorizonTransaction(Base):
    """
    Transaction record keyed by hash.

    Resolved through Horizon /transactions/{hash} for every hash referenced
    by an event or an operation.
    """
    __tablename__ = "horizon_transactions"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    hash = Column(String(64), nullable=False, unique=True)
    ledger = Column(Integer, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    source_account = Column(String(64), nullable=False, default="")
    fee = Column(String(32), nullable=False, default="0")
    successful = Column(Boolean, nullable=False)
    operation_count = Column(Integer, nullable=False, default=0)

    envelope_xdr = Column(Text, nullable=True)
    result_xdr = Column(Text, nullable=True)
    result_meta_xdr = Column(Text, nullable=True)
    memo = Column(Text, nullable=True)
    memo_type = Column(String(16), nullable=True)
    fee_bump = Column(Boolean, nullable=False, default=False)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
