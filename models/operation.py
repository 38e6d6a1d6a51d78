from sqlalchemy import Column, String, Integer, DateTime, Boolean, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonOperation(Base):
    """Horizon operation attributed to the tracked contract it was fetched for"""
    __tablename__ = "horizon_operations"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    operation_id = Column(String(32), nullable=False, unique=True)
    contract_id = Column(String(64), nullable=False, index=True)
    source_account = Column(String(64), nullable=False, default="")
    operation_type = Column(String(64), nullable=False, default="invoke_host_function")
    operation_index = Column(Integer, nullable=False, default=0)
    function = Column(String(128), nullable=True)
    successful = Column(Boolean, nullable=False, default=True)
    tx_hash = Column(String(64), nullable=False, index=True)
    ledger = Column(Integer, nullable=False, index=True)
    raw = Column(JSONType, nullable=False)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_operation_contract_ledger", "contract_id", "ledger"),
    )
