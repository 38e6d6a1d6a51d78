from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, Index, UniqueConstraint
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonContractData(Base):
    """
    Versioned contract storage entries.

    Design:
    - Append-only by ledger: one row per (contract_id, key, ledger)
    - previous_value holds the value of the prior version for diffing
    - A deletion is a new version with is_deleted=True, never a row removal
    """
    __tablename__ = "horizon_contract_data"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    contract_id = Column(String(64), nullable=False, index=True)
    key = Column(Text, nullable=False)
    ledger = Column(Integer, nullable=False)
    durability = Column(String(16), nullable=False, default="persistent")
    value = Column(JSONType, nullable=True)
    previous_value = Column(JSONType, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("contract_id", "key", "ledger", name="uq_contract_data_version"),
        Index("idx_contract_data_key_ledger", "contract_id", "key", "ledger"),
    )
