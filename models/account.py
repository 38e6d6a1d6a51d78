from sqlalchemy import Column, String, Integer, DateTime, Boolean
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonAccount(Base):
    """Latest known state of an account involved in tracked contract activity"""
    __tablename__ = "horizon_accounts"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    account_id = Column(String(64), nullable=False, unique=True)
    sequence = Column(String(32), nullable=False, default="0")
    balances = Column(JSONType, nullable=False)
    signers = Column(JSONType, nullable=False)
    data = Column(JSONType, nullable=False)
    flags = Column(JSONType, nullable=False)
    thresholds = Column(JSONType, nullable=False)
    home_domain = Column(String(255), nullable=True)
    is_contract = Column(Boolean, nullable=False, default=False)
    last_modified_ledger = Column(Integer, nullable=False, default=0, index=True)
    last_activity = Column(DateTime, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
