from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonPayment(Base):
    __tablename__ = "horizon_payments"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    payment_id = Column(String(32), nullable=False, unique=True)
    operation_id = Column(String(32), nullable=False)
    tx_hash = Column(String(64), nullable=False, index=True)
    from_account = Column(String(64), nullable=True, index=True)
    to_account = Column(String(64), nullable=True, index=True)
    asset = Column(JSONType, nullable=False)
    amount = Column(String(32), nullable=False, default="0")
    ledger = Column(Integer, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
