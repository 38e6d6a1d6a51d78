from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonEffect(Base):
    __tablename__ = "horizon_effects"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    effect_id = Column(String(64), nullable=False, unique=True)
    operation_id = Column(String(32), nullable=False, index=True)
    tx_hash = Column(String(64), nullable=True, index=True)
    type = Column(String(64), nullable=False)
    type_i = Column(Integer, nullable=False, default=0)
    account = Column(String(64), nullable=True, index=True)
    ledger = Column(Integer, nullable=False, index=True)
    details = Column(JSONType, nullable=False)
    created_at = Column(DateTime, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
