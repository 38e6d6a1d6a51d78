from sqlalchemy import Column, String, Integer, DateTime, Boolean, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class HorizonEvent(Base):
    """
    Contract event as delivered by Soroban RPC getEvents.

    Design Decisions:
    - event_id is the RPC event id and the upsert key
    - event_data keeps topic/value XDR as delivered; no decoding here
    - tx_hash is a soft reference to horizon_transactions.hash
    """
    __tablename__ = "horizon_events"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    event_id = Column(String(128), nullable=False, unique=True)
    ledger = Column(Integer, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False)
    contract_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    event_data = Column(JSONType, nullable=False)
    tx_hash = Column(String(64), nullable=True, index=True)
    paging_token = Column(String(128), nullable=True)
    in_successful_contract_call = Column(Boolean, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_event_contract_ledger", "contract_id", "ledger"),
    )
