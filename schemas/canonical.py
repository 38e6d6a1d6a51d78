"""
Pydantic schemas for canonical ledger records.

Every record kind carries its natural chain identifier, which the writer
uses as the upsert key. Field names match the ORM columns one to one so a
record can be written with model_dump().
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class CanonicalEvent(BaseModel):
    """Contract event keyed by its RPC event id"""

    event_id: str = Field(..., min_length=1)
    ledger: int = Field(..., ge=0)
    timestamp: datetime
    contract_id: str = ""
    event_type: str = "unknown"
    event_data: Dict[str, Any] = Field(default_factory=dict)
    tx_hash: Optional[str] = None
    paging_token: Optional[str] = None
    in_successful_contract_call: Optional[bool] = None


class CanonicalOperation(BaseModel):
    operation_id: str = Field(..., min_length=1)
    contract_id: str
    source_account: str = ""
    operation_type: str = "invoke_host_function"
    operation_index: int = 0
    function: Optional[str] = None
    successful: bool = True
    tx_hash: str
    ledger: int = Field(..., ge=0)
    raw: Dict[str, Any] = Field(default_factory=dict)


class CanonicalTransaction(BaseModel):
    """Transaction keyed by hash"""

    hash: str = Field(..., min_length=1)
    ledger: int = Field(..., ge=0)
    timestamp: datetime
    source_account: str = ""
    fee: str = "0"
    successful: bool
    operation_count: int = 0
    envelope_xdr: Optional[str] = None
    result_xdr: Optional[str] = None
    result_meta_xdr: Optional[str] = None
    memo: Optional[str] = None
    memo_type: Optional[str] = None
    fee_bump: bool = False

    @validator("fee", pre=True)
    def fee_as_string(cls, v):
        """Fees arrive as strings from Horizon and as ints from RPC"""
        if v is None or v == "":
            return "0"
        return str(v)


class CanonicalEffect(BaseModel):
    effect_id: str = Field(..., min_length=1)
    operation_id: str
    tx_hash: Optional[str] = None
    type: str
    type_i: int = 0
    account: Optional[str] = None
    ledger: int = Field(..., ge=0)
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ContractDataEntry(BaseModel):
    """
    One version of a contract storage entry.

    (contract_id, key, ledger) is the composite key; a newer ledger is a new
    version rather than an in-place update.
    """

    contract_id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    ledger: int = Field(..., ge=0)
    durability: str = "persistent"
    value: Optional[Any] = None
    previous_value: Optional[Any] = None
    is_deleted: bool = False
    timestamp: Optional[datetime] = None

    @validator("durability")
    def validate_durability(cls, v):
        if v not in ("persistent", "temporary"):
            raise ValueError(f"durability must be persistent or temporary, got {v!r}")
        return v


class AccountRecord(BaseModel):
    account_id: str = Field(..., min_length=1)
    sequence: str = "0"
    balances: List[Dict[str, Any]] = Field(default_factory=list)
    signers: List[Dict[str, Any]] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)
    flags: Dict[str, Any] = Field(default_factory=dict)
    thresholds: Dict[str, Any] = Field(default_factory=dict)
    home_domain: Optional[str] = None
    is_contract: bool = False
    last_modified_ledger: int = 0
    last_activity: Optional[datetime] = None

    @validator("sequence", pre=True)
    def sequence_as_string(cls, v):
        return "0" if v is None else str(v)


class PaymentRecord(BaseModel):
    payment_id: str = Field(..., min_length=1)
    operation_id: str
    tx_hash: str
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    asset: Dict[str, Any] = Field(default_factory=dict)
    amount: str = "0"
    ledger: int = Field(..., ge=0)
    timestamp: datetime
