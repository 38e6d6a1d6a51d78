"""
Pydantic schemas for data validation and serialization.

Schemas:
    canonical: Canonical ledger records produced by normalization and
        consumed by the writer (events, operations, transactions, effects,
        contract data, accounts, payments)
    api: Request/response models for the HTTP control surface

Usage:
    from schemas.canonical import CanonicalEvent
    from schemas.api import IngestAccepted, HealthCheckResponse
"""

__all__ = [
    "CanonicalEvent",
    "CanonicalOperation",
    "CanonicalTransaction",
    "CanonicalEffect",
    "ContractDataEntry",
    "AccountRecord",
    "PaymentRecord",
    "IngestRequest",
    "IngestAccepted",
    "BackfillResponse",
    "QueueStatusResponse",
    "HealthCheckResponse",
]
