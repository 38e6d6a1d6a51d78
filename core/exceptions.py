"""
Custom exceptions for the ingestion pipeline with structured error context.

Every error carries a human-readable message, a context dictionary and the
original exception (if any) so failures can be logged, recorded on ingest
runs and surfaced through the queue status without losing detail.

Exception Hierarchy:
    IngestionException (base)
    ├── ValidationError                 malformed request parameters
    ├── UpstreamFetchError              Soroban RPC / Horizon failures
    │   ├── UpstreamTimeoutError
    │   ├── RateLimitError
    │   ├── AuthenticationError
    │   ├── ResourceNotFoundError
    │   └── RpcError
    ├── NormalizationError              a single raw record could not be mapped
    ├── PartialBatchFailure             one sub-fetch of a batch failed
    ├── PersistenceError
    │   ├── UpsertError
    │   └── CheckpointError
    ├── TerminalJobFailure              retry budget exhausted
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class IngestionException(Exception):
    """
    Base exception for all ingestion-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, ledger, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionException):
    """
    Errors the ingest queue is expected to retry with backoff.

    Fetchers and loaders never retry on their own; they raise one of these
    and the queue decides whether the job is rescheduled or dead-lettered.
    """
    pass


class NonRetryableError(IngestionException):
    """
    Errors that retrying cannot fix, such as malformed input.
    """
    pass


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Raised when request parameters are malformed.

    Never enters the queue; the HTTP layer maps it to 400.

    Context should include:
        - field_name: Name of the offending field
        - field_value: Value that failed validation
    """
    pass


# ============================================================================
# Upstream Errors
# ============================================================================

class UpstreamFetchError(RetryableError):
    """
    Network or API failure talking to Soroban RPC or Horizon.

    Context should include:
        - source: "soroban_rpc" or "horizon"
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated)
    """
    pass


class UpstreamTimeoutError(UpstreamFetchError):
    """Request exceeded its explicit timeout."""
    pass


class RateLimitError(UpstreamFetchError):
    """Rate limiting errors (HTTP 429)."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(UpstreamFetchError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class ResourceNotFoundError(UpstreamFetchError):
    """Resource not found (HTTP 404)."""
    pass


class RpcError(UpstreamFetchError):
    """
    JSON-RPC error object returned by Soroban RPC, or a malformed response.

    Context should include:
        - method: RPC method name
        - rpc_code: Error code from the error object
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class NormalizationError(NonRetryableError):
    """
    Raised when a raw upstream record cannot be mapped to a canonical record.

    Context should include:
        - record_kind: event, operation, transaction, ...
        - record_id: Upstream identifier (if present)
    """
    pass


# ============================================================================
# Batch Errors
# ============================================================================

class PartialBatchFailure(IngestionException):
    """
    One sub-fetch inside a multi-contract or multi-hash loop failed.

    Recorded in the job report and logged; the rest of the batch proceeds.

    Context should include:
        - stage: operations, effects, payments, transaction, account
        - item: Contract id, transaction hash or account id
    """
    pass


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistenceError(RetryableError):
    """Base exception for write failures; fails the whole job."""
    pass


class UpsertError(PersistenceError):
    """
    Exception raised when an upsert batch fails.

    Context should include:
        - table_name: Name of the table
        - batch_size: Rows in the failing statement
    """
    pass


class CheckpointError(PersistenceError):
    """
    Exception raised when checkpoint management fails.

    Context should include:
        - scope: Checkpoint scope ("global" or a contract id)
        - ledger: Ledger the operation targeted
        - operation: read, advance, mark_failed
    """
    pass


# ============================================================================
# Job Errors
# ============================================================================

class TerminalJobFailure(IngestionException):
    """
    A job exhausted its retry budget and was dead-lettered.

    Context should include:
        - job_id, job_kind, attempts, max_attempts
    """
    pass
