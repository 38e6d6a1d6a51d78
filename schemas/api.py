"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime


# ============================================================================
# Ingest Request Schemas
# ============================================================================

class IngestRequest(BaseModel):
    """
    Body of the /ingest endpoints.

    Fields are accepted as delivered and checked by the route, so malformed
    values produce explicit 400 messages instead of generic validation errors.
    """
    startLedger: Optional[Any] = None
    endLedger: Optional[Any] = None
    contractIds: Optional[Any] = None
    includeFailedTx: Optional[Any] = None

    class Config:
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "startLedger": 1000,
                "endLedger": 2000,
                "contractIds": ["CAF3UDLX7QVNFTYBKUGOHXWGVC6ZAJ4JBHHMSAZTGQGX5LQ3ZBURFHRA"],
                "includeFailedTx": True
            }
        }


# ============================================================================
# Ingest Response Schemas
# ============================================================================

class IngestAccepted(BaseModel):
    """202 response for queued ingest jobs"""
    success: bool = True
    message: str
    jobId: str
    contractIds: Optional[List[str]] = None


class BackfillResponse(BaseModel):
    success: bool = True
    message: str
    summary: Dict[str, Any]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


# ============================================================================
# System Schemas
# ============================================================================

class QueuedJobInfo(BaseModel):
    id: str
    type: str
    nextRunInMs: int
    attempts: int
    maxAttempts: int
    lastRescheduleCause: Optional[str] = None


class DeadJobInfo(BaseModel):
    id: str
    type: str
    attempts: int
    lastError: Optional[str] = None


class QueueStatusResponse(BaseModel):
    queueSize: int
    running: bool
    processing: bool
    currentJob: Optional[str] = None
    nextJobs: List[QueuedJobInfo] = Field(default_factory=list)
    deadJobs: List[DeadJobInfo] = Field(default_factory=list)


class CheckpointInfo(BaseModel):
    """Checkpoint information for health check"""
    scope: str
    last_processed_ledger: int
    sync_status: str
    last_processed_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    total_records_processed: int = 0
    last_records_processed: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    network: str
    database_connected: bool
    rpc_healthy: bool
    latest_ledger: Optional[int] = None
    checkpoints: List[CheckpointInfo] = Field(default_factory=list)
    failed_scopes: int = 0
    status: str = Field("unknown", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        if not values.get("rpc_healthy", False) or values.get("failed_scopes", 0) > 0:
            return "degraded"

        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "network": "testnet",
                "database_connected": True,
                "rpc_healthy": True,
                "latest_ledger": 123456,
                "failed_scopes": 0,
                "checkpoints": [
                    {
                        "scope": "global",
                        "last_processed_ledger": 123450,
                        "sync_status": "success",
                        "total_records_processed": 1500,
                        "last_records_processed": 25
                    }
                ]
            }
        }
