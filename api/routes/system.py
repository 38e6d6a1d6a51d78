"""
Queue introspection and health check endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_ingestion
from schemas.api import HealthCheckResponse, CheckpointInfo, QueueStatusResponse
from ingestion.loaders.checkpoint_store import CheckpointStore
from ingestion.scheduler import IngestionScheduler
from core.exceptions import IngestionException
from models.base import SyncStatus
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/system", tags=["System"])


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status(ingestion: IngestionScheduler = Depends(get_ingestion)):
    """Pending jobs preview, dead-lettered jobs and worker state"""
    return ingestion.queue.status()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Soroban RPC health and latest ledger
    - Checkpoint status for every scope
    """

    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    rpc_healthy = False
    latest_ledger = None
    try:
        health = await ingestion.rpc_client.get_health()
        rpc_healthy = health.get("status") == "healthy"
        latest_ledger = health.get("latestLedger")
    except IngestionException as e:
        logger.error(f"Soroban RPC health check failed: {str(e)}")

    checkpoints = []
    failed_scopes = 0
    if db_connected:
        try:
            for checkpoint in await CheckpointStore(db).list():
                sync_status = SyncStatus(checkpoint.sync_status).value
                if sync_status == SyncStatus.FAILED.value:
                    failed_scopes += 1
                checkpoints.append(CheckpointInfo(
                    scope=checkpoint.scope,
                    last_processed_ledger=checkpoint.last_processed_ledger,
                    sync_status=sync_status,
                    last_processed_at=checkpoint.last_processed_at,
                    last_success_at=checkpoint.last_success_at,
                    last_failure_at=checkpoint.last_failure_at,
                    total_records_processed=checkpoint.total_records_processed or 0,
                    last_records_processed=checkpoint.last_records_processed or 0,
                    error_message=checkpoint.error_message
                ))
        except IngestionException as e:
            logger.error(f"Failed to fetch checkpoints: {str(e)}")

    # status is derived by the HealthCheckResponse validator
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        network=ingestion.settings.STELLAR_NETWORK,
        database_connected=db_connected,
        rpc_healthy=rpc_healthy,
        latest_ledger=latest_ledger,
        checkpoints=checkpoints,
        failed_scopes=failed_scopes,
    )
