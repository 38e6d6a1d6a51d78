"""
Ingest control endpoints.

Queued endpoints return 202 with the job id; failures of the job itself only
show up in logs and /system/queue/status. /ingest/backfill runs outside the
queue and answers with the result.
"""

from typing import Any, List, Optional
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from api.dependencies import get_ingestion
from schemas.api import IngestRequest, IngestAccepted, BackfillResponse, ErrorResponse
from ingestion.jobs import JobKind, JobPayload
from ingestion.scheduler import IngestionScheduler
from core.exceptions import UpstreamFetchError, ValidationError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/ingest",
    tags=["Ingest"],
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)


# ============================================================================
# Parameter parsing
# ============================================================================

def parse_ledger(value: Any, field_name: str) -> Optional[int]:
    """Ledger from an int or a numeric string; anything else is a 400"""
    if value is None or value == "":
        return None

    parsed = None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            parsed = None

    if parsed is None:
        raise ValidationError(
            f"Invalid {field_name} parameter. Must be a number.",
            context={"field_name": field_name, "field_value": value}
        )
    if parsed < 0:
        raise ValidationError(
            f"Invalid {field_name} parameter. Must be a non-negative number.",
            context={"field_name": field_name, "field_value": value}
        )
    return parsed


def parse_range(body: IngestRequest):
    start = parse_ledger(body.startLedger, "startLedger")
    end = parse_ledger(body.endLedger, "endLedger")
    if start is not None and end is not None and end < start:
        raise ValidationError(
            "Invalid ledger range. endLedger must be greater than or equal to startLedger.",
            context={"startLedger": start, "endLedger": end}
        )
    return start, end


def parse_contract_ids(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if not isinstance(value, list) or not value:
        raise ValidationError(
            "Invalid contractIds parameter. Must be a non-empty array of contract ids.",
            context={"field_name": "contractIds", "field_value": value}
        )
    if not all(isinstance(cid, str) and cid.strip() for cid in value):
        raise ValidationError(
            "Invalid contractIds parameter. Every contract id must be a non-empty string.",
            context={"field_name": "contractIds", "field_value": value}
        )
    return [cid.strip() for cid in value]


def parse_include_failed(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, bool):
        raise ValidationError(
            "Invalid includeFailedTx parameter. Must be a boolean.",
            context={"field_name": "includeFailedTx", "field_value": value}
        )
    return value


def _enqueue(ingestion: IngestionScheduler, kind: JobKind, payload: JobPayload, message: str, **extra):
    try:
        job_id = ingestion.queue.enqueue(kind, payload)
    except ValidationError:
        raise
    except Exception as e:
        logger.exception(f"Failed to enqueue {kind.value}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": f"Failed to enqueue job: {e}"}
        )

    body = IngestAccepted(message=message, jobId=job_id, **extra)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(exclude_none=True)
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/events", status_code=status.HTTP_202_ACCEPTED, response_model=IngestAccepted)
async def ingest_events(
    body: Optional[IngestRequest] = None,
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    """Enqueue an event sync"""
    body = body or IngestRequest()
    start, end = parse_range(body)

    return _enqueue(
        ingestion,
        JobKind.FETCH_EVENTS,
        JobPayload(start_ledger=start, end_ledger=end),
        "Event ingestion job enqueued",
    )


@router.post("/contracts/operations", status_code=status.HTTP_202_ACCEPTED, response_model=IngestAccepted)
async def ingest_contract_operations(
    body: Optional[IngestRequest] = None,
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    """Enqueue an operation sync for the given or the configured contracts"""
    body = body or IngestRequest()
    start, end = parse_range(body)
    contract_ids = parse_contract_ids(body.contractIds) or ingestion.orchestrator.contract_ids
    include_failed = parse_include_failed(body.includeFailedTx)

    return _enqueue(
        ingestion,
        JobKind.FETCH_CONTRACT_OPERATIONS,
        JobPayload(
            start_ledger=start,
            end_ledger=end,
            contract_ids=contract_ids,
            include_failed_tx=include_failed,
        ),
        f"Contract operations ingestion job enqueued for {len(contract_ids)} contracts",
        contractIds=contract_ids,
    )


async def _enqueue_comprehensive(body: Optional[IngestRequest], ingestion: IngestionScheduler):
    body = body or IngestRequest()
    start, end = parse_range(body)
    contract_ids = parse_contract_ids(body.contractIds)

    return _enqueue(
        ingestion,
        JobKind.FETCH_COMPREHENSIVE,
        JobPayload(start_ledger=start, end_ledger=end, contract_ids=contract_ids),
        "Comprehensive ingestion job enqueued",
    )


@router.post("/comprehensive", status_code=status.HTTP_202_ACCEPTED, response_model=IngestAccepted)
async def ingest_comprehensive(
    body: Optional[IngestRequest] = None,
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    return await _enqueue_comprehensive(body, ingestion)


@router.post("/full", status_code=status.HTTP_202_ACCEPTED, response_model=IngestAccepted)
async def ingest_full(
    body: Optional[IngestRequest] = None,
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    """Alias of /ingest/comprehensive"""
    return await _enqueue_comprehensive(body, ingestion)


@router.post("/backfill", response_model=BackfillResponse)
async def ingest_backfill(
    body: Optional[IngestRequest] = None,
    ingestion: IngestionScheduler = Depends(get_ingestion)
):
    """
    Synchronous backfill of a historical window.

    Runs on the request task, outside the queue. Upstream failures answer
    502, anything else 500.
    """
    body = body or IngestRequest()
    start, end = parse_range(body)
    contract_ids = parse_contract_ids(body.contractIds)

    try:
        report = await ingestion.orchestrator.backfill(start, end, contract_ids)
    except UpstreamFetchError as e:
        logger.error(f"Backfill failed upstream: {e}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "error": e.message, "details": e.to_dict()}
        )
    except Exception as e:
        logger.exception("Backfill failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)}
        )

    return BackfillResponse(message=report.message, summary=report.to_dict())
