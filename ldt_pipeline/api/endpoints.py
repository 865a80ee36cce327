"""
HTTP endpoints: LDT webhook and quarantine administration.
"""

from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from ldt_pipeline.api.schemas import (
    AssignOwnerRequest,
    AssignOwnerResponse,
    IngestResponse,
    QuarantineEntryList,
    QuarantineStatistics,
)
from ldt_pipeline.api.security import verify_webhook_request
from ldt_pipeline.core.models import IdentifierHints, QuarantineEntry, QuarantineStatus, Stored
from ldt_pipeline.ingest.factory import PipelineComponents
from ldt_pipeline.observability.logger import get_logger
from ldt_pipeline.utils.validation import validate_identifier_hint

logger = get_logger(__name__)

ldt_router = APIRouter()
admin_router = APIRouter()


def get_components(request: Request) -> PipelineComponents:
    return request.app.state.components


@ldt_router.post(
    "/messages",
    response_model=IngestResponse,
    response_model_exclude_none=True,
    summary="Ingest an LDT message",
    description="Accepts one text/plain LDT message per request.",
)
async def ingest_message(
        body: bytes = Depends(verify_webhook_request),
        components: PipelineComponents = Depends(get_components),
        x_message_id: str | None = Header(None),
        x_idempotency_key: str | None = Header(None),
        x_bsnr: str | None = Header(None),
        x_lanr: str | None = Header(None),
) -> dict:
    """
    Ingest one delivery.

    Returns:
        Transport response summary
    """
    hints = None
    bsnr_hint = validate_identifier_hint("bsnr", x_bsnr)
    lanr_hint = validate_identifier_hint("lanr", x_lanr)
    if bsnr_hint or lanr_hint:
        hints = IdentifierHints(bsnr=bsnr_hint, lanr=lanr_hint)

    outcome = await run_in_threadpool(
        components.service.ingest,
        body,
        x_message_id,
        x_idempotency_key,
        hints,
    )
    return outcome.to_response()


@admin_router.get(
    "/quarantine",
    response_model=QuarantineEntryList,
    summary="List quarantine entries",
)
def list_quarantine(
        status: QuarantineStatus | None = Query(None),
        limit: int = Query(100, ge=1, le=10000),
        offset: int = Query(0, ge=0),
        components: PipelineComponents = Depends(get_components),
) -> dict:
    entries = components.quarantine.list_entries(status=status, limit=limit, offset=offset)
    return {"items": entries, "limit": limit, "offset": offset}


@admin_router.get(
    "/quarantine/statistics",
    response_model=QuarantineStatistics,
    summary="Quarantine entry counts",
)
def quarantine_statistics(components: PipelineComponents = Depends(get_components)) -> dict:
    return components.quarantine.statistics()


@admin_router.get(
    "/quarantine/{entry_id}",
    response_model=QuarantineEntry,
    summary="Get a quarantine entry",
)
def get_quarantine_entry(
        entry_id: str,
        components: PipelineComponents = Depends(get_components),
) -> QuarantineEntry:
    return components.quarantine.get_entry(entry_id)


@admin_router.post(
    "/quarantine/{entry_id}/assign-owner",
    response_model=AssignOwnerResponse,
    response_model_exclude_none=True,
    summary="Assign an owner and retry",
    description="Re-decodes the quarantined message and stores it under the given owner, bypassing the matcher.",
)
def assign_owner(
        entry_id: str,
        request_body: AssignOwnerRequest,
        components: PipelineComponents = Depends(get_components),
) -> dict:
    outcome = components.quarantine.retry_with_forced_owner(entry_id, request_body.owner_id)
    logger.info(
        "Admin owner assignment",
        extra={"entry_id": entry_id, "owner_id": request_body.owner_id, "status": outcome.status}
    )
    return {
        "entry_id": entry_id,
        "status": outcome.status,
        "message_id": outcome.message_id,
        "result_id": outcome.result_id if isinstance(outcome, Stored) else None,
        "owner_id": outcome.owner_id,
    }
