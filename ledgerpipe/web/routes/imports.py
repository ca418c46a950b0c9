"""Import session routes.

Routes:
- POST /imports                   - Ingest a statement, start enrichment
- GET  /imports                   - List sessions (filterable)
- GET  /imports/{id}              - Poll one session
- GET  /imports/{id}/records      - Records ingested by the session
- GET  /imports/{id}/skipped      - Duplicates skipped during ingest
- POST /imports/{id}/cancel       - Request cooperative cancellation
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from ledgerpipe.context import PipelineContext
from ledgerpipe.db.filters import RecordFilter, RecordSort, SessionFilter
from ledgerpipe.db.records import list_records
from ledgerpipe.models import ImportStatus
from ledgerpipe.pipeline.service import ImportRequest
from ledgerpipe.web.dependencies import get_pipeline
from ledgerpipe.web.models import (
    CancelResponse,
    ImportCreateRequest,
    ImportCreateResponse,
    RecordListResponse,
    RecordResponse,
    SessionListResponse,
    SessionResponse,
    SkippedRecordResponse,
)

router = APIRouter(tags=["imports"])


# ============================================================================
# Ingest
# ============================================================================


@router.post("/imports", response_model=ImportCreateResponse, status_code=201)
async def create_import(
    body: ImportCreateRequest,
    pipeline: PipelineContext = Depends(get_pipeline),
):
    """Ingest a statement synchronously; enrichment continues in the background.

    Returns 400 (and creates no session) when the payload is unreadable.
    """
    outcome = await pipeline.imports.import_statement(
        ImportRequest(
            account_ref=body.account_ref,
            csv_data=body.csv_data,
            records=body.records,
            filename=body.filename,
            model=body.model,
            initiated_by=body.initiated_by,
        )
    )
    return ImportCreateResponse(
        session_id=outcome.session_id,
        imported=outcome.imported,
        skipped=outcome.skipped,
        errors=outcome.errors,
    )


# ============================================================================
# Sessions
# ============================================================================


@router.get("/imports", response_model=SessionListResponse)
async def list_imports(
    account_ref: str | None = None,
    status: ImportStatus | None = None,
    initiated_by: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    pipeline: PipelineContext = Depends(get_pipeline),
):
    rows, total = await pipeline.tracker.list_sessions(
        SessionFilter(
            account_ref=account_ref,
            status=status,
            initiated_by=initiated_by,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
            offset=offset,
        )
    )
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(row) for row in rows], total=total
    )


@router.get("/imports/{session_id}", response_model=SessionResponse)
async def get_import(session_id: int, pipeline: PipelineContext = Depends(get_pipeline)):
    """Status, phase, progress, counters, durations and error of one session."""
    return SessionResponse.model_validate(await pipeline.tracker.get(session_id))


@router.get("/imports/{session_id}/records", response_model=RecordListResponse)
async def get_import_records(
    session_id: int,
    search: str | None = None,
    tag: str | None = None,
    untagged: bool | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    min_amount: Decimal | None = None,
    max_amount: Decimal | None = None,
    sort: RecordSort = RecordSort.DATE_DESC,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    pipeline: PipelineContext = Depends(get_pipeline),
):
    await pipeline.tracker.get(session_id)
    rows, total = await list_records(
        RecordFilter(
            import_session_id=session_id,
            search=search,
            tag=tag,
            untagged=untagged,
            date_from=date_from,
            date_to=date_to,
            min_amount=min_amount,
            max_amount=max_amount,
            sort=sort,
            limit=limit,
            offset=offset,
        )
    )
    return RecordListResponse(
        records=[RecordResponse.model_validate(row) for row in rows], total=total
    )


@router.get("/imports/{session_id}/skipped", response_model=list[SkippedRecordResponse])
async def get_import_skipped(session_id: int, pipeline: PipelineContext = Depends(get_pipeline)):
    rows = await pipeline.tracker.skipped(session_id)
    return [SkippedRecordResponse.model_validate(row) for row in rows]


@router.post("/imports/{session_id}/cancel", response_model=CancelResponse)
async def cancel_import(session_id: int, pipeline: PipelineContext = Depends(get_pipeline)):
    """Request cancellation; takes effect at the next phase boundary."""
    if await pipeline.tracker.request_cancel(session_id):
        return CancelResponse(
            cancelled=True,
            message="Cancellation requested; the current phase will finish first",
        )
    session = await pipeline.tracker.get(session_id)
    if session.status == ImportStatus.PROCESSING.value:
        message = "All phases have finished; the session is completing and can no longer be cancelled"
    else:
        message = f"Session is {session.status}, only processing sessions can be cancelled"
    return CancelResponse(cancelled=False, message=message)
