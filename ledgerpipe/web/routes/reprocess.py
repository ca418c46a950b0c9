"""Reprocess routes.

Routes:
- POST /imports/{id}/reprocess              - Start a new versioned run
- GET  /imports/{id}/reprocess-runs         - Runs with change counts
- GET  /imports/{id}/reprocess-comparison   - Before/after of a run (latest by default)
- GET  /imports/{id}/reprocess-initial      - First "before" vs a run's "after"
- GET  /reprocess-runs/compare              - After-vs-after of two runs
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ledgerpipe.context import PipelineContext
from ledgerpipe.models import ReprocessComparison
from ledgerpipe.reprocess.manager import ReprocessOptions
from ledgerpipe.web.dependencies import get_pipeline
from ledgerpipe.web.models import ReprocessRequest, ReprocessResponse, RunListResponse

router = APIRouter(tags=["reprocess"])


@router.post("/imports/{session_id}/reprocess", response_model=ReprocessResponse, status_code=202)
async def reprocess_import(
    session_id: int,
    body: ReprocessRequest | None = None,
    pipeline: PipelineContext = Depends(get_pipeline),
):
    """Re-run enrichment; 409 while the session is processing."""
    body = body or ReprocessRequest()
    ticket = await pipeline.reprocess.start_reprocess(
        session_id,
        ReprocessOptions(model=body.model, reason=body.reason, initiated_by=body.initiated_by),
    )
    return ReprocessResponse(
        session_id=ticket.session_id,
        run_id=ticket.run_id,
        run_number=ticket.run_number,
        message=f"Reprocess run #{ticket.run_number} started",
    )


@router.get("/imports/{session_id}/reprocess-runs", response_model=RunListResponse)
async def list_reprocess_runs(session_id: int, pipeline: PipelineContext = Depends(get_pipeline)):
    return RunListResponse(runs=await pipeline.reprocess.list_runs(session_id))


@router.get("/imports/{session_id}/reprocess-comparison", response_model=ReprocessComparison)
async def reprocess_comparison(
    session_id: int,
    run_id: int | None = None,
    pipeline: PipelineContext = Depends(get_pipeline),
):
    return await pipeline.reprocess.comparison_for_session(session_id, run_id)


@router.get("/imports/{session_id}/reprocess-initial", response_model=ReprocessComparison)
async def reprocess_vs_initial(
    session_id: int,
    run_id: int = Query(...),
    pipeline: PipelineContext = Depends(get_pipeline),
):
    return await pipeline.reprocess.compare_to_initial(session_id, run_id)


@router.get("/reprocess-runs/compare", response_model=ReprocessComparison)
async def compare_reprocess_runs(
    run_a: int = Query(...),
    run_b: int = Query(...),
    pipeline: PipelineContext = Depends(get_pipeline),
):
    return await pipeline.reprocess.compare_runs(run_a, run_b)
