"""
Analysis API routes.

These endpoints drive the analysis pipeline:
- Starting an analysis job (returns immediately; the job runs in the background)
- Polling its progress
- Stopping (pausing) it
- Reading the active result and the result history
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse

from culturescope.analysis.orchestrator import (
    AlreadyRunningError,
    AnalysisOrchestrator,
    NotRunningError,
)
from culturescope.analysis.schemas import AnalysisFilters, ProgressRecord
from culturescope.api.dependencies import get_orchestrator, get_progress_store, get_result_store
from culturescope.storage.stores import ProgressStore, ResultStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.get("/progress")
async def get_progress(progress_store: ProgressStore = Depends(get_progress_store)):
    """Latest job's progress, or idle defaults if no job has ever run."""
    record = progress_store.get_latest() or ProgressRecord.idle()
    return record.model_dump(mode="json", by_alias=True)


@router.post("/start")
async def start_analysis(
    background_tasks: BackgroundTasks,
    filters: AnalysisFilters | None = None,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Start an analysis job.

    Request body (all optional):
    {
        "dateFrom": "2025-01-01T00:00:00Z",
        "dateTo": "2025-01-31T00:00:00Z",
        "departments": ["Ventas"],
        "countries": ["Colombia"]
    }

    Returns as soon as the progress record exists; poll /progress.
    """
    filters = filters or AnalysisFilters()
    try:
        record = orchestrator.begin(filters)
    except AlreadyRunningError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    background_tasks.add_task(orchestrator.run, record.id, filters)
    return {"message": "Analysis started", "progressId": record.id}


@router.post("/stop")
async def stop_analysis(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.stop()
    except NotRunningError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return {"message": "Analysis paused"}


@router.get("/results")
async def get_active_result(result_store: ResultStore = Depends(get_result_store)):
    result = result_store.get_active()
    if result is None:
        return JSONResponse(status_code=404, content={"error": "No analysis results found"})
    return result.model_dump(mode="json", by_alias=True)


@router.get("/results/history")
async def get_result_history(result_store: ResultStore = Depends(get_result_store)):
    return [r.model_dump(mode="json", by_alias=True) for r in result_store.get_all()]
