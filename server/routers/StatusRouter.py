"""Health and queue status of the worker's storage, read-only."""

from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.responses import CacheStatus, HealthResponse, StatusResponse

router = APIRouter(tags=["status"])


@router.get("/health")
async def health(request: Request) -> HealthResponse:
    """Liveness check, no authentication."""
    return HealthResponse(status="ok", version=request.app.state.app_version)


@router.get("/status")
async def status(request: Request, _: None = Depends(verify_api_key)) -> StatusResponse:
    """Queue depth, quarantine size, catalog size, threads and cache usage.

    Args:
        request (Request): FastAPI request (provides the stores on app.state).
        _ (None): Auth dependency result (unused).

    Returns:
        StatusResponse: Current counters.
    """
    state = request.app.state
    cache_stats = await state.document_cache.get_stats()
    return StatusResponse(
        queued_items=state.work_queue.count_items(),
        quarantined_items=state.work_queue.count_quarantined(),
        documents=await state.document_store.count_documents(),
        threads=state.thread_store.count_threads(),
        cache=CacheStatus(entries=cache_stats.entry_count, size_bytes=cache_stats.total_size_bytes),
    )
