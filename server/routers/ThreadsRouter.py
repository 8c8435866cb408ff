from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.responses import ThreadListResponse

router = APIRouter(prefix="/threads", tags=["threads"])


@router.get("")
async def list_threads(request: Request, _: None = Depends(verify_api_key)) -> ThreadListResponse:
    """Conversation threads holding question PDFs, most recently updated first."""
    threads = await request.app.state.thread_store.list_threads()
    return ThreadListResponse(threads=threads, total=len(threads))
