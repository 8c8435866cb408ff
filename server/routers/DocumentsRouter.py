from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.responses import DocumentListResponse
from shared.models.document import Document

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("")
async def list_documents(request: Request, _: None = Depends(verify_api_key)) -> DocumentListResponse:
    """List the catalog, newest first.

    Args:
        request (Request): FastAPI request (provides app.state.document_store).
        _ (None): Auth dependency result (unused).

    Returns:
        DocumentListResponse: Catalog summaries and their count.
    """
    documents = await request.app.state.document_store.get_all_summaries()
    return DocumentListResponse(documents=documents, total=len(documents))


@router.get("/{document_id}")
async def get_document(document_id: str, request: Request, _: None = Depends(verify_api_key)) -> Document:
    """Full catalog record of one document, including its provider handle.

    Raises:
        HTTPException: 404 if no document has this id.
    """
    document = await request.app.state.document_store.get_by_id(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return document
