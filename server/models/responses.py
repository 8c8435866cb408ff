from pydantic import BaseModel

from shared.models.document import DocumentSummary
from shared.models.thread import ThreadInfo


class HealthResponse(BaseModel):
    status: str
    version: str


class CacheStatus(BaseModel):
    entries: int
    size_bytes: int


class StatusResponse(BaseModel):
    queued_items: int
    quarantined_items: int
    documents: int
    threads: int
    cache: CacheStatus


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]
    total: int


class ThreadListResponse(BaseModel):
    threads: list[ThreadInfo]
    total: int
