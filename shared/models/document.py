"""Pydantic models for catalog documents.

Hierarchy:
  DocumentInsert: payload written by the import pipeline.
  Document: full persisted record, as read from the metadata store.
  DocumentSummary: lightweight catalog row handed to preselection.
"""

from datetime import datetime

from pydantic import BaseModel


class DocumentInsert(BaseModel):
    """Metadata of a freshly indexed document, before it receives an id."""

    external_handle: str
    filename: str
    source_path: str | None = None
    title: str | None = None
    document_type: str | None = None
    subjects: list[str] = []
    keywords: list[str] = []
    summary: str | None = None
    page_count: int | None = None
    content_hash: str


class Document(DocumentInsert):
    """A persisted catalog document. content_hash is unique across the catalog."""

    id: str
    created_at: datetime

    @property
    def display_title(self) -> str:
        return self.title or self.filename


class DocumentSummary(BaseModel):
    id: str
    filename: str
    title: str | None = None
    document_type: str | None = None
    subjects: list[str] = []
    keywords: list[str] = []
    summary: str | None = None
