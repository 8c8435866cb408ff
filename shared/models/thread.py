"""Models of conversation thread files (``12_conversation_threads/<hash>.json``)."""

from pydantic import BaseModel, ConfigDict, Field


class ThreadPdf(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    hash: str
    content_base64: str = Field(alias="contentBase64")
    captured_at: str = Field(alias="capturedAt")


class ConversationThread(BaseModel):
    """PDF context of one subject lineage. pdf_context is unique by hash."""

    model_config = ConfigDict(populate_by_name=True)

    base_subject: str = Field(alias="baseSubject")
    base_subject_hash: str = Field(alias="baseSubjectHash")
    created_at: str = Field(alias="createdAt")
    last_updated: str = Field(alias="lastUpdated")
    sender: str
    pdf_context: list[ThreadPdf] = Field(default=[], alias="pdfContext")


class PdfFile(BaseModel):
    """A decoded PDF held in memory."""

    filename: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class ThreadPdfResult(BaseModel):
    pdfs: list[PdfFile]
    from_history: bool = True
    thread_hash: str


class ThreadInfo(BaseModel):
    base_subject: str
    base_subject_hash: str
    sender: str
    pdf_count: int
    created_at: str
    last_updated: str
