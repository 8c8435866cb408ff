"""Transient results of the import and question pipelines. Nothing here is persisted."""

from enum import Enum

from pydantic import BaseModel, Field

from shared.models.pdf import ExtractionStats


class ModelTier(str, Enum):
    STANDARD = "standard"
    PRO = "pro"
    MAX = "max"


class FlowType(str, Enum):
    IMPORT = "import"
    QUESTION = "question"


class FlowDetection(BaseModel):
    flow_type: FlowType
    model_tier: ModelTier
    model_name: str
    clean_subject: str


############### IMPORT ###############

class ImportStats(BaseModel):
    total: int = 0
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    ignored: int = 0
    split_parts: int = 0


class ImportedDocument(BaseModel):
    filename: str
    source_path: str | None = None
    title: str | None = None
    document_type: str | None = None
    subjects: list[str] = []
    summary: str | None = None
    is_duplicate: bool = False
    error: str | None = None
    was_split: bool = False
    part_index: int | None = None
    total_parts: int | None = None
    page_range: str | None = None


class ImportResult(BaseModel):
    success: bool
    is_archive: bool = False
    documents: list[ImportedDocument] = []
    stats: ImportStats = Field(default_factory=ImportStats)
    extraction_stats: list[ExtractionStats] = []
    error: str | None = None
    # set when the request itself is unusable (no PDFs, unreadable archive)
    rejection_reason: str | None = None


############### QUESTION ###############

class SelectedDocument(BaseModel):
    document_id: str
    reason: str = ""


class PreselectionResult(BaseModel):
    success: bool
    selected_documents: list[SelectedDocument] = []
    no_relevant_docs: bool = False
    catalog_size: int = 0
    error: str | None = None


class Extraction(BaseModel):
    content: str
    page: int | None = None
    section: str | None = None
    relevance_to_question: str = ""


class ReaderResult(BaseModel):
    document_id: str
    document_title: str
    filename: str
    relevant: bool
    confidence: float
    extractions: list[Extraction] = []
    summary: str = ""
    error: str | None = None

    @property
    def has_findings(self) -> bool:
        return self.relevant or bool(self.extractions)


class Source(BaseModel):
    document_title: str
    page: int | None = None
    quote: str = ""


class CompilerResult(BaseModel):
    success: bool
    answer: str = ""
    sources: list[Source] = []
    confidence: float = 0.0
    documents_analyzed: int = 0
    skipped: bool = False
    error: str | None = None


class QuestionResult(BaseModel):
    success: bool
    response: str = ""
    documents_analyzed: int = 0
    model_calls: int = 0
    error: str | None = None


############### REQUEST ###############

class FailureKind(str, Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"


class RequestOutcome(BaseModel):
    """Result of routing one work item through a pipeline."""

    success: bool
    flow_type: FlowType | None = None
    reply_subject: str = ""
    reply_body: str = ""
    failure_kind: FailureKind | None = None
    # quarantine reason for validation failures
    failure_reason: str | None = None
    error: str | None = None
