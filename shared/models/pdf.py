"""Results of PDF splitting and archive extraction."""

from pydantic import BaseModel


class SplitPart(BaseModel):
    content: bytes
    filename: str
    part_index: int
    total_parts: int
    # 1-indexed, inclusive
    page_start: int
    page_end: int

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1


class SplitResult(BaseModel):
    parts: list[SplitPart]
    original_filename: str
    original_size: int
    total_pages: int
    was_split: bool


class ExtractedPdf(BaseModel):
    filename: str
    # folder path inside the archive, "" for the archive root
    source_path: str
    content: bytes


class ExtractionStats(BaseModel):
    archive_name: str = ""
    total_files: int = 0
    pdf_count: int = 0
    ignored_count: int = 0
    error_count: int = 0
    duplicate_count: int = 0
    errors: list[str] = []


class ExtractionResult(BaseModel):
    pdfs: list[ExtractedPdf]
    stats: ExtractionStats
