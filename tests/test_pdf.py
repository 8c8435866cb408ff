import io
import zipfile

import pytest
from pypdf.errors import PyPdfError

from services.pdf.ArchiveExtractor import MAX_PDF_COUNT, ArchiveExtractor
from services.pdf.PdfSplitter import MAX_PAGES_PER_PART, SPLIT_CHECK_THRESHOLD_BYTES, PdfSplitter
from shared.models.pdf import ExtractionStats
from tests.fakes import make_pdf


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


############### SPLITTER ###############

def test_needs_split_thresholds():
    assert not PdfSplitter.needs_split(SPLIT_CHECK_THRESHOLD_BYTES)
    assert PdfSplitter.needs_split(SPLIT_CHECK_THRESHOLD_BYTES + 1)
    assert PdfSplitter.needs_split(10_000, page_count=MAX_PAGES_PER_PART + 1)
    assert not PdfSplitter.needs_split(10_000, page_count=MAX_PAGES_PER_PART)


@pytest.mark.parametrize("pages, expected_sizes", [
    (250, [84, 84, 82]),
    (201, [67, 67, 67]),
    (101, [51, 50]),
])
def test_split_covers_every_page_once(helper_config, pages, expected_sizes):
    result = PdfSplitter(helper_config).split(make_pdf(pages), "Manual.pdf")

    sizes = [part.page_count for part in result.parts]
    assert result.was_split
    assert sizes == expected_sizes
    assert sum(sizes) == pages == result.total_pages
    assert all(size <= MAX_PAGES_PER_PART for size in sizes)
    assert [part.filename for part in result.parts] == [f"Manual-Part-{i}.pdf" for i in range(len(sizes))]
    assert result.parts[0].page_start == 1
    assert result.parts[-1].page_end == pages
    for part in result.parts:
        assert PdfSplitter.count_pages(part.content) == part.page_count
        assert part.total_parts == len(sizes)


def test_short_pdf_is_returned_unchanged(helper_config):
    content = make_pdf(MAX_PAGES_PER_PART)
    result = PdfSplitter(helper_config).split(content, "short.pdf")

    assert not result.was_split
    assert len(result.parts) == 1
    assert result.parts[0].content == content
    assert result.parts[0].filename == "short.pdf"


def test_split_rejects_garbage(helper_config):
    with pytest.raises(PyPdfError):
        PdfSplitter(helper_config).split(b"definitely not a pdf", "x.pdf")


############### ARCHIVES ###############

def test_zip_detection():
    assert ArchiveExtractor.is_zip_file(_zip({"a.txt": b"x"}))
    assert not ArchiveExtractor.is_zip_file(b"%PDF-1.7")
    assert ArchiveExtractor.is_zip_filename("Docs.ZIP")
    assert not ArchiveExtractor.is_zip_filename(None)


def test_extract_classifies_entries(helper_config):
    archive = _zip({
        "report.pdf": b"%PDF root",
        "specs/v2/design.PDF": b"%PDF design",
        "specs/REPORT.pdf": b"%PDF duplicate name",
        "notes.txt": b"text",
        "__MACOSX/specs/._design.PDF": b"junk",
        "specs/.DS_Store": b"junk",
        "a/b/c/d/e/deep.pdf": b"%PDF too deep",
    })

    result = ArchiveExtractor(helper_config).extract(archive)

    assert [(p.source_path, p.filename) for p in result.pdfs] == [("", "report.pdf"), ("specs/v2/", "design.PDF")]
    assert result.stats.pdf_count == 2
    assert result.stats.duplicate_count == 1
    assert result.stats.ignored_count == 2
    assert result.stats.error_count == 0
    assert result.stats.total_files == 5


def test_extract_enforces_pdf_count(helper_config):
    archive = _zip({f"doc-{i}.pdf": b"%PDF " + bytes([i]) for i in range(MAX_PDF_COUNT + 2)})

    result = ArchiveExtractor(helper_config).extract(archive)

    assert len(result.pdfs) == MAX_PDF_COUNT
    assert result.stats.error_count == 2
    assert len(result.stats.errors) == 2


def test_unreadable_archive_raises(helper_config):
    with pytest.raises(zipfile.BadZipFile):
        ArchiveExtractor(helper_config).extract(b"PK\x03\x04 truncated")


def test_format_stats():
    text = ArchiveExtractor.format_stats(ExtractionStats(pdf_count=3, ignored_count=1, duplicate_count=2), "docs.zip")
    assert "Archive: docs.zip" in text
    assert "PDF files found: 3" in text
    assert "Files ignored: 1" in text
    assert "Duplicates skipped: 2" in text
    assert "Errors" not in text
