import asyncio
import io
import json
import zipfile

import pytest

from services.importer.ImportService import NO_PDF_ERROR, ImportService
from shared.helper.HelperHash import HelperHash
from shared.models.pipeline import ImportedDocument, ImportResult, ImportStats, ModelTier
from shared.models.thread import PdfFile
from tests.fakes import FakeLLMClient, TimedLLMClient, make_pdf


def _indexer(prompt: str) -> str:
    return "```json\n" + json.dumps({
        "title": "Operations manual",
        "document_type": "technical documentation",
        "subjects": ["operations"],
        "keywords": ["maintenance", "safety"],
        "summary": "How to run the plant.",
        "page_count": 10,
    }) + "\n```"


@pytest.fixture()
def indexing_llm() -> FakeLLMClient:
    return FakeLLMClient(responder=_indexer)


@pytest.fixture()
def import_service(helper_config, indexing_llm, document_store, config_store) -> ImportService:
    return ImportService(helper_config, indexing_llm, document_store, config_store, api_delay=0)


@pytest.mark.asyncio()
async def test_single_pdf_is_indexed_and_stored(import_service, indexing_llm, document_store):
    content = make_pdf(3, "manual")
    result = await import_service.process_import(
        [PdfFile(filename="manual.pdf", content=content)],
        "Plant documentation for site B",
        ModelTier.STANDARD,
    )

    assert result.success
    assert result.stats.imported == 1
    assert indexing_llm.uploads == ["manual.pdf"]
    assert "Context provided by the user:\nPlant documentation for site B" in indexing_llm.chat_prompts[0]

    stored = await document_store.get_by_hash(HelperHash.content_hash(content))
    assert stored.title == "Operations manual"
    assert stored.keywords == ["maintenance", "safety"]
    assert stored.external_handle == "file-1"


@pytest.mark.asyncio()
async def test_identical_bytes_are_not_uploaded_again(import_service, indexing_llm):
    content = make_pdf(2, "dup")
    await import_service.process_import([PdfFile(filename="a.pdf", content=content)], "", ModelTier.STANDARD)
    uploads_before = len(indexing_llm.uploads)

    result = await import_service.process_import([PdfFile(filename="copy.pdf", content=content)], "", ModelTier.STANDARD)

    assert len(indexing_llm.uploads) == uploads_before
    assert result.success
    assert result.stats.duplicates == 1
    assert result.documents[0].is_duplicate
    assert result.documents[0].title == "Operations manual"


@pytest.mark.asyncio()
async def test_250_page_pdf_is_split_into_three_indexed_parts(import_service, indexing_llm, document_store):
    result = await import_service.process_import(
        [PdfFile(filename="Handbook.pdf", content=make_pdf(250, "handbook"))],
        "",
        ModelTier.MAX,
    )

    assert result.success
    assert result.stats.imported == 3
    assert result.stats.split_parts == 3
    assert indexing_llm.uploads == ["Handbook-Part-0.pdf", "Handbook-Part-1.pdf", "Handbook-Part-2.pdf"]
    assert len(indexing_llm.chat_prompts) == 3
    assert [d.page_range for d in result.documents] == ["1-84", "85-168", "169-250"]
    assert await document_store.count_documents() == 3

    confirmation = ImportService.format_confirmation(result)
    assert "Parts created: 3" in confirmation
    assert "Handbook-Part-2.pdf (pages 169-250): imported" in confirmation


@pytest.mark.asyncio()
async def test_no_pdf_is_a_rejection(import_service, indexing_llm):
    result = await import_service.process_import([PdfFile(filename="notes.txt", content=b"hello")], "", ModelTier.STANDARD)

    assert not result.success
    assert result.error == NO_PDF_ERROR
    assert result.rejection_reason == "no_attachments"
    assert result.stats.ignored == 1
    assert indexing_llm.uploads == []


@pytest.mark.asyncio()
async def test_unreadable_archive_is_a_rejection(import_service):
    result = await import_service.process_import([PdfFile(filename="docs.zip", content=b"PK broken")], "", ModelTier.STANDARD)

    assert not result.success
    assert result.rejection_reason == "invalid_archive"
    assert result.stats.errors == 1


@pytest.mark.asyncio()
async def test_broken_archive_does_not_block_other_pdfs(import_service, indexing_llm, document_store):
    result = await import_service.process_import([
        PdfFile(filename="good.pdf", content=make_pdf(1, "good")),
        PdfFile(filename="broken.zip", content=b"PK\x03\x04garbage"),
    ], "", ModelTier.STANDARD)

    assert result.success
    assert result.rejection_reason is None
    assert result.stats.imported == 1
    assert result.stats.errors == 1
    assert indexing_llm.uploads == ["good.pdf"]
    assert await document_store.count_documents() == 1

    confirmation = ImportService.format_confirmation(result)
    assert "Documents imported: 1" in confirmation
    assert "- broken.zip: Failed to extract zip archive" in confirmation


@pytest.mark.asyncio()
async def test_archive_import_keeps_folder_context(import_service, indexing_llm):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("specs/api.pdf", make_pdf(1, "api"))
        archive.writestr("readme.md", b"# readme")
    result = await import_service.process_import([PdfFile(filename="docs.zip", content=buffer.getvalue())], "", ModelTier.STANDARD)

    assert result.is_archive
    assert result.stats.imported == 1
    assert result.stats.ignored == 1
    assert result.documents[0].source_path == "specs/"
    assert "Path in archive: specs/" in indexing_llm.chat_prompts[0]
    confirmation = ImportService.format_confirmation(result)
    assert "Documents imported: 1" in confirmation
    assert "Archive: docs.zip\nPDF files found: 1" in confirmation


@pytest.mark.asyncio()
async def test_partial_success_counts_as_success(helper_config, document_store, config_store):
    llm = FakeLLMClient()
    replies = iter(["I cannot read this document.", _indexer("")])
    llm.responder = lambda prompt: next(replies)
    service = ImportService(helper_config, llm, document_store, config_store, api_delay=0)

    result = await service.process_import([
        PdfFile(filename="bad.pdf", content=make_pdf(1, "bad")),
        PdfFile(filename="good.pdf", content=make_pdf(1, "good")),
    ], "", ModelTier.STANDARD)

    assert result.success
    assert result.stats.errors == 1
    assert result.stats.imported == 1
    assert "Failed to analyse document" in result.documents[0].error
    assert await document_store.count_documents() == 1


@pytest.mark.asyncio()
async def test_only_errors_is_a_failure(helper_config, document_store, config_store):
    llm = FakeLLMClient(responder=lambda prompt: "no json here")
    service = ImportService(helper_config, llm, document_store, config_store, api_delay=0)

    result = await service.process_import([PdfFile(filename="bad.pdf", content=make_pdf(1, "bad"))], "", ModelTier.STANDARD)

    assert not result.success
    assert result.rejection_reason is None
    assert result.stats.errors == 1
    assert await document_store.count_documents() == 0


def test_confirmation_for_single_document():
    result = ImportResult(
        success=True,
        documents=[ImportedDocument(filename="a.pdf", title="Spec", document_type="specification", subjects=["api", "auth"])],
        stats=ImportStats(total=1, imported=1),
    )
    text = ImportService.format_confirmation(result)
    assert text.startswith("Document imported")
    assert "Title: Spec" in text
    assert "Subjects: api, auth" in text


@pytest.mark.asyncio()
async def test_indexing_calls_are_spaced_except_the_first(helper_config, document_store, config_store, monkeypatch):
    llm = TimedLLMClient(responder=_indexer)
    service = ImportService(helper_config, llm, document_store, config_store, api_delay=0.1)
    # number of indexing calls already made each time the delay is taken
    delays_taken: list[int] = []
    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        if delay == 0.1:
            delays_taken.append(len(llm.chat_started))
        return await real_sleep(delay, *args, **kwargs)

    monkeypatch.setattr(asyncio, "sleep", recording_sleep)

    result = await service.process_import(
        [PdfFile(filename=f"doc{i}.pdf", content=make_pdf(1, f"doc{i}")) for i in range(3)],
        "",
        ModelTier.STANDARD,
    )

    assert result.stats.imported == 3
    assert delays_taken == [1, 2]
    assert llm.chat_started[1] - llm.chat_finished[0] >= 0.09
    assert llm.chat_started[2] - llm.chat_finished[1] >= 0.09
