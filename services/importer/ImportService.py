"""Import pipeline.

Takes the attachments of an ``(add)`` mail (single PDFs and/or zip archives),
skips documents already catalogued, splits long PDFs, has every new document
indexed by the inference provider and stores the resulting metadata.
One failing document never aborts the others.
"""

import asyncio
import zipfile

from pypdf.errors import PyPdfError

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperHash import HelperHash
from shared.helper.HelperJson import HelperJson
from shared.models.config import StageConfig
from shared.models.document import DocumentInsert
from shared.models.pdf import ExtractedPdf
from shared.models.pipeline import ImportedDocument, ImportResult, ImportStats, ModelTier
from shared.models.thread import PdfFile
from shared.persistence.ConfigStore import ConfigStore
from shared.persistence.DocumentStore import DocumentStore
from services.pdf.ArchiveExtractor import ArchiveExtractor
from services.pdf.PdfSplitter import MAX_PAGES_PER_PART, PdfSplitter

API_DELAY_SECONDS = 1.0
NO_PDF_ERROR = "No PDF files found to import"

INDEXATION_SCHEMA = """{
  "title": "Title of the document",
  "document_type": "Kind of document (e.g. specification, meeting minutes, contract, technical documentation, invoice)",
  "subjects": ["Subject 1", "Subject 2"],
  "keywords": ["keyword 1", "keyword 2", "keyword 3"],
  "summary": "Two or three sentences describing the content and purpose of the document",
  "page_count": 42
}"""


class IndexationError(Exception):
    """The indexing model did not return usable metadata."""


class ImportService:
    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        document_store: DocumentStore,
        config_store: ConfigStore,
        api_delay: float | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._document_store = document_store
        self._config_store = config_store
        self._splitter = PdfSplitter(helper_config)
        self._extractor = ArchiveExtractor(helper_config)
        self._api_delay = api_delay if api_delay is not None else helper_config.get_number_val("PROVIDER_DELAY_SECONDS", default=API_DELAY_SECONDS)
        self._indexing_calls = 0

    ##########################################
    ################ PIPELINE ################
    ##########################################

    async def process_import(self, attachments: list[PdfFile], email_body: str, model_tier: ModelTier) -> ImportResult:
        """Import every PDF carried by the attachments.

        Args:
            attachments (list[PdfFile]): Decoded attachments (PDFs, archives, anything else).
            email_body (str): Mail body, passed to the indexing model as context.
            model_tier (ModelTier): Tier selected by the subject tags.

        Returns:
            ImportResult: Per-document outcomes and counters. success is true when at
            least one document was imported or recognised, or when nothing failed.
        """
        stats = ImportStats()
        result = ImportResult(success=False, stats=stats)
        candidates: list[ExtractedPdf] = []
        broken_archives: list[ImportedDocument] = []

        for attachment in attachments:
            if ArchiveExtractor.is_zip_filename(attachment.filename) or ArchiveExtractor.is_zip_file(attachment.content):
                result.is_archive = True
                self.logging.info("[IMPORT] Processing zip archive: %s", attachment.filename)
                try:
                    extraction = self._extractor.extract(attachment.content, attachment.filename)
                except (zipfile.BadZipFile, OSError, ValueError) as e:
                    # a broken archive only costs its own documents
                    self.logging.error("[IMPORT] Failed to extract archive %s: %s", attachment.filename, e)
                    broken_archives.append(ImportedDocument(
                        filename=attachment.filename,
                        error=f"Failed to extract zip archive: {e}",
                    ))
                    continue
                stats.ignored += extraction.stats.ignored_count
                result.extraction_stats.append(extraction.stats)
                candidates.extend(extraction.pdfs)
            elif (attachment.filename or "").lower().endswith(".pdf"):
                candidates.append(ExtractedPdf(filename=attachment.filename, source_path="", content=attachment.content))
            else:
                stats.ignored += 1
                self.logging.debug("[IMPORT] Ignoring non-PDF file: %s", attachment.filename)

        stats.total = len(candidates) + len(broken_archives)
        if not candidates:
            if broken_archives:
                result.documents = broken_archives
                stats.errors = len(broken_archives)
                result.error = "; ".join(f"{doc.filename}: {doc.error}" for doc in broken_archives)
                result.rejection_reason = "invalid_archive"
            else:
                result.error = NO_PDF_ERROR
                result.rejection_reason = "no_attachments"
            return result

        for document in broken_archives:
            self._record(result, document)

        llm_config = await self._config_store.load_llm_config()
        stage = llm_config.get_stage("indexation")
        model = self._llm_client.get_model_for_tier(model_tier)
        self._indexing_calls = 0

        self.logging.info("[IMPORT] Processing %d PDF(s) with %s...", len(candidates), model)
        for pdf in candidates:
            await self._import_candidate(pdf, email_body, model, stage, result)

        self.logging.info(
            "[IMPORT] Complete: %d imported, %d duplicates, %d errors",
            stats.imported, stats.duplicates, stats.errors,
        )
        result.success = stats.imported > 0 or stats.duplicates > 0 or stats.errors == 0
        return result

    async def _import_candidate(self, pdf: ExtractedPdf, email_body: str, model: str, stage: StageConfig, result: ImportResult) -> None:
        stats = result.stats

        # identical bytes are never uploaded twice, not even for splitting
        existing = await self._document_store.get_by_hash(HelperHash.content_hash(pdf.content))
        if existing is not None:
            self.logging.info("[IMPORT] Duplicate detected: %s (existing: %s)", pdf.filename, existing.filename)
            self._record(result, ImportedDocument(
                filename=pdf.filename,
                source_path=pdf.source_path or None,
                title=existing.title,
                document_type=existing.document_type,
                subjects=existing.subjects,
                summary=existing.summary,
                is_duplicate=True,
            ))
            return

        page_count: int | None = None
        try:
            page_count = PdfSplitter.count_pages(pdf.content)
        except (PyPdfError, ValueError, OSError) as e:
            # the provider gets the final word on unreadable files
            self.logging.warning("[IMPORT] Could not count pages of %s: %s", pdf.filename, e)

        if not PdfSplitter.needs_split(len(pdf.content), page_count):
            self._record(result, await self._import_single(pdf.filename, pdf.source_path, pdf.content, email_body, model, stage))
            return

        self.logging.info(
            "[IMPORT] Large PDF detected: %s (%.1f MB, %s pages), splitting...",
            pdf.filename, len(pdf.content) / 1024 / 1024, page_count if page_count is not None else "?",
        )
        try:
            split = self._splitter.split(pdf.content, pdf.filename)
        except (PyPdfError, ValueError, OSError) as e:
            self.logging.error("[IMPORT] Failed to split %s: %s", pdf.filename, e)
            self._record(result, ImportedDocument(
                filename=pdf.filename,
                source_path=pdf.source_path or None,
                error=f"Failed to split PDF: {e}",
            ))
            return

        if split.was_split:
            stats.split_parts += len(split.parts)
        for part in split.parts:
            document = await self._import_single(part.filename, pdf.source_path, part.content, email_body, model, stage)
            if split.was_split:
                document.was_split = True
                document.part_index = part.part_index
                document.total_parts = part.total_parts
                document.page_range = f"{part.page_start}-{part.page_end}"
            self._record(result, document)

    @staticmethod
    def _record(result: ImportResult, document: ImportedDocument) -> None:
        result.documents.append(document)
        if document.is_duplicate:
            result.stats.duplicates += 1
        elif document.error:
            result.stats.errors += 1
        else:
            result.stats.imported += 1

    async def _import_single(self, filename: str, source_path: str, content: bytes, email_body: str, model: str, stage: StageConfig) -> ImportedDocument:
        """Upload, index and store one PDF (or one split part).

        Returns:
            ImportedDocument: The outcome; provider and parse failures are reported in ``error``.
        """
        self.logging.info("[IMPORT] Processing: %s%s", source_path, filename)
        content_hash = HelperHash.content_hash(content)

        existing = await self._document_store.get_by_hash(content_hash)
        if existing is not None:
            self.logging.info("[IMPORT] Duplicate detected: %s (existing: %s)", filename, existing.filename)
            return ImportedDocument(
                filename=filename,
                source_path=source_path or None,
                title=existing.title,
                document_type=existing.document_type,
                subjects=existing.subjects,
                summary=existing.summary,
                is_duplicate=True,
            )

        try:
            handle = await self._llm_client.do_upload_file(content, filename)
            document_url = await self._llm_client.do_fetch_reference(handle)
            metadata = await self._run_indexation(document_url, filename, source_path, email_body, model, stage)
            stored = await self._document_store.insert_document(DocumentInsert(
                external_handle=handle,
                filename=filename,
                source_path=source_path or None,
                title=metadata["title"],
                document_type=metadata["document_type"],
                subjects=metadata["subjects"],
                keywords=metadata["keywords"],
                summary=metadata["summary"],
                page_count=metadata["page_count"],
                content_hash=content_hash,
            ))
        except Exception as e:
            self.logging.error("[IMPORT] Failed to import %s: %s", filename, e)
            return ImportedDocument(filename=filename, source_path=source_path or None, error=str(e) or e.__class__.__name__)

        self.logging.info("[IMPORT] Successfully imported: %s", filename, color="green")
        return ImportedDocument(
            filename=filename,
            source_path=source_path or None,
            title=stored.title,
            document_type=stored.document_type,
            subjects=stored.subjects,
            summary=stored.summary,
        )

    ##########################################
    ############### INDEXATION ###############
    ##########################################

    @staticmethod
    def build_indexation_prompt(email_body: str, source_path: str) -> str:
        context = ""
        if email_body and email_body.strip():
            context += f"Context provided by the user:\n{email_body.strip()}\n\n"
        if source_path:
            context += f"Path in archive: {source_path}\n\n"
        return (
            f"{context}Analyse this PDF document and return its metadata in the following JSON format:\n\n"
            f"{INDEXATION_SCHEMA}\n\n"
            "Return ONLY the JSON, without any additional text."
        )

    async def _run_indexation(self, document_url: str, filename: str, source_path: str, email_body: str, model: str, stage: StageConfig) -> dict:
        """Ask the indexing model for the catalog metadata of a hosted document.

        Raises:
            IndexationError: If the reply holds no usable JSON object.
            ClientRequestError: If the provider call fails.
        """
        # rate limit: wait before every call except the first of a run
        if self._indexing_calls > 0 and self._api_delay > 0:
            await asyncio.sleep(self._api_delay)
        self._indexing_calls += 1

        messages = self._llm_client.build_messages(
            system_prompt=stage.system_prompt,
            prompt=self.build_indexation_prompt(email_body, source_path),
            document_url=document_url,
        )
        self.logging.info("[INDEXATION] Analysing %s with %s...", filename, model)
        reply = await self._llm_client.do_chat(model, messages, stage.max_output_tokens or 2000)

        parsed = HelperJson.extract_json_object(reply)
        if not parsed.ok:
            self.logging.warning("[INDEXATION] Unusable reply for %s: %s", filename, parsed.error)
            raise IndexationError(f"Failed to analyse document: {parsed.error}")

        data = parsed.data
        return {
            "title": str(data["title"]).strip() if data.get("title") else None,
            "document_type": str(data["document_type"]).strip() if data.get("document_type") else None,
            "subjects": HelperJson.as_str_list(data.get("subjects")),
            "keywords": HelperJson.as_str_list(data.get("keywords")),
            "summary": str(data["summary"]).strip() if data.get("summary") else None,
            "page_count": HelperJson.as_optional_int(data.get("page_count")),
        }

    ##########################################
    ############## CONFIRMATION ##############
    ##########################################

    @staticmethod
    def format_confirmation(result: ImportResult) -> str:
        """Plain-text confirmation mail for an import run."""
        stats = result.stats
        lines: list[str] = []

        if result.is_archive or stats.total > 1:
            lines.append("Import complete" if result.success else "Import completed with errors")
            lines.append("")
            lines.append(f"Documents imported: {stats.imported}")
            if stats.split_parts:
                lines.append(f"PDFs split: {stats.split_parts} parts (documents over {MAX_PAGES_PER_PART} pages)")
            if stats.duplicates:
                lines.append(f"Already in catalog: {stats.duplicates}")
            if stats.ignored:
                lines.append(f"Files ignored: {stats.ignored} (unsupported formats)")
            if stats.errors:
                lines.append(f"Errors: {stats.errors}")
                for document in result.documents:
                    if document.error:
                        lines.append(f"- {document.source_path or ''}{document.filename}: {document.error}")
            for extraction in result.extraction_stats:
                lines.append("")
                lines.append(ArchiveExtractor.format_stats(extraction))
            return "\n".join(lines)

        document = result.documents[0] if result.documents else None
        if document is None:
            lines.append("Error: no document was processed")
            if result.error:
                lines.append(f"Reason: {result.error}")
        elif document.error and not document.was_split:
            lines.append("Import failed")
            lines.append(f"File: {document.filename}")
            lines.append(f"Error: {document.error}")
        elif stats.split_parts:
            lines.append("Document imported (split into parts)")
            lines.append("")
            lines.append(f"Original file: more than {MAX_PAGES_PER_PART} pages")
            lines.append(f"Parts created: {stats.split_parts}")
            lines.append("")
            for part in result.documents:
                if part.error:
                    lines.append(f"- {part.filename}: ERROR - {part.error}")
                elif part.is_duplicate:
                    lines.append(f"- {part.filename} (pages {part.page_range}): already in catalog")
                else:
                    lines.append(f"- {part.filename} (pages {part.page_range}): imported")
                    if part.title:
                        lines.append(f"  Title: {part.title}")
        else:
            lines.append("Document already in catalog" if document.is_duplicate else "Document imported")
            lines.append("")
            lines.append(f"File: {document.filename}")
            if document.title:
                lines.append(f"Title: {document.title}")
            if document.document_type:
                lines.append(f"Type: {document.document_type}")
            if document.subjects:
                lines.append(f"Subjects: {', '.join(document.subjects)}")
            if document.summary:
                lines.append(f"Summary: {document.summary}")
            if document.is_duplicate:
                lines.append("")
                lines.append("Note: this document was already in the catalog and was not indexed again.")
        return "\n".join(lines)
