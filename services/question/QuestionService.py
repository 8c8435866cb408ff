"""Question pipeline: preselect, read, compile.

Nothing is persisted between the stages. PDFs attached to the question (or
recovered from its conversation thread) are read next to the preselected
catalog documents; they are uploaded through the document cache so the same
file is only sent to the provider once within the retention window.
"""

import re

from shared.clients.ClientInterface import ClientRequestError
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperHash import HelperHash
from shared.models.document import Document
from shared.models.pipeline import ModelTier, QuestionResult
from shared.models.thread import PdfFile
from shared.persistence.DocumentCache import DocumentCache
from shared.persistence.DocumentStore import DocumentStore
from services.question.CompilerService import CompilerService
from services.question.PreselectionService import PreselectionService
from services.question.ReaderService import ReaderService, ReadTarget

NO_DOCUMENTS_MESSAGE = (
    "No documents are available in the catalog yet.\n\n"
    "To add documents, send an email with \"(add)\" in the subject and the PDF file(s) attached."
)
PRESELECTION_FAILED_MESSAGE = "An error occurred while analysing the documents.\n\nPlease try again later."
COMPILER_FAILED_MESSAGE = "An error occurred while putting the answer together.\n\nPlease try again later."

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)
_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1", re.DOTALL)
_ITALIC_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])")
_CODE_RE = re.compile(r"`([^`]*)`")


def strip_markdown(text: str) -> str:
    """Remove headings, emphasis and inline code markers; replies are plain-text mail."""
    text = _HEADING_RE.sub("", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_RE.sub(r"\1", text)
    return _CODE_RE.sub(r"\1", text)


class QuestionService:
    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        document_store: DocumentStore,
        document_cache: DocumentCache,
        preselection: PreselectionService,
        reader: ReaderService,
        compiler: CompilerService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._document_store = document_store
        self._document_cache = document_cache
        self._preselection = preselection
        self._reader = reader
        self._compiler = compiler

    ##########################################
    ################ TARGETS #################
    ##########################################

    def _catalog_target(self, document: Document) -> ReadTarget:
        async def resolve() -> str:
            return await self._llm_client.do_fetch_reference(document.external_handle)

        return ReadTarget(
            document_id=document.id,
            title=document.display_title,
            filename=document.filename,
            document_type=document.document_type,
            summary=document.summary,
            resolve_reference=resolve,
        )

    def _attachment_target(self, pdf: PdfFile) -> ReadTarget:
        async def upload() -> str:
            return await self._llm_client.do_upload_file(pdf.content, pdf.filename)

        async def resolve() -> str:
            cached = await self._document_cache.get_or_upload(pdf.content, pdf.filename, upload, self._llm_client.do_delete_file)
            try:
                return await self._llm_client.do_fetch_reference(cached.handle)
            except ClientRequestError as e:
                if not cached.from_cache:
                    raise
                # the provider forgot the cached handle: upload again, once
                self.logging.warning("[QUESTION] Cached handle of %s is stale (%s), uploading again", pdf.filename, e)
                await self._document_cache.invalidate(cached.hash)
                fresh = await self._document_cache.get_or_upload(pdf.content, pdf.filename, upload)
                return await self._llm_client.do_fetch_reference(fresh.handle)

        return ReadTarget(
            document_id=f"attachment:{HelperHash.content_hash(pdf.content)[:16]}",
            title=pdf.filename,
            filename=pdf.filename,
            document_type="Attached to the question",
            resolve_reference=resolve,
        )

    ##########################################
    ################ PIPELINE ################
    ##########################################

    async def process_question(self, question: str, model_tier: ModelTier, attachments: list[PdfFile] | None = None) -> QuestionResult:
        """Answer a question from the catalog and the PDFs sent with it.

        Args:
            question (str): Mail body holding the question.
            model_tier (ModelTier): Tier selected by the subject tags.
            attachments (list[PdfFile] | None): Ad-hoc PDFs read without preselection.

        Returns:
            QuestionResult: success=False only when preselection or compilation failed;
            the reply text is in ``response`` either way.
        """
        ad_hoc: list[PdfFile] = []
        seen_hashes: set[str] = set()
        for pdf in attachments or []:
            pdf_hash = HelperHash.content_hash(pdf.content)
            if pdf_hash not in seen_hashes:
                seen_hashes.add(pdf_hash)
                ad_hoc.append(pdf)

        self.logging.info("[QUESTION] Processing question with model tier %s", model_tier.value)
        self.logging.info("[QUESTION] Question: \"%s%s\"", question[:100], "..." if len(question) > 100 else "")

        catalog_size = await self._document_store.count_documents()
        if catalog_size == 0 and not ad_hoc:
            self.logging.warning("[QUESTION] No documents in catalog")
            return QuestionResult(success=True, response=NO_DOCUMENTS_MESSAGE)

        model_calls = 0
        targets: list[ReadTarget] = []

        if catalog_size > 0:
            self.logging.info("[QUESTION] Step 1: Preselection (%d catalog documents)", catalog_size)
            preselection = await self._preselection.run(question, model_tier)
            model_calls += 1
            if not preselection.success:
                return QuestionResult(success=False, response=PRESELECTION_FAILED_MESSAGE, model_calls=model_calls, error=preselection.error)

            if preselection.selected_documents:
                documents = await self._document_store.get_by_ids([d.document_id for d in preselection.selected_documents])
                targets.extend(self._catalog_target(d) for d in documents if d.content_hash not in seen_hashes)
            elif not ad_hoc:
                self.logging.info("[QUESTION] No relevant documents found")
                return QuestionResult(
                    success=True,
                    response=(
                        "No document in the catalog seems to cover the subject of your question.\n\n"
                        f"Documents in catalog: {catalog_size}\n\n"
                        "If a document should be relevant, check that it was imported with \"(add)\"."
                    ),
                    model_calls=model_calls,
                )

        targets.extend(self._attachment_target(pdf) for pdf in ad_hoc)

        self.logging.info("[QUESTION] Step 2: Readers (%d document(s))", len(targets))
        reader_results = await self._reader.run(targets, question, model_tier)
        model_calls += len(targets)

        if not any(r.has_findings for r in reader_results):
            self.logging.info("[QUESTION] No relevant extractions found")
            return QuestionResult(
                success=True,
                response=(
                    "The analysed documents contain no information directly relevant to your question.\n\n"
                    f"Documents analysed: {len(reader_results)}\n\n"
                    "Try rephrasing your question or check that the right documents were imported."
                ),
                documents_analyzed=len(reader_results),
                model_calls=model_calls,
            )

        self.logging.info("[QUESTION] Step 3: Compiler")
        compiled = await self._compiler.run(question, reader_results, model_tier)
        model_calls += 1
        if not compiled.success:
            return QuestionResult(
                success=False,
                response=COMPILER_FAILED_MESSAGE,
                documents_analyzed=len(reader_results),
                model_calls=model_calls,
                error=compiled.error,
            )

        compiled.answer = strip_markdown(compiled.answer)
        self.logging.info("[QUESTION] Complete: %d document(s) analysed, %d model call(s)", len(reader_results), model_calls, color="green")
        return QuestionResult(
            success=True,
            response=CompilerService.format_result(compiled),
            documents_analyzed=len(reader_results),
            model_calls=model_calls,
        )
