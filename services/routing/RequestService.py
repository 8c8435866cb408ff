"""Turns one validated work item into a reply.

Decodes the attachments, keeps the PDF context of question threads, routes
to the import or question pipeline and shapes the outcome for the queue
processor.
"""

import base64
import binascii
import re

from shared.helper.HelperConfig import HelperConfig
from shared.models.pipeline import FailureKind, FlowType, ModelTier, RequestOutcome
from shared.models.thread import PdfFile
from shared.models.work_item import WorkAttachment, WorkItem
from shared.persistence.ThreadStore import ThreadStore
from services.importer.ImportService import ImportService
from services.question.QuestionService import QuestionService
from services.routing.FlowRouter import FlowRouter

MAX_QUESTION_PDF_COUNT = 10
MAX_QUESTION_PDF_SIZE_BYTES = 20 * 1024 * 1024
MAX_QUESTION_TOTAL_SIZE_BYTES = 20 * 1024 * 1024

_WHITESPACE_RE = re.compile(r"\s+")


def decode_base64(value: str | None) -> bytes | None:
    """Decode attachment content, rejecting empty or truncated payloads.

    Whitespace is ignored. The decoded size must be at least 70 % of the
    encoded length (base64 carries 3 bytes per 4 characters).

    Returns:
        bytes | None: The content, or None if the payload is unusable.
    """
    if not value:
        return None
    cleaned = _WHITESPACE_RE.sub("", value)
    if len(cleaned) < 4:
        return None
    try:
        content = base64.b64decode(cleaned + "=" * (-len(cleaned) % 4))
    except (binascii.Error, ValueError):
        return None
    if not content or len(content) < int(len(cleaned) * 0.7):
        return None
    return content


def is_pdf_attachment(attachment: WorkAttachment) -> bool:
    return (attachment.content_type or "").lower() == "application/pdf" or (attachment.filename or "").lower().endswith(".pdf")


class RequestService:
    def __init__(
        self,
        helper_config: HelperConfig,
        flow_router: FlowRouter,
        import_service: ImportService,
        question_service: QuestionService,
        thread_store: ThreadStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._flow_router = flow_router
        self._import_service = import_service
        self._question_service = question_service
        self._thread_store = thread_store

    ##########################################
    ############## ATTACHMENTS ###############
    ##########################################

    def decode_attachments(self, item: WorkItem, pdf_only: bool) -> list[PdfFile]:
        files: list[PdfFile] = []
        for attachment in item.attachments:
            if pdf_only and not is_pdf_attachment(attachment):
                continue
            if not attachment.content_base64:
                continue
            content = decode_base64(attachment.content_base64)
            if content is None:
                self.logging.warning("[REQUEST] Invalid or empty base64 for: %s", attachment.filename or "unnamed")
                continue
            default_name = "document.pdf" if pdf_only else "attachment"
            files.append(PdfFile(filename=attachment.filename or default_name, content=content))
        return files

    @staticmethod
    def validate_question_pdfs(pdfs: list[PdfFile]) -> str | None:
        """Check question PDFs against the count and size limits.

        Returns:
            str | None: A user-facing reason if a limit is exceeded.
        """
        if len(pdfs) > MAX_QUESTION_PDF_COUNT:
            return f"Too many PDFs: {len(pdfs)} (max: {MAX_QUESTION_PDF_COUNT})"
        total = 0
        for pdf in pdfs:
            if pdf.size > MAX_QUESTION_PDF_SIZE_BYTES:
                return (
                    f"PDF \"{pdf.filename}\" too large: {pdf.size / 1024 / 1024:.1f} MB "
                    f"(max: {MAX_QUESTION_PDF_SIZE_BYTES // (1024 * 1024)} MB)"
                )
            total += pdf.size
        if total > MAX_QUESTION_TOTAL_SIZE_BYTES:
            return (
                f"Total PDF size too large: {total / 1024 / 1024:.1f} MB "
                f"(max: {MAX_QUESTION_TOTAL_SIZE_BYTES // (1024 * 1024)} MB)"
            )
        return None

    ##########################################
    ################ ROUTING #################
    ##########################################

    @staticmethod
    def build_reply_subject(item: WorkItem) -> str:
        return f"Re: {item.get_subject() or 'Your request'}"

    async def process_request(self, item: WorkItem) -> RequestOutcome:
        """Run the pipeline selected by the subject tags.

        Args:
            item (WorkItem): An item whose body, sender and whitelist checks passed.

        Returns:
            RequestOutcome: The reply on success; otherwise a validation failure
            (quarantine) or a transient one (keep in the queue).
        """
        subject = item.get_subject()
        detection = self._flow_router.detect_flow(subject)
        reply_subject = self.build_reply_subject(item)

        if detection.flow_type == FlowType.IMPORT:
            return await self._process_import(item, detection.model_tier, reply_subject)
        return await self._process_question(item, detection.model_tier, reply_subject)

    async def _process_import(self, item: WorkItem, model_tier: ModelTier, reply_subject: str) -> RequestOutcome:
        attachments = self.decode_attachments(item, pdf_only=False)
        result = await self._import_service.process_import(attachments, item.get_body(), model_tier)

        if result.rejection_reason:
            self.logging.warning("[REQUEST] Import of %s rejected: %s", item.id, result.error)
            return RequestOutcome(
                success=False,
                flow_type=FlowType.IMPORT,
                reply_subject=reply_subject,
                failure_kind=FailureKind.VALIDATION,
                failure_reason=result.rejection_reason,
                error=result.error,
            )
        if not result.success:
            return RequestOutcome(
                success=False,
                flow_type=FlowType.IMPORT,
                reply_subject=reply_subject,
                failure_kind=FailureKind.TRANSIENT,
                error=result.error or f"{result.stats.errors} document(s) failed to import",
            )

        self.logging.info("[REQUEST] IMPORT completed: %d doc(s) imported", result.stats.imported)
        return RequestOutcome(
            success=True,
            flow_type=FlowType.IMPORT,
            reply_subject=reply_subject,
            reply_body=ImportService.format_confirmation(result),
        )

    async def _process_question(self, item: WorkItem, model_tier: ModelTier, reply_subject: str) -> RequestOutcome:
        subject = item.get_subject()
        pdfs = self.decode_attachments(item, pdf_only=True)

        problem = self.validate_question_pdfs(pdfs)
        if problem:
            self.logging.error("[REQUEST] PDF validation failed for %s: %s", item.id, problem)
            return RequestOutcome(
                success=False,
                flow_type=FlowType.QUESTION,
                reply_subject=reply_subject,
                failure_kind=FailureKind.VALIDATION,
                failure_reason="invalid_attachments",
                error=problem,
            )

        if pdfs:
            if subject:
                await self._thread_store.record_pdfs_in_thread(subject, item.get_sender() or "unknown", pdfs)
        elif subject:
            history = await self._thread_store.get_thread_pdfs(subject)
            if history is not None:
                self.logging.info("[REQUEST] Using %d PDF(s) from conversation thread", len(history.pdfs))
                pdfs = history.pdfs

        result = await self._question_service.process_question(item.get_body(), model_tier, attachments=pdfs)
        if not result.success:
            return RequestOutcome(
                success=False,
                flow_type=FlowType.QUESTION,
                reply_subject=reply_subject,
                failure_kind=FailureKind.TRANSIENT,
                error=result.error,
            )

        self.logging.info("[REQUEST] QUESTION completed: %d doc(s) analysed", result.documents_analyzed)
        return RequestOutcome(
            success=True,
            flow_type=FlowType.QUESTION,
            reply_subject=reply_subject,
            reply_body=result.response,
        )
