"""Conversation thread store.

Keeps the PDFs sent within one subject lineage, so a reply that arrives
without attachments can be answered against the documents of the original
message. One JSON file per thread, named by the base subject hash.
"""

import asyncio
import base64
import binascii
import json
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile
from shared.helper.HelperHash import HelperHash
from shared.models.thread import ConversationThread, PdfFile, ThreadInfo, ThreadPdf, ThreadPdfResult

RETENTION_DAYS = 7


class ThreadStore:
    def __init__(self, helper_config: HelperConfig, thread_dir: Path | None = None, retention_days: int | None = None):
        self.logging = helper_config.get_logger()
        if thread_dir is None:
            storage_root = helper_config.get_path_val("STORAGE_PATH", default="./storage")
            thread_dir = storage_root / helper_config.get_string_val("THREAD_DIR", default="12_conversation_threads")
        self.thread_dir = thread_dir
        days = retention_days if retention_days is not None else helper_config.get_number_val("THREAD_RETENTION_DAYS", default=RETENTION_DAYS)
        self.retention = timedelta(days=days)
        self._lock = asyncio.Lock()

    ##########################################
    ################ SUBJECT #################
    ##########################################

    @staticmethod
    def extract_base_subject(subject: str | None) -> str:
        return HelperHash.strip_reply_prefixes(subject)

    @staticmethod
    def compute_subject_hash(subject: str | None) -> str:
        return HelperHash.subject_hash(subject)

    def _thread_path(self, subject_hash: str) -> Path:
        return self.thread_dir / f"{subject_hash}.json"

    ##########################################
    ################## IO ####################
    ##########################################

    async def _load_thread(self, subject_hash: str) -> ConversationThread | None:
        path = self._thread_path(subject_hash)
        try:
            raw = await HelperFile.read_json(path)
            return ConversationThread.model_validate(raw)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logging.warning("[THREAD] Failed to load thread %s: %s", subject_hash, e)
            return None

    async def _save_thread(self, thread: ConversationThread) -> None:
        await HelperFile.write_json_atomic(
            self._thread_path(thread.base_subject_hash),
            thread.model_dump(by_alias=True),
        )

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def record_pdfs_in_thread(self, subject: str | None, sender: str, pdfs: list[PdfFile]) -> int:
        """Create or extend the thread of a subject with PDFs not stored yet.

        Args:
            subject (str | None): Raw subject line.
            sender (str): Sender address of the message.
            pdfs (list[PdfFile]): PDFs carried by the message.

        Returns:
            int: Number of newly stored PDFs.
        """
        if not pdfs:
            return 0

        subject_hash = self.compute_subject_hash(subject)
        async with self._lock:
            thread = await self._load_thread(subject_hash)
            now = HelperFile.to_iso(HelperFile.utc_now())
            if thread is None:
                thread = ConversationThread(
                    base_subject=self.extract_base_subject(subject),
                    base_subject_hash=subject_hash,
                    created_at=now,
                    last_updated=now,
                    sender=sender,
                    pdf_context=[],
                )

            known_hashes = {p.hash for p in thread.pdf_context}
            added = 0
            for pdf in pdfs:
                pdf_hash = HelperHash.content_hash(pdf.content)
                if pdf_hash in known_hashes:
                    continue
                thread.pdf_context.append(ThreadPdf(
                    filename=pdf.filename,
                    hash=pdf_hash,
                    content_base64=base64.b64encode(pdf.content).decode("ascii"),
                    captured_at=now,
                ))
                known_hashes.add(pdf_hash)
                added += 1

            thread.last_updated = now
            await self._save_thread(thread)

        if added:
            self.logging.info("[THREAD] Stored %d PDF(s) in thread '%s'", added, thread.base_subject[:50])
        else:
            self.logging.debug("[THREAD] All PDFs already in thread '%s'", thread.base_subject[:50])
        return added

    async def get_thread_pdfs(self, subject: str | None) -> ThreadPdfResult | None:
        """Decode all PDFs stored for the subject's thread.

        Returns:
            ThreadPdfResult | None: None if there is no thread, it is empty, or nothing decodes.
        """
        thread = await self._load_thread(self.compute_subject_hash(subject))
        if thread is None or not thread.pdf_context:
            return None

        pdfs: list[PdfFile] = []
        for stored in thread.pdf_context:
            try:
                content = base64.b64decode(stored.content_base64, validate=True)
            except (binascii.Error, ValueError) as e:
                self.logging.warning("[THREAD] Failed to decode PDF '%s': %s", stored.filename, e)
                continue
            if not content:
                self.logging.warning("[THREAD] Stored PDF '%s' is empty", stored.filename)
                continue
            pdfs.append(PdfFile(filename=stored.filename, content=content))

        if not pdfs:
            return None

        self.logging.info("[THREAD] Retrieved %d PDF(s) from thread '%s'", len(pdfs), thread.base_subject[:50])
        return ThreadPdfResult(pdfs=pdfs, from_history=True, thread_hash=thread.base_subject_hash)

    async def list_threads(self) -> list[ThreadInfo]:
        """Summaries of the stored threads, most recently updated first. Unreadable files are skipped."""
        infos: list[ThreadInfo] = []
        for path in HelperFile.list_files(self.thread_dir, ".json"):
            thread = await self._load_thread(path.stem)
            if thread is None:
                continue
            infos.append(ThreadInfo(
                base_subject=thread.base_subject,
                base_subject_hash=thread.base_subject_hash,
                sender=thread.sender,
                pdf_count=len(thread.pdf_context),
                created_at=thread.created_at,
                last_updated=thread.last_updated,
            ))
        infos.sort(key=lambda info: info.last_updated, reverse=True)
        return infos

    def count_threads(self) -> int:
        return len(HelperFile.list_files(self.thread_dir, ".json"))

    async def run_cleanup(self) -> int:
        """Delete threads whose last update is older than the retention window.

        Unreadable thread files are logged and left in place.

        Returns:
            int: Number of deleted threads.
        """
        removed = 0
        now = HelperFile.utc_now()
        async with self._lock:
            for path in HelperFile.list_files(self.thread_dir, ".json"):
                try:
                    raw = await HelperFile.read_json(path)
                    thread = ConversationThread.model_validate(raw)
                except (OSError, json.JSONDecodeError, ValidationError) as e:
                    self.logging.warning("[THREAD] Failed to process %s: %s", path.name, e)
                    continue
                last_updated = HelperFile.parse_iso(thread.last_updated)
                if last_updated is None or now - last_updated > self.retention:
                    await HelperFile.delete_file(path)
                    removed += 1
                    self.logging.debug("[THREAD] Removed expired thread '%s'", thread.base_subject)
        self.logging.info("[THREAD] Cleanup: %d expired thread(s) removed", removed)
        return removed
