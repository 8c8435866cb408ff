"""In-memory stand-ins for the provider and mail ports, plus a PDF factory."""

import asyncio
import io
import time
from typing import Callable

from pypdf import PdfWriter

from shared.clients.ClientInterface import ClientRequestError
from shared.clients.mail.models.MailMessage import SendResult
from shared.models.pipeline import ModelTier


def make_pdf(pages: int = 1, label: str = "doc") -> bytes:
    """Blank PDF whose pages all have different widths, so split parts never share bytes."""
    writer = PdfWriter()
    for index in range(pages):
        writer.add_blank_page(width=72 + index, height=72)
    writer.add_metadata({"/Title": label})
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class FakeLLMClient:
    """Stands in for LLMClientInterface; replies are produced by ``responder(prompt)``."""

    def __init__(self, responder: Callable[[str], str] | None = None):
        self.responder = responder or (lambda prompt: "{}")
        self.uploads: list[str] = []
        self.deleted: list[str] = []
        self.chat_prompts: list[str] = []
        self.stale_handles: set[str] = set()
        self.fail_delete = False

    def get_engine_name(self) -> str:
        return "fake"

    def get_model_for_tier(self, tier: ModelTier) -> str:
        return f"model-{tier.value}"

    def build_messages(self, system_prompt: str, prompt: str, document_url: str | None = None) -> list[dict]:
        return [{"role": "user", "content": prompt, "document_url": document_url}]

    async def do_upload_file(self, content: bytes, filename: str) -> str:
        self.uploads.append(filename)
        return f"file-{len(self.uploads)}"

    async def do_fetch_reference(self, handle: str) -> str:
        if handle in self.stale_handles:
            raise ClientRequestError(f"https://provider.test/v1/files/{handle}/url", 404)
        return f"https://provider.test/signed/{handle}"

    async def do_delete_file(self, handle: str) -> None:
        self.deleted.append(handle)
        if self.fail_delete:
            raise ClientRequestError(f"https://provider.test/v1/files/{handle}", 404)

    async def do_chat(self, model: str, messages: list[dict], max_tokens: int) -> str:
        prompt = messages[-1]["content"]
        self.chat_prompts.append(prompt)
        return self.responder(prompt)


class TimedLLMClient(FakeLLMClient):
    """FakeLLMClient whose chat calls take ``hold`` seconds and are timed."""

    def __init__(self, responder: Callable[[str], str] | None = None, hold: float = 0.0):
        super().__init__(responder)
        self.hold = hold
        self.chat_started: list[float] = []
        self.chat_finished: list[float] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def do_chat(self, model: str, messages: list[dict], max_tokens: int) -> str:
        self.chat_started.append(time.monotonic())
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.hold)
            return await super().do_chat(model, messages, max_tokens)
        finally:
            self.in_flight -= 1
            self.chat_finished.append(time.monotonic())


class FakeMailClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    def get_engine_name(self) -> str:
        return "fake"

    async def do_send(self, to: str, subject: str, body: str, attachments=None) -> SendResult:
        if self.fail:
            return SendResult(success=False, error="connection refused")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return SendResult(success=True)


