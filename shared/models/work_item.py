"""Inbound work item, one JSON file per received mail.

Unknown keys written by the mail reception are kept and written back
unchanged when the retry fields are updated.
"""

import html
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_TAG_RE = re.compile(r"<[^>]+>")
_ADDRESS_RE = re.compile(r"<([^<>@\s]+@[^<>\s]+)>")


class WorkAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    filename: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    size: int | None = None
    content_base64: str | None = None


class WorkItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    from_: Any = Field(default=None, alias="from")
    subject: str | None = None
    body_text: str | None = None
    text_as_html: str | None = Field(default=None, alias="textAsHtml")
    body_html: str | None = None
    text: str | None = None
    attachments: list[WorkAttachment] = []
    retry_count: int = Field(default=0, alias="retryCount")
    next_retry_at: str | None = Field(default=None, alias="nextRetryAt")

    def get_body(self) -> str:
        """Return the first non-empty body variant as plain text."""
        if self.body_text and self.body_text.strip():
            return self.body_text.strip()
        for markup in (self.text_as_html, self.body_html):
            if markup and markup.strip():
                stripped = html.unescape(_TAG_RE.sub(" ", markup))
                stripped = re.sub(r"[ \t]+", " ", stripped)
                stripped = re.sub(r"\n\s*\n+", "\n\n", stripped).strip()
                if stripped:
                    return stripped
        if self.text and self.text.strip():
            return self.text.strip()
        return ""

    def get_sender(self) -> str | None:
        """Resolve the sender address from the supported ``from`` shapes.

        Accepts a plain string, ``{"address": ...}``, ``{"text": ...}`` or the
        mail parser form ``{"value": [{"address": ...}]}``.

        Returns:
            str | None: The bare lower-cased address, or None if unparsable.
        """
        candidate: Any = None
        if isinstance(self.from_, str):
            candidate = self.from_
        elif isinstance(self.from_, dict):
            candidate = self.from_.get("address") or self.from_.get("text")
            if not candidate and isinstance(self.from_.get("value"), list) and self.from_["value"]:
                first = self.from_["value"][0]
                if isinstance(first, dict):
                    candidate = first.get("address")
        if not isinstance(candidate, str) or not candidate.strip():
            return None
        candidate = candidate.strip()
        bracketed = _ADDRESS_RE.search(candidate)
        if bracketed:
            candidate = bracketed.group(1)
        if "@" not in candidate or " " in candidate:
            return None
        return candidate.lower()

    def get_subject(self) -> str:
        return (self.subject or "").strip()

    def to_file_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)
