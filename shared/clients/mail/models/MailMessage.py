"""Outbound mail models shared by all mail engines."""

from pydantic import BaseModel


class MailAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class SendResult(BaseModel):
    success: bool
    error: str | None = None
