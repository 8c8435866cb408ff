import hashlib
import re

# RE:, FW:, FWD: with optional whitespace before the colon
_REPLY_PREFIX_RE = re.compile(r"^(re|fwd|fw)\s*:\s*", re.IGNORECASE)
EMPTY_SUBJECT_SENTINEL = "__empty_subject__"
SUBJECT_HASH_LENGTH = 16


class HelperHash:
    @staticmethod
    def content_hash(content: bytes) -> str:
        """SHA-256 hex digest of raw bytes."""
        return hashlib.sha256(content).hexdigest()

    @staticmethod
    def strip_reply_prefixes(subject: str | None) -> str:
        """Strip leading reply/forward markers until none remain.

        "RE: Fwd: re : Foo" -> "Foo"
        """
        current = (subject or "").strip()
        while True:
            stripped = _REPLY_PREFIX_RE.sub("", current, count=1).strip()
            if stripped == current:
                return current
            current = stripped

    @staticmethod
    def subject_hash(subject: str | None) -> str:
        """Hash of the case-folded base subject, truncated to 16 hex characters."""
        base = HelperHash.strip_reply_prefixes(subject).lower()
        if not base:
            base = EMPTY_SUBJECT_SENTINEL
        return hashlib.sha256(base.encode("utf-8")).hexdigest()[:SUBJECT_HASH_LENGTH]
