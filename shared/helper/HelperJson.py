"""Tolerant extraction of JSON objects from free-text model replies."""

import json
import re
from typing import Any

from pydantic import BaseModel

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class JsonParseResult(BaseModel):
    """Tagged result of a JSON extraction. Exactly one of data/error is set."""

    ok: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class HelperJson:
    @staticmethod
    def extract_json_object(text: str | None) -> JsonParseResult:
        """Find and decode the first JSON object embedded in a model reply.

        Markdown code fences are preferred when present. Otherwise the span from
        the first opening brace to the last closing brace is decoded. This
        method never raises.

        Args:
            text (str | None): The raw model reply.

        Returns:
            JsonParseResult: ok=True with the decoded object, or ok=False with a reason.
        """
        if not text or not text.strip():
            return JsonParseResult(ok=False, error="empty response")

        candidates: list[str] = []
        fence = _FENCE_RE.search(text)
        if fence:
            candidates.append(fence.group(1))
        candidates.append(text)

        last_error = "no JSON object found"
        for candidate in candidates:
            start = candidate.find("{")
            end = candidate.rfind("}")
            if start == -1 or end <= start:
                continue
            try:
                decoded = json.loads(candidate[start:end + 1])
            except json.JSONDecodeError as e:
                last_error = f"invalid JSON: {e.msg}"
                continue
            if not isinstance(decoded, dict):
                last_error = "JSON value is not an object"
                continue
            return JsonParseResult(ok=True, data=decoded)

        return JsonParseResult(ok=False, error=last_error)

    @staticmethod
    def as_str_list(value: Any) -> list[str]:
        """Coerce a decoded JSON value to a list of non-empty strings."""
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @staticmethod
    def as_optional_int(value: Any) -> int | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return None

    @staticmethod
    def as_confidence(value: Any, default: float) -> float:
        """Coerce to a float in [0, 1], falling back to default."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return max(0.0, min(1.0, float(value)))
