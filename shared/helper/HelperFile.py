"""Atomic JSON file access shared by all file-backed stores."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os


class HelperFile:
    """Reads and writes JSON state files.

    Every write goes to a sibling ``.tmp`` file which is then renamed over the
    target, so a reader never observes a partially written file.
    """

    @staticmethod
    async def ensure_dir(path: Path) -> None:
        await aiofiles.os.makedirs(path, exist_ok=True)

    @staticmethod
    async def read_json(path: Path) -> Any:
        """Read and decode a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            json.JSONDecodeError: If the file is not valid JSON.
        """
        async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
            raw = await f.read()
        return json.loads(raw)

    @staticmethod
    async def write_json_atomic(path: Path, data: Any) -> None:
        """Serialise data and atomically replace the target file."""
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
            await f.write(payload)
            await f.flush()
        await aiofiles.os.replace(tmp_path, path)

    @staticmethod
    async def delete_file(path: Path, missing_ok: bool = True) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            if not missing_ok:
                raise

    @staticmethod
    async def move_file(source: Path, target: Path) -> None:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        await aiofiles.os.replace(source, target)

    @staticmethod
    def list_files(directory: Path, suffix: str) -> list[Path]:
        """List regular files with the given suffix, sorted by name."""
        if not directory.exists():
            return []
        return sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.name.endswith(suffix) and not p.name.endswith(".tmp")
        )

    @staticmethod
    def utc_now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def to_iso(value: datetime) -> str:
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    @staticmethod
    def parse_iso(value: str | None) -> datetime | None:
        """Parse an ISO-8601 timestamp; returns None for empty or invalid input."""
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def file_size(path: Path) -> int:
        return os.path.getsize(path)
