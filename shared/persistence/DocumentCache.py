"""Content-addressed cache of documents uploaded to the inference provider.

The index lives in a single JSON file (``cache-index.json``) mapping the
SHA-256 of the raw bytes to the provider handle. Entries unused for longer
than the retention window are removed at startup together with their
remote file.
"""

import asyncio
import json
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile
from shared.helper.HelperHash import HelperHash
from shared.models.cache import CACHE_INDEX_VERSION, CacheEntry, CacheIndex, CacheResult, CacheStats

INDEX_FILENAME = "cache-index.json"
RETENTION_DAYS = 7

UploadFn = Callable[[], Awaitable[str]]
DeleteFn = Callable[[str], Awaitable[None]]


class DocumentCache:
    def __init__(self, helper_config: HelperConfig, cache_dir: Path | None = None, retention_days: int | None = None):
        self.logging = helper_config.get_logger()
        if cache_dir is None:
            storage_root = helper_config.get_path_val("STORAGE_PATH", default="./storage")
            cache_dir = storage_root / helper_config.get_string_val("PDF_CACHE_DIR", default="11_pdf_cache")
        self.cache_dir = cache_dir
        self.index_path = cache_dir / INDEX_FILENAME
        days = retention_days if retention_days is not None else helper_config.get_number_val("PDF_CACHE_RETENTION_DAYS", default=RETENTION_DAYS)
        self.retention = timedelta(days=days)
        self._lock = asyncio.Lock()

    ##########################################
    ################ INDEX ###################
    ##########################################

    async def _load_index(self) -> CacheIndex:
        """Load the index; a missing, corrupt or foreign-version file yields an empty index."""
        try:
            raw = await HelperFile.read_json(self.index_path)
        except FileNotFoundError:
            return CacheIndex()
        except (OSError, json.JSONDecodeError) as e:
            self.logging.warning("[PDF-CACHE] Could not load index, starting empty: %s", e)
            return CacheIndex()

        if not isinstance(raw, dict) or raw.get("version") != CACHE_INDEX_VERSION:
            found = raw.get("version") if isinstance(raw, dict) else None
            self.logging.warning(
                "[PDF-CACHE] Index version mismatch (found %s, expected %d), resetting cache",
                found, CACHE_INDEX_VERSION,
            )
            return CacheIndex()
        try:
            return CacheIndex.model_validate(raw)
        except ValidationError as e:
            self.logging.warning("[PDF-CACHE] Index has an invalid structure, starting empty: %s", e)
            return CacheIndex()

    async def _save_index(self, index: CacheIndex) -> None:
        await HelperFile.write_json_atomic(self.index_path, index.model_dump(by_alias=True))

    def _is_expired(self, entry: CacheEntry) -> bool:
        last_used = HelperFile.parse_iso(entry.last_used_at)
        if last_used is None:
            return True
        return HelperFile.utc_now() - last_used > self.retention

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def get_or_upload(self, content: bytes, filename: str, upload_fn: UploadFn, delete_fn: DeleteFn | None = None) -> CacheResult:
        """Return the cached handle for these bytes, uploading them on a miss.

        Args:
            content (bytes): Raw document bytes.
            filename (str): Original file name, kept for diagnostics.
            upload_fn (UploadFn): Coroutine factory performing the provider upload.
            delete_fn (DeleteFn | None): Removes the remote file of an expired entry
                once its replacement is uploaded. Failures are only logged.

        Returns:
            CacheResult: handle, whether it came from the cache, and the content hash.

        Raises:
            Exception: Whatever upload_fn raises; the index is left unchanged.
        """
        content_hash = HelperHash.content_hash(content)
        async with self._lock:
            index = await self._load_index()
            entry = index.entries.get(content_hash)
            now = HelperFile.to_iso(HelperFile.utc_now())

            if entry is not None and not self._is_expired(entry):
                entry.last_used_at = now
                await self._save_index(index)
                self.logging.debug("[PDF-CACHE] Hit for %s (hash %s...)", filename, content_hash[:8])
                return CacheResult(handle=entry.external_handle, from_cache=True, hash=content_hash)

            if entry is not None:
                self.logging.info("[PDF-CACHE] Entry for %s expired, uploading again", filename)
            else:
                self.logging.debug("[PDF-CACHE] Miss for %s, uploading...", filename)

            handle = await upload_fn()
            index.entries[content_hash] = CacheEntry(
                hash=content_hash,
                external_handle=handle,
                uploaded_at=now,
                last_used_at=now,
                original_filename=filename,
                size_bytes=len(content),
            )
            await self._save_index(index)

            if entry is not None and delete_fn is not None and entry.external_handle != handle:
                try:
                    await delete_fn(entry.external_handle)
                except Exception as e:
                    self.logging.warning("[PDF-CACHE] Could not delete expired remote file %s: %s", entry.external_handle, e)
            return CacheResult(handle=handle, from_cache=False, hash=content_hash)

    async def invalidate(self, content_hash: str) -> bool:
        """Remove an entry whose remote handle turned out to be stale.

        Returns:
            bool: True if an entry was removed.
        """
        async with self._lock:
            index = await self._load_index()
            if content_hash not in index.entries:
                return False
            self.logging.info("[PDF-CACHE] Invalidating entry for hash %s...", content_hash[:8])
            del index.entries[content_hash]
            await self._save_index(index)
            return True

    async def run_cleanup(self, delete_fn: DeleteFn) -> int:
        """Remove expired entries and attempt to delete their remote files.

        Remote deletion is best-effort: a failure is logged and the local entry
        is removed regardless.

        Returns:
            int: Number of removed entries.
        """
        self.logging.info("[PDF-CACHE] Running cleanup...")
        async with self._lock:
            index = await self._load_index()
            expired = [h for h, entry in index.entries.items() if self._is_expired(entry)]
            for content_hash in expired:
                entry = index.entries.pop(content_hash)
                self.logging.info(
                    "[PDF-CACHE] Cleaning expired: %s (last used %s)",
                    entry.original_filename, entry.last_used_at,
                )
                try:
                    await delete_fn(entry.external_handle)
                except Exception as e:
                    self.logging.warning("[PDF-CACHE] Remote delete of %s failed (may be gone already): %s", entry.external_handle, e)
            if expired:
                await self._save_index(index)
            self.logging.info(
                "[PDF-CACHE] Cleanup complete: %d entries removed, %d remaining",
                len(expired), len(index.entries),
            )
            return len(expired)

    async def get_stats(self) -> CacheStats:
        index = await self._load_index()
        return CacheStats(
            entry_count=len(index.entries),
            total_size_bytes=sum(e.size_bytes for e in index.entries.values()),
        )
