import json
from datetime import timedelta

import pytest

from shared.helper.HelperFile import HelperFile
from shared.helper.HelperHash import HelperHash
from shared.persistence.DocumentCache import DocumentCache


def _uploader(calls: list):
    async def upload():
        calls.append(1)
        return f"handle-{len(calls)}"
    return upload


@pytest.mark.asyncio()
async def test_same_bytes_are_uploaded_once(document_cache: DocumentCache):
    calls: list = []
    first = await document_cache.get_or_upload(b"%PDF-1 same", "a.pdf", _uploader(calls))
    second = await document_cache.get_or_upload(b"%PDF-1 same", "renamed.pdf", _uploader(calls))

    assert len(calls) == 1
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.handle == first.handle == "handle-1"
    assert first.hash == HelperHash.content_hash(b"%PDF-1 same")


@pytest.mark.asyncio()
async def test_index_file_layout(document_cache: DocumentCache):
    await document_cache.get_or_upload(b"bytes", "a.pdf", _uploader([]))
    raw = json.loads(document_cache.index_path.read_text())
    entry = raw["entries"][HelperHash.content_hash(b"bytes")]
    assert raw["version"] == 1
    assert entry["externalHandle"] == "handle-1"
    assert entry["originalFilename"] == "a.pdf"
    assert entry["sizeBytes"] == 5


def _stored_handles(cache: DocumentCache) -> dict[str, str]:
    raw = json.loads(cache.index_path.read_text())
    return {content_hash: entry["externalHandle"] for content_hash, entry in raw["entries"].items()}


async def _age_entry(cache: DocumentCache, content: bytes, days: int) -> None:
    raw = json.loads(cache.index_path.read_text())
    old = HelperFile.to_iso(HelperFile.utc_now() - timedelta(days=days))
    raw["entries"][HelperHash.content_hash(content)]["lastUsedAt"] = old
    await HelperFile.write_json_atomic(cache.index_path, raw)


@pytest.mark.asyncio()
async def test_expired_entry_is_uploaded_again(document_cache: DocumentCache, fake_llm):
    calls: list = []
    await document_cache.get_or_upload(b"old", "old.pdf", _uploader(calls))
    await _age_entry(document_cache, b"old", days=8)

    result = await document_cache.get_or_upload(b"old", "old.pdf", _uploader(calls), fake_llm.do_delete_file)
    assert len(calls) == 2
    assert result.from_cache is False
    assert result.handle == "handle-2"
    # the replaced remote file is not left behind
    assert fake_llm.deleted == ["handle-1"]


@pytest.mark.asyncio()
async def test_failed_delete_of_expired_handle_keeps_new_entry(document_cache: DocumentCache, fake_llm):
    await document_cache.get_or_upload(b"old", "old.pdf", _uploader([]))
    await _age_entry(document_cache, b"old", days=8)
    fake_llm.fail_delete = True

    result = await document_cache.get_or_upload(b"old", "old.pdf", _uploader([1]), fake_llm.do_delete_file)

    assert result.handle == "handle-2"
    assert _stored_handles(document_cache) == {HelperHash.content_hash(b"old"): "handle-2"}


@pytest.mark.asyncio()
async def test_cleanup_evicts_old_entries_and_tolerates_delete_failure(document_cache: DocumentCache, fake_llm):
    await document_cache.get_or_upload(b"old", "old.pdf", _uploader([]))
    await document_cache.get_or_upload(b"fresh", "fresh.pdf", _uploader([]))
    await _age_entry(document_cache, b"old", days=8)
    fake_llm.fail_delete = True

    removed = await document_cache.run_cleanup(fake_llm.do_delete_file)

    assert removed == 1
    assert fake_llm.deleted == ["handle-1"]
    assert list(_stored_handles(document_cache)) == [HelperHash.content_hash(b"fresh")]


@pytest.mark.asyncio()
async def test_failed_upload_leaves_index_unchanged(document_cache: DocumentCache):
    async def failing_upload():
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError):
        await document_cache.get_or_upload(b"x", "x.pdf", failing_upload)
    assert (await document_cache.get_stats()).entry_count == 0


@pytest.mark.asyncio()
async def test_corrupt_or_foreign_index_is_treated_as_empty(document_cache: DocumentCache):
    document_cache.cache_dir.mkdir(parents=True)
    document_cache.index_path.write_text("{not json")
    assert (await document_cache.get_stats()).entry_count == 0

    document_cache.index_path.write_text(json.dumps({"version": 99, "entries": {"h": {}}}))
    calls: list = []
    result = await document_cache.get_or_upload(b"x", "x.pdf", _uploader(calls))
    assert result.from_cache is False
    assert json.loads(document_cache.index_path.read_text())["version"] == 1


@pytest.mark.asyncio()
async def test_invalidate_and_stats(document_cache: DocumentCache):
    first = await document_cache.get_or_upload(b"12345", "a.pdf", _uploader([]))
    await document_cache.get_or_upload(b"678", "b.pdf", _uploader([]))

    stats = await document_cache.get_stats()
    assert stats.entry_count == 2
    assert stats.total_size_bytes == 8

    assert await document_cache.invalidate(first.hash) is True
    assert await document_cache.invalidate(first.hash) is False
    assert (await document_cache.get_stats()).entry_count == 1
