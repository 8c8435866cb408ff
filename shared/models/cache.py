"""Models of the uploaded-document cache index (``cache-index.json``)."""

from pydantic import BaseModel, ConfigDict, Field

CACHE_INDEX_VERSION = 1


class CacheEntry(BaseModel):
    """One uploaded document, keyed by content hash in the index."""

    model_config = ConfigDict(populate_by_name=True)

    hash: str
    external_handle: str = Field(alias="externalHandle")
    uploaded_at: str = Field(alias="uploadedAt")
    last_used_at: str = Field(alias="lastUsedAt")
    original_filename: str = Field(alias="originalFilename")
    size_bytes: int = Field(alias="sizeBytes")


class CacheIndex(BaseModel):
    version: int = CACHE_INDEX_VERSION
    entries: dict[str, CacheEntry] = {}


class CacheResult(BaseModel):
    handle: str
    from_cache: bool
    hash: str


class CacheStats(BaseModel):
    entry_count: int
    total_size_bytes: int
