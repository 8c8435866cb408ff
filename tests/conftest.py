"""Shared fixtures: tmp_path backed stores and fakes for the provider and mail ports."""

import json
import logging
from pathlib import Path

import pytest
import pytest_asyncio

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.persistence.ConfigStore import ConfigStore
from shared.persistence.DocumentCache import DocumentCache
from shared.persistence.DocumentStore import DocumentStore
from shared.persistence.ThreadStore import ThreadStore
from tests.fakes import FakeLLMClient, FakeMailClient


@pytest.fixture()
def helper_config() -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("test")))


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "whitelist.json").write_text(json.dumps({
        "allowed_emails": ["alice@example.com"],
        "allowed_domains": ["trusted.org"],
    }))
    return directory


@pytest.fixture()
def config_store(helper_config: HelperConfig, config_dir: Path) -> ConfigStore:
    return ConfigStore(helper_config, config_dir=config_dir)


@pytest_asyncio.fixture()
async def document_store(helper_config: HelperConfig, tmp_path: Path):
    store = DocumentStore(helper_config, db_path=tmp_path / "catalog.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture()
def document_cache(helper_config: HelperConfig, tmp_path: Path) -> DocumentCache:
    return DocumentCache(helper_config, cache_dir=tmp_path / "11_pdf_cache")


@pytest.fixture()
def thread_store(helper_config: HelperConfig, tmp_path: Path) -> ThreadStore:
    return ThreadStore(helper_config, thread_dir=tmp_path / "12_conversation_threads")


@pytest.fixture()
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def fake_mail() -> FakeMailClient:
    return FakeMailClient()
