import asyncio
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is importable during pytest collection
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

# Environment defaults must be in place before config.settings is imported
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('STORAGE_BACKEND', 'test')
os.environ.setdefault('GC_ENABLED', 'false')
os.environ.setdefault('LOG_LEVEL', 'WARNING')

from tortoise import Tortoise, connections

from apps.filesystem.schema import Config
from apps.storage.memory import MemoryStorage
from config.db import MODELS

TEST_DB_URL = 'sqlite://:memory:'


async def _with_db(fn):
    await Tortoise.init(db_url=TEST_DB_URL, modules={'models': MODELS}, use_tz=True, timezone='UTC')
    await Tortoise.generate_schemas()
    try:
        return await fn()
    finally:
        await connections.close_all()


@pytest.fixture
def run_db():
    """Run an async test body against a fresh in-memory database.

    The whole body runs inside one event loop, so Tortoise connections stay valid.
    """

    def run(fn):
        return asyncio.run(_with_db(fn))

    return run


@pytest.fixture(autouse=True)
def reset_memory_storage():
    MemoryStorage.reset()
    yield
    MemoryStorage.reset()


@pytest.fixture
def config():
    return Config(storage={'type': 'test'}, upload_url_ttl=600, download_url_ttl=3600, blob_grace_period=86400)
