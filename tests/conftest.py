"""Common test fixtures for the DashText draft repository."""

import tempfile
from pathlib import Path

import pytest

from dashtext_sync.config import config
from dashtext_sync.models.db_models import DBLegacyDraft, init_db
from dashtext_sync.storage.chunk_storage import SqliteChunkStorageAdapter
from dashtext_sync.storage.executor import SqlAlchemyExecutor
from dashtext_sync.sync.repository import DraftRepository


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_dashtext.db")
    monkeypatch.setattr(config, "log_dir", log_dir)
    monkeypatch.setattr(config, "compaction_threshold", 64)
    monkeypatch.setattr(config, "legacy_table", "draft")
    yield config


@pytest.fixture
def engine(test_config):
    """Engine over a fresh database with the chunk/doc map/sync_state schema."""
    engine = init_db(test_config)
    yield engine
    engine.dispose()


@pytest.fixture
def executor(engine):
    return SqlAlchemyExecutor(engine)


@pytest.fixture
def adapter(executor):
    return SqliteChunkStorageAdapter(executor)


@pytest.fixture
def repository(executor):
    """Uninitialized repository over the test database."""
    return DraftRepository(executor)


@pytest.fixture
async def ready_repository(anyio_backend, repository):
    """Initialized repository over the test database."""
    await repository.initialize()
    yield repository


@pytest.fixture
def legacy_table(engine):
    """Create the pre-CRDT draft table and return a row inserter."""
    DBLegacyDraft.__table__.create(engine)

    def insert(uuid, content="", created_at="2024-01-01T00:00:00.000Z",
               modified_at=None, deleted_at=None, archived=False, pinned=False):
        with engine.begin() as conn:
            conn.exec_driver_sql(
                """INSERT INTO draft
                   (uuid, content, created_at, modified_at, deleted_at, archived, pinned)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (uuid, content, created_at, modified_at or created_at,
                 deleted_at, int(archived), int(pinned)),
            )

    return insert
