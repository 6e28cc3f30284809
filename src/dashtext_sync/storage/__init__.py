"""Storage layer for DashText sync."""

from dashtext_sync.storage.base import StorageAdapterInterface
from dashtext_sync.storage.chunk_storage import SqliteChunkStorageAdapter, to_bytes
from dashtext_sync.storage.executor import DbExecutor, SqlAlchemyExecutor

__all__ = [
    "StorageAdapterInterface",
    "SqliteChunkStorageAdapter",
    "DbExecutor",
    "SqlAlchemyExecutor",
    "to_bytes",
]
