"""CRDT document repository for drafts."""
from dashtext_sync.sync.doc_store import DocumentStore
from dashtext_sync.sync.handle import DocHandle
from dashtext_sync.sync.manager import RepositoryContext, build_repository, open_repository
from dashtext_sync.sync.migration import migrate, needs_migration
from dashtext_sync.sync.repository import DraftRepository, RepositoryState

__all__ = [
    "DocHandle",
    "DocumentStore",
    "DraftRepository",
    "RepositoryContext",
    "RepositoryState",
    "build_repository",
    "migrate",
    "needs_migration",
    "open_repository",
]
