"""Chunk storage contract consumed by the CRDT document store."""
from abc import ABC, abstractmethod
from typing import List, Optional

from dashtext_sync.models.schema import Chunk, StorageKey


class StorageAdapterInterface(ABC):
    """Generic key/value chunk storage for CRDT document history.

    Keys are short tuples of strings; see the implementation for how each
    key shape maps onto storage.
    """

    @abstractmethod
    async def load(self, key: StorageKey) -> Optional[bytes]:
        """Load a single chunk, or None if absent."""
        pass

    @abstractmethod
    async def save(self, key: StorageKey, data: bytes) -> None:
        """Insert or replace a single chunk."""
        pass

    @abstractmethod
    async def remove(self, key: StorageKey) -> None:
        """Remove a single chunk; no-op if absent."""
        pass

    @abstractmethod
    async def load_range(self, key_prefix: StorageKey) -> List[Chunk]:
        """Load every chunk whose key starts with the prefix."""
        pass

    @abstractmethod
    async def remove_range(self, key_prefix: StorageKey) -> None:
        """Remove every chunk whose key starts with the prefix."""
        pass
