"""Creation, loading and persistence of CRDT documents.

Document history is stored as chunks keyed ``(doc_id, chunk_type, chunk_id)``
where ``chunk_id`` is the SHA-256 of the payload:

- every committed transaction becomes an ``incremental`` chunk
- once a document holds ``compaction_threshold`` incremental chunks, its
  full state is written as a ``snapshot`` chunk and the chunks it supersedes
  are removed

Updates are commutative and idempotent, so chunks can be applied in any
order and a chunk written twice is harmless.
"""
import hashlib
import logging
from typing import Callable, Dict, Optional

import anyio
from pycrdt import Doc

from dashtext_sync.exceptions import DocumentUnavailableError
from dashtext_sync.models.schema import ChunkType, StorageKey, generate_document_id
from dashtext_sync.observability import traced
from dashtext_sync.storage.base import StorageAdapterInterface
from dashtext_sync.sync.handle import DocHandle

logger = logging.getLogger(__name__)


def chunk_key(doc_id: str, chunk_type: ChunkType, data: bytes) -> StorageKey:
    """Content-addressed storage key for a chunk payload."""
    return (doc_id, chunk_type.value, hashlib.sha256(data).hexdigest())


class DocumentStore:
    """Owns every open document handle and writes their history to storage."""

    def __init__(
        self,
        storage: StorageAdapterInterface,
        compaction_threshold: int = 64,
    ):
        if compaction_threshold < 1:
            raise ValueError("compaction_threshold must be >= 1")
        self.storage = storage
        self.compaction_threshold = compaction_threshold
        self._handles: Dict[str, DocHandle] = {}
        self._find_lock = anyio.Lock()

    def get_cached(self, doc_id: str) -> Optional[DocHandle]:
        return self._handles.get(doc_id)

    async def create(self, initializer: Callable[[Doc], None]) -> DocHandle:
        """Create a new document and persist its initial state."""
        doc_id = generate_document_id()
        handle = DocHandle(doc_id, Doc(), self)
        self._handles[doc_id] = handle
        await handle.change(initializer)
        logger.debug(f"Created document {doc_id}")
        return handle

    @traced("find_document")
    async def find(self, doc_id: str) -> DocHandle:
        """Return the handle for ``doc_id``, loading it from storage once.

        Raises:
            DocumentUnavailableError: If no chunk exists for the document.
        """
        handle = self._handles.get(doc_id)
        if handle is not None:
            return handle

        async with self._find_lock:
            # Another caller may have finished loading while we waited
            handle = self._handles.get(doc_id)
            if handle is not None:
                return handle

            chunks = await self.storage.load_range((doc_id,))
            if not chunks:
                raise DocumentUnavailableError(doc_id)

            doc = Doc()
            for chunk in chunks:
                doc.apply_update(chunk.data)

            handle = DocHandle(doc_id, doc, self)
            for chunk in chunks:
                if chunk.key[1] == ChunkType.SNAPSHOT.value:
                    handle.snapshot_keys.add(chunk.key)
                else:
                    handle.incremental_keys.add(chunk.key)
            self._handles[doc_id] = handle
            logger.debug(f"Loaded document {doc_id} from {len(chunks)} chunks")
            return handle

    async def persist(self, handle: DocHandle, update: bytes) -> None:
        """Store one committed update, compacting when the threshold is reached."""
        async with handle.persist_lock:
            key = chunk_key(handle.doc_id, ChunkType.INCREMENTAL, update)
            await self.storage.save(key, update)
            handle.incremental_keys.add(key)
            if len(handle.incremental_keys) >= self.compaction_threshold:
                await self._compact(handle)

    async def compact(self, handle: DocHandle) -> None:
        """Fold all of a document's chunks into one snapshot."""
        async with handle.persist_lock:
            await self._compact(handle)

    async def _compact(self, handle: DocHandle) -> None:
        snapshot = handle.doc.get_update()
        key = chunk_key(handle.doc_id, ChunkType.SNAPSHOT, snapshot)
        # The new snapshot must be durable before anything it replaces goes
        await self.storage.save(key, snapshot)

        superseded = (handle.incremental_keys | handle.snapshot_keys) - {key}
        for old_key in sorted(superseded):
            await self.storage.remove(old_key)

        handle.incremental_keys.clear()
        handle.snapshot_keys = {key}
        logger.debug(
            f"Compacted document {handle.doc_id}: {len(superseded)} chunks into snapshot"
        )

    def evict(self, doc_id: str) -> None:
        """Drop a handle from memory; its chunks stay in storage."""
        handle = self._handles.pop(doc_id, None)
        if handle is not None:
            handle.close()
