"""In-memory handle on one CRDT document."""
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Set

import anyio
from pycrdt import Doc

from dashtext_sync.models.schema import StorageKey

if TYPE_CHECKING:
    from dashtext_sync.sync.doc_store import DocumentStore

logger = logging.getLogger(__name__)

ChangeCallback = Callable[["DocHandle"], None]


class DocHandle:
    """A loaded CRDT document plus its persistence bookkeeping.

    All mutation goes through :meth:`change` (local edits) or :meth:`merge`
    (updates from another replica). Each committed transaction is persisted
    as one incremental chunk before subscribers are notified.
    """

    def __init__(self, doc_id: str, doc: Doc, store: "DocumentStore"):
        self.doc_id = doc_id
        self.doc = doc
        self._store = store
        self._subscribers: Dict[int, ChangeCallback] = {}
        self._next_token = 0
        self._pending: List[bytes] = []
        # Chunk keys currently holding this document's history
        self.snapshot_keys: Set[StorageKey] = set()
        self.incremental_keys: Set[StorageKey] = set()
        self.persist_lock = anyio.Lock()
        # Only fires for transactions that changed something
        self._observer = doc.observe(self._on_transaction)

    def _on_transaction(self, event: Any) -> None:
        self._pending.append(event.update)

    def _take_pending(self) -> List[bytes]:
        updates, self._pending = self._pending, []
        return updates

    async def change(self, fn: Callable[[Doc], None]) -> bool:
        """Apply ``fn`` to the document as a single atomic transaction.

        If ``fn`` raises, whatever it changed before raising is still
        committed and persisted, then the error propagates.

        Returns:
            True if the transaction changed the document.
        """
        try:
            with self.doc.transaction():
                fn(self.doc)
        finally:
            changed = await self._commit(self._take_pending())
        return changed

    async def merge(self, update: bytes) -> bool:
        """Apply an update produced by another replica of this document."""
        try:
            self.doc.apply_update(update)
        finally:
            changed = await self._commit(self._take_pending())
        return changed

    async def _commit(self, updates: List[bytes]) -> bool:
        if not updates:
            return False
        for position, update in enumerate(updates):
            try:
                await self._store.persist(self, update)
            except Exception:
                # Later updates depend on these; retry them on the next commit
                self._pending[:0] = updates[position:]
                raise
        self._notify()
        return True

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback run after every committed change.

        Returns:
            A function that removes this registration.
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers.values()):
            try:
                callback(self)
            except Exception:
                logger.exception(f"Change subscriber failed for document {self.doc_id}")

    def close(self) -> None:
        """Stop observing the document and drop subscribers."""
        self.doc.unobserve(self._observer)
        self._subscribers.clear()

    def __repr__(self) -> str:
        return f"<DocHandle(doc_id='{self.doc_id}')>"
