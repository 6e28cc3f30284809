"""Draft repository: the CRDT-backed source of truth for drafts.

The repository owns:

- one root index document, listing every draft's metadata and the single
  pinned draft;
- one CRDT document per draft, holding its text content;
- the ``automerge_doc_map`` table resolving draft UUIDs to document ids.

Text content is only ever changed through positional splices so that
concurrent edits from other replicas merge without losing either side.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import anyio
from pycrdt import Doc, Map, Text

from dashtext_sync.config import config
from dashtext_sync.exceptions import (DraftNotFoundError, NotInitializedError,
                                      ValidationError)
from dashtext_sync.models.db_models import ADAPTER_META_DOC_ID
from dashtext_sync.models.schema import (SCHEMA_VERSION, CreateDraftResult,
                                         DraftDocument, DraftFilter,
                                         DraftMetadata, MetadataUpdate,
                                         RootDocument, SyncConfig,
                                         generate_draft_uuid, iso_now)
from dashtext_sync.observability import traced
from dashtext_sync.storage.base import StorageAdapterInterface
from dashtext_sync.storage.chunk_storage import SqliteChunkStorageAdapter
from dashtext_sync.storage.executor import DbExecutor
from dashtext_sync.sync.doc_store import DocumentStore
from dashtext_sync.sync.handle import DocHandle

logger = logging.getLogger(__name__)


class RepositoryState(str, Enum):
    """Lifecycle of a DraftRepository. There is no closed state."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


# Layout of the CRDT documents. Top-level shared types merge across replicas,
# so scalars live inside a top-level "meta" map.

def _meta(doc: Doc) -> Map:
    return doc.get("meta", type=Map)


def _drafts(doc: Doc) -> Map:
    return doc.get("drafts", type=Map)


def _content(doc: Doc) -> Text:
    return doc.get("content", type=Text)


def _byte_range(current: str, index: int, count: int) -> Tuple[int, int]:
    """Map a character range of ``current`` to Text offsets, which count UTF-8 bytes."""
    start = len(current[:index].encode("utf-8"))
    return start, len(current[index:index + count].encode("utf-8"))


def _delete_key(crdt_map: Map, key: str) -> None:
    if crdt_map.get(key) is not None:
        del crdt_map[key]


def read_root(doc: Doc) -> RootDocument:
    """Materialize the root index document."""
    meta = _meta(doc).to_py() or {}
    drafts = _drafts(doc).to_py() or {}
    return RootDocument(
        schema_version=int(meta.get("schemaVersion", SCHEMA_VERSION)),
        drafts={
            uuid: DraftMetadata.model_validate(entry)
            for uuid, entry in drafts.items()
        },
        pinned_uuid=meta.get("pinnedUuid"),
    )


def read_draft(doc: Doc) -> DraftDocument:
    """Materialize a draft document."""
    meta = _meta(doc).to_py() or {}
    return DraftDocument(
        schema_version=int(meta.get("schemaVersion", SCHEMA_VERSION)),
        uuid=meta["uuid"],
        content=str(_content(doc)),
        created_at=meta["createdAt"],
        modified_at=meta["modifiedAt"],
    )


UpdateArg = Union[MetadataUpdate, Mapping[str, Any]]
FilterArg = Union[DraftFilter, Mapping[str, Any], None]


class DraftRepository:
    """Creates, loads and edits drafts and keeps the root index consistent.

    One instance should own the document graph of an application; build it
    in the composition root and pass it to whoever needs it.
    """

    def __init__(
        self,
        db: DbExecutor,
        storage: Optional[StorageAdapterInterface] = None,
        compaction_threshold: Optional[int] = None,
    ):
        """Initialize the repository.

        Args:
            db: Executor used for the doc map and sync_state tables.
            storage: Chunk storage. Defaults to the SQLite adapter over ``db``.
            compaction_threshold: Incremental chunks per document before a
                snapshot is written. Defaults to the configured value.
        """
        self.db = db
        self.storage = storage or SqliteChunkStorageAdapter(db)
        self.store = DocumentStore(
            self.storage,
            compaction_threshold=compaction_threshold or config.compaction_threshold,
        )
        self.state = RepositoryState.UNINITIALIZED
        self._root: Optional[DocHandle] = None
        self._draft_handles: Dict[str, DocHandle] = {}
        self._init_lock = anyio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.state is RepositoryState.READY

    def _require_ready(self, operation: str) -> DocHandle:
        if self.state is not RepositoryState.READY or self._root is None:
            raise NotInitializedError(operation)
        return self._root

    @traced("initialize")
    async def initialize(self) -> None:
        """Load the root document, creating it on first run.

        Safe to call repeatedly and concurrently: only one root document is
        ever created.
        """
        if self.state is RepositoryState.READY:
            return

        async with self._init_lock:
            if self.state is RepositoryState.READY:
                return

            self.state = RepositoryState.INITIALIZING
            try:
                rows = await self.db.select(
                    "SELECT root_doc_id FROM sync_state WHERE id = 1"
                )
                if rows and rows[0]["root_doc_id"]:
                    self._root = await self.store.find(rows[0]["root_doc_id"])
                    logger.info(f"Loaded root document {self._root.doc_id}")
                else:
                    self._root = await self._create_root()
                    logger.info(f"Created root document {self._root.doc_id}")
            except BaseException:
                self._root = None
                self.state = RepositoryState.UNINITIALIZED
                raise

            self.state = RepositoryState.READY

    async def _create_root(self) -> DocHandle:
        def init_root(doc: Doc) -> None:
            _meta(doc)["schemaVersion"] = SCHEMA_VERSION
            _drafts(doc)

        handle = await self.store.create(init_root)
        now = iso_now()
        # Upsert keeps the reserved network sync columns intact
        await self.db.execute(
            """INSERT INTO sync_state (id, sync_enabled, root_doc_id, created_at, updated_at)
               VALUES (1, 0, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   root_doc_id = excluded.root_doc_id,
                   updated_at = excluded.updated_at""",
            [handle.doc_id, now, now],
        )
        return handle

    @property
    def root_doc_id(self) -> str:
        return self._require_ready("root_doc_id").doc_id

    def get_root_handle(self) -> DocHandle:
        return self._require_ready("get_root_handle")

    def get_root_doc(self) -> RootDocument:
        """Current state of the root index document."""
        return read_root(self._require_ready("get_root_doc").doc)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    @traced("create_draft")
    async def create_draft(self, created_at: Optional[str] = None) -> CreateDraftResult:
        """Create an empty draft and register it in the root document.

        Args:
            created_at: Creation timestamp to record instead of now; used
                when importing drafts that already have a history.

        Returns:
            The new draft's UUID and document id.
        """
        root = self._require_ready("create_draft")
        uuid = generate_draft_uuid()
        now = created_at or iso_now()

        def init_draft(doc: Doc) -> None:
            meta = _meta(doc)
            meta["schemaVersion"] = SCHEMA_VERSION
            meta["uuid"] = uuid
            meta["createdAt"] = now
            meta["modifiedAt"] = now
            _content(doc)

        handle = await self.store.create(init_draft)
        entry = DraftMetadata(
            doc_id=handle.doc_id,
            created_at=now,
            modified_at=now,
            archived=False,
            pinned=False,
        )

        def add_entry(doc: Doc) -> None:
            _drafts(doc)[uuid] = Map(entry.to_crdt())

        await root.change(add_entry)

        # Written last: a crash before this point leaves an unreferenced
        # document rather than a mapping to nothing
        await self.db.execute(
            """INSERT INTO automerge_doc_map (draft_uuid, doc_id, created_at)
               VALUES (?, ?, ?)""",
            [uuid, handle.doc_id, now],
        )
        self._draft_handles[uuid] = handle
        logger.debug(f"Created draft {uuid} (doc {handle.doc_id})")
        return CreateDraftResult(uuid=uuid, doc_id=handle.doc_id)

    async def get_draft_handle(self, uuid: str) -> Optional[DocHandle]:
        """Handle for a draft's document, or None if the UUID is unmapped."""
        self._require_ready("get_draft_handle")

        handle = self._draft_handles.get(uuid)
        if handle is not None:
            return handle

        rows = await self.db.select(
            "SELECT doc_id FROM automerge_doc_map WHERE draft_uuid = ?", [uuid]
        )
        if not rows:
            return None

        handle = await self.store.find(rows[0]["doc_id"])
        self._draft_handles[uuid] = handle
        return handle

    async def get_draft_doc(self, uuid: str) -> Optional[DraftDocument]:
        """Current state of a draft, or None if the UUID is unmapped."""
        handle = await self.get_draft_handle(uuid)
        if handle is None:
            return None
        return read_draft(handle.doc)

    async def _require_draft(self, uuid: str) -> DocHandle:
        handle = await self.get_draft_handle(uuid)
        if handle is None:
            raise DraftNotFoundError(uuid)
        return handle

    @traced("splice_content")
    async def splice_content(
        self,
        uuid: str,
        index: int,
        delete_count: int,
        insert_text: Optional[str] = None,
    ) -> None:
        """Apply a positional edit to a draft's content.

        Args:
            uuid: Draft UUID.
            index: Position in the content string.
            delete_count: Number of characters to delete at ``index``.
            insert_text: Text to insert at ``index`` after deleting.

        Raises:
            DraftNotFoundError: If the UUID is unmapped.
            ValidationError: If the range falls outside the content.
        """
        handle = await self._require_draft(uuid)
        length = len(str(_content(handle.doc)))
        if index < 0 or index > length:
            raise ValidationError(
                f"Splice index {index} outside content of length {length}",
                field="index",
                value=index,
            )
        if delete_count < 0 or index + delete_count > length:
            raise ValidationError(
                f"Cannot delete {delete_count} characters at {index} "
                f"from content of length {length}",
                field="delete_count",
                value=delete_count,
            )

        await self._splice(handle, uuid, index, delete_count, insert_text or "", iso_now())

    @traced("set_content")
    async def set_content(
        self,
        uuid: str,
        content: str,
        modified_at: Optional[str] = None,
    ) -> None:
        """Replace a draft's whole content.

        Implemented as delete-all then insert-all so the change still merges
        as text edits. Prefer :meth:`splice_content` for incremental edits.
        """
        handle = await self._require_draft(uuid)
        length = len(str(_content(handle.doc)))
        await self._splice(handle, uuid, 0, length, content, modified_at or iso_now())

    async def _splice(
        self,
        handle: DocHandle,
        uuid: str,
        index: int,
        delete_count: int,
        insert_text: str,
        timestamp: str,
    ) -> None:
        def apply(doc: Doc) -> None:
            text = _content(doc)
            start, byte_count = _byte_range(str(text), index, delete_count)
            if byte_count:
                del text[start:start + byte_count]
            if insert_text:
                text.insert(start, insert_text)
            _meta(doc)["modifiedAt"] = timestamp

        await handle.change(apply)
        await self._stamp_modified(uuid, timestamp)

    async def _stamp_modified(self, uuid: str, timestamp: str) -> None:
        root = self._require_ready("stamp_modified")

        def stamp(doc: Doc) -> None:
            entry = _drafts(doc).get(uuid)
            if entry is not None:
                entry["modifiedAt"] = timestamp

        await root.change(stamp)

    @traced("update_metadata")
    async def update_metadata(
        self,
        uuid: str,
        update: UpdateArg,
        modified_at: Optional[str] = None,
    ) -> None:
        """Update a draft's archived/pinned/deleted state in the root document.

        Everything happens in one root transaction, so subscribers never see
        two pinned drafts or a pin without its flag. Pinning a draft unpins
        whichever draft held the pin before.

        Args:
            uuid: Draft UUID.
            update: ``MetadataUpdate`` or a mapping with any of ``archived``,
                ``pinned`` and ``deleted_at`` (or ``deletedAt``).
            modified_at: Timestamp to stamp on the entry instead of now.

        Raises:
            DraftNotFoundError: If the root document has no such draft.
        """
        root = self._require_ready("update_metadata")
        if not isinstance(update, MetadataUpdate):
            update = MetadataUpdate.model_validate(dict(update))
        if _drafts(root.doc).get(uuid) is None:
            raise DraftNotFoundError(uuid)

        provided = update.provided()
        timestamp = modified_at or iso_now()

        def apply(doc: Doc) -> None:
            meta = _meta(doc)
            drafts = _drafts(doc)
            entry = drafts[uuid]

            if "archived" in provided:
                entry["archived"] = update.archived

            if "pinned" in provided:
                if update.pinned:
                    # Clear every other pin, not just pinnedUuid, so entries
                    # merged in from other replicas cannot leave two pins
                    for other_uuid, other in list(drafts.items()):
                        if other_uuid != uuid and other.get("pinned"):
                            other["pinned"] = False
                    meta["pinnedUuid"] = uuid
                elif meta.get("pinnedUuid") == uuid:
                    _delete_key(meta, "pinnedUuid")
                entry["pinned"] = update.pinned

            if "deleted_at" in provided:
                if update.deleted_at is None:
                    _delete_key(entry, "deletedAt")
                else:
                    entry["deletedAt"] = update.deleted_at

            entry["modifiedAt"] = timestamp

        await root.change(apply)

    @traced("hard_delete_draft")
    async def hard_delete_draft(self, uuid: str) -> None:
        """Remove a draft from the index and drop its UUID mapping.

        The draft's chunks are left in storage for offline collection; see
        :meth:`orphaned_document_ids`.

        Raises:
            DraftNotFoundError: If the draft is neither indexed nor mapped.
        """
        root = self._require_ready("hard_delete_draft")
        rows = await self.db.select(
            "SELECT doc_id FROM automerge_doc_map WHERE draft_uuid = ?", [uuid]
        )
        if not rows and _drafts(root.doc).get(uuid) is None:
            raise DraftNotFoundError(uuid)

        def remove_entry(doc: Doc) -> None:
            meta = _meta(doc)
            if meta.get("pinnedUuid") == uuid:
                _delete_key(meta, "pinnedUuid")
            _delete_key(_drafts(doc), uuid)

        await root.change(remove_entry)
        await self.db.execute(
            "DELETE FROM automerge_doc_map WHERE draft_uuid = ?", [uuid]
        )

        self._draft_handles.pop(uuid, None)
        if rows:
            self.store.evict(rows[0]["doc_id"])
        logger.info(f"Hard-deleted draft {uuid}")

    async def orphaned_document_ids(self) -> List[str]:
        """Documents with chunks that neither the root nor any draft references."""
        root = self._require_ready("orphaned_document_ids")
        rows = await self.db.select(
            """SELECT DISTINCT doc_id FROM automerge_chunk
               WHERE doc_id NOT IN (SELECT doc_id FROM automerge_doc_map)
                 AND doc_id != ? AND doc_id != ?
               ORDER BY doc_id""",
            [root.doc_id, ADAPTER_META_DOC_ID],
        )
        return [row["doc_id"] for row in rows]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_uuids(self, filter: FilterArg = None) -> List[str]:
        """UUIDs of drafts matching the filter, unsorted.

        Ordering is left to the caller (typically by ``modified_at``).
        """
        root = self.get_root_doc()
        if filter is None:
            return list(root.drafts)
        if not isinstance(filter, DraftFilter):
            filter = DraftFilter.model_validate(dict(filter))
        return [uuid for uuid, meta in root.drafts.items() if filter.matches(meta)]

    def get_metadata(self, uuid: str) -> Optional[DraftMetadata]:
        root = self._require_ready("get_metadata")
        entry = _drafts(root.doc).get(uuid)
        if entry is None:
            return None
        return DraftMetadata.model_validate(entry.to_py())

    async def get_sync_config(self) -> SyncConfig:
        """Sync settings from the sync_state row (defaults when absent)."""
        rows = await self.db.select("SELECT * FROM sync_state WHERE id = 1")
        if not rows:
            return SyncConfig()
        return SyncConfig.from_row(rows[0])

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_root_change(self, callback: Callable[[RootDocument], None]) -> Callable[[], None]:
        """Call ``callback`` with the new root state after every root change.

        Returns:
            A function that cancels the subscription.
        """
        root = self._require_ready("on_root_change")
        return root.subscribe(lambda handle: callback(read_root(handle.doc)))

    async def on_draft_change(
        self,
        uuid: str,
        callback: Callable[[DraftDocument], None],
    ) -> Callable[[], None]:
        """Call ``callback`` with the new draft state after every change.

        Raises:
            DraftNotFoundError: If the UUID is unmapped.
        """
        handle = await self._require_draft(uuid)
        return handle.subscribe(lambda h: callback(read_draft(h.doc)))
