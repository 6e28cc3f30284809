"""SQLite-backed chunk storage adapter for CRDT documents.

Storage key shapes:
- ``(name,)``: adapter metadata, stored under a sentinel doc_id
- ``(doc_id, chunk_type, chunk_id)``: one chunk of a document's history
- ``(doc_id,)`` / ``(doc_id, chunk_type)``: prefixes for range operations

The relational driver behind the executor differs per platform, so BLOB
payloads are normalized to ``bytes`` on the way out.
"""
import base64
import binascii
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, List, Optional

from dashtext_sync.exceptions import InvalidKeyError, UnexpectedFormatError
from dashtext_sync.models.db_models import (ADAPTER_META_CHUNK_TYPE,
                                            ADAPTER_META_DOC_ID)
from dashtext_sync.models.schema import Chunk, StorageKey, iso_now
from dashtext_sync.observability import traced
from dashtext_sync.storage.base import StorageAdapterInterface
from dashtext_sync.storage.executor import DbExecutor, Row

logger = logging.getLogger(__name__)


def _is_byte_values(value: Sequence) -> bool:
    return all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in value)


def to_bytes(data: Any) -> bytes:
    """Normalize a driver BLOB value to ``bytes``.

    Representations are tried in this order:

    1. ``bytes``
    2. ``bytearray`` / ``memoryview``
    3. a list or tuple of byte values
    4. a view object with ``buffer``, ``byte_offset`` and ``byte_length``,
       or a Node-style ``{"type": "Buffer", "data": [...]}`` mapping
    5. anything else supporting the buffer protocol (e.g. ``array.array``)
    6. a string holding a JSON array of byte values
    7. a string holding base64

    Raises:
        UnexpectedFormatError: If no representation matches.
    """
    if isinstance(data, bytes):
        return data

    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)

    if isinstance(data, (list, tuple)):
        if _is_byte_values(data):
            return bytes(data)
        raise UnexpectedFormatError(data, operation="to_bytes")

    if all(hasattr(data, attr) for attr in ("buffer", "byte_offset", "byte_length")):
        buffer = memoryview(to_bytes(data.buffer))
        start = int(data.byte_offset)
        end = start + int(data.byte_length)
        if start < 0 or end > len(buffer):
            raise UnexpectedFormatError(data, operation="to_bytes")
        return bytes(buffer[start:end])

    if isinstance(data, Mapping):
        values = data.get("data")
        if data.get("type") == "Buffer" and isinstance(values, list) and _is_byte_values(values):
            return bytes(values)
        raise UnexpectedFormatError(data, operation="to_bytes")

    if not isinstance(data, str):
        try:
            return bytes(memoryview(data))
        except TypeError:
            raise UnexpectedFormatError(data, operation="to_bytes") from None

    text = data.strip()
    if text.startswith("["):
        try:
            values = json.loads(text)
        except json.JSONDecodeError:
            values = None
        if isinstance(values, list) and _is_byte_values(values):
            return bytes(values)
        raise UnexpectedFormatError(data, operation="to_bytes")

    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise UnexpectedFormatError(data, operation="to_bytes") from None


def _components(key: StorageKey) -> List[str]:
    return [str(part) if part is not None else "" for part in key]


class SqliteChunkStorageAdapter(StorageAdapterInterface):
    """Chunk storage over the ``automerge_chunk`` table."""

    def __init__(self, db: DbExecutor):
        self.db = db

    def _exact_key(self, key: StorageKey) -> Optional[List[str]]:
        """Resolve a key to its (doc_id, chunk_type, chunk_id) row key.

        Returns None for partial or malformed keys.
        """
        parts = _components(key)
        if len(parts) == 1 and parts[0]:
            return [ADAPTER_META_DOC_ID, ADAPTER_META_CHUNK_TYPE, parts[0]]
        if len(parts) == 3 and all(parts) and parts[0] != ADAPTER_META_DOC_ID:
            return parts
        return None

    def _chunk_from_row(self, row: Row) -> Chunk:
        if row["doc_id"] == ADAPTER_META_DOC_ID:
            key: StorageKey = (row["chunk_id"],)
        else:
            key = (row["doc_id"], row["chunk_type"], row["chunk_id"])
        return Chunk(key=key, data=to_bytes(row["bytes"]))

    async def load(self, key: StorageKey) -> Optional[bytes]:
        row_key = self._exact_key(key)
        if row_key is None:
            return None

        rows = await self.db.select(
            """SELECT bytes FROM automerge_chunk
               WHERE doc_id = ? AND chunk_type = ? AND chunk_id = ?""",
            row_key,
        )
        if not rows:
            return None
        return to_bytes(rows[0]["bytes"])

    async def save(self, key: StorageKey, data: bytes) -> None:
        row_key = self._exact_key(key)
        if row_key is None:
            raise InvalidKeyError(key, operation="save")

        await self.db.execute(
            """INSERT OR REPLACE INTO automerge_chunk
               (doc_id, chunk_type, chunk_id, bytes, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            [*row_key, bytes(data), iso_now()],
        )

    async def remove(self, key: StorageKey) -> None:
        row_key = self._exact_key(key)
        if row_key is None:
            return

        await self.db.execute(
            """DELETE FROM automerge_chunk
               WHERE doc_id = ? AND chunk_type = ? AND chunk_id = ?""",
            row_key,
        )

    def _range_clause(self, key_prefix: StorageKey, operation: str):
        """Build the WHERE clause, params and ORDER BY for a key prefix."""
        parts = _components(key_prefix)
        if any(not part for part in parts):
            raise InvalidKeyError(key_prefix, operation=operation)

        if not parts:
            return "", [], " ORDER BY doc_id, chunk_type, chunk_id"
        if parts == [ADAPTER_META_DOC_ID]:
            return (
                " WHERE doc_id = ? AND chunk_type = ?",
                [ADAPTER_META_DOC_ID, ADAPTER_META_CHUNK_TYPE],
                " ORDER BY chunk_id",
            )
        if len(parts) == 1:
            return " WHERE doc_id = ?", parts, " ORDER BY chunk_type, chunk_id"
        if len(parts) == 2:
            return " WHERE doc_id = ? AND chunk_type = ?", parts, " ORDER BY chunk_id"
        return (
            " WHERE doc_id = ? AND chunk_type = ? AND chunk_id = ?",
            parts[:3],
            "",
        )

    @traced("load_range")
    async def load_range(self, key_prefix: StorageKey) -> List[Chunk]:
        where, params, order = self._range_clause(key_prefix, "load_range")
        if not where:
            logger.warning("load_range called with an empty prefix; loading every chunk")

        rows = await self.db.select(
            "SELECT doc_id, chunk_type, chunk_id, bytes FROM automerge_chunk"
            + where + order,
            params,
        )
        return [self._chunk_from_row(row) for row in rows]

    async def remove_range(self, key_prefix: StorageKey) -> None:
        where, params, _ = self._range_clause(key_prefix, "remove_range")
        if not where:
            logger.warning("remove_range called with an empty prefix; deleting every chunk")

        await self.db.execute("DELETE FROM automerge_chunk" + where, params)

