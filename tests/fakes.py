"""Fake database executors for testing.

Both fakes wrap a real executor over a temporary SQLite database rather
than replacing SQL with canned results:

- ``DriverEncodingExecutor`` returns the ``bytes`` column the way another
  platform's driver would (lists of ints, base64 strings, buffer views...)
- ``FailingExecutor`` raises ``StorageIOError`` for statements matching a
  pattern, optionally after a number of successful matches
"""
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Sequence

from dashtext_sync.exceptions import StorageIOError
from dashtext_sync.storage.executor import DbExecutor


class ByteView:
    """Mimics a typed-array view onto a larger buffer."""

    def __init__(self, data: bytes, padding: int = 3):
        self.buffer = b"\xff" * padding + data + b"\xee" * padding
        self.byte_offset = padding
        self.byte_length = len(data)


ENCODINGS: Dict[str, Callable[[bytes], Any]] = {
    "bytes": lambda data: data,
    "bytearray": bytearray,
    "memoryview": memoryview,
    "int_list": list,
    "view": ByteView,
    "node_buffer": lambda data: {"type": "Buffer", "data": list(data)},
    "json_string": lambda data: json.dumps(list(data)),
    "base64": lambda data: base64.b64encode(data).decode("ascii"),
}


class DriverEncodingExecutor:
    """Re-encodes BLOB results as a given driver representation."""

    def __init__(self, inner: DbExecutor, encoding: str):
        self.inner = inner
        self.encode = ENCODINGS[encoding]

    async def select(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        rows = await self.inner.select(sql, params)
        for row in rows:
            if isinstance(row.get("bytes"), bytes):
                row["bytes"] = self.encode(row["bytes"])
        return rows

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await self.inner.execute(sql, params)


class FailingExecutor:
    """Fails statements containing ``pattern`` after ``succeed`` matches."""

    def __init__(self, inner: DbExecutor, pattern: str, succeed: int = 0):
        self.inner = inner
        self.pattern = pattern
        self.remaining = succeed
        self.failures = 0
        self.armed = True

    def _check(self, sql: str) -> None:
        if not self.armed or self.pattern not in sql:
            return
        if self.remaining > 0:
            self.remaining -= 1
            return
        self.failures += 1
        raise StorageIOError("Injected failure", operation="test", sql=sql)

    async def select(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self._check(sql)
        return await self.inner.select(sql, params)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self._check(sql)
        await self.inner.execute(sql, params)


class RecordingExecutor:
    """Records every statement passed through it."""

    def __init__(self, inner: DbExecutor):
        self.inner = inner
        self.statements: List[str] = []

    async def select(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self.statements.append(sql)
        return await self.inner.select(sql, params)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self.statements.append(sql)
        await self.inner.execute(sql, params)

    def count(self, fragment: str, since: Optional[int] = None) -> int:
        return sum(1 for sql in self.statements[since or 0:] if fragment in sql)
