"""Platform-agnostic database executor.

The draft repository and the chunk storage adapter only ever talk to the
database through :class:`DbExecutor`: a parameterized query returning rows
and a parameterized statement returning nothing. Statements use ``?``
placeholders and must round-trip ``bytes`` parameters.
"""
import logging
import threading
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

import anyio.to_thread
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dashtext_sync.exceptions import StorageIOError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@runtime_checkable
class DbExecutor(Protocol):
    """Run SQL against whatever embedded engine the host provides."""

    async def select(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Execute a query and return rows as dicts keyed by column name."""
        ...

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        """Execute a statement (INSERT, UPDATE, DELETE) with no row result."""
        ...


class SqlAlchemyExecutor:
    """DbExecutor over a SQLAlchemy engine.

    Each call runs in a worker thread inside its own transaction. Calls are
    serialized with a lock so a statement is never interleaved with another
    one on the shared engine.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._lock = threading.Lock()

    def _select_sync(self, sql: str, params: Sequence[Any]) -> List[Row]:
        with self._lock:
            try:
                with self.engine.connect() as conn:
                    result = conn.exec_driver_sql(sql, tuple(params))
                    return [dict(row._mapping) for row in result]
            except SQLAlchemyError as e:
                logger.error(f"select failed: {e}")
                raise StorageIOError(
                    "Database query failed",
                    operation="select",
                    sql=sql,
                    original_error=e,
                ) from e

    def _execute_sync(self, sql: str, params: Sequence[Any]) -> None:
        with self._lock:
            try:
                with self.engine.begin() as conn:
                    conn.exec_driver_sql(sql, tuple(params))
            except SQLAlchemyError as e:
                logger.error(f"execute failed: {e}")
                raise StorageIOError(
                    "Database statement failed",
                    operation="execute",
                    sql=sql,
                    original_error=e,
                ) from e

    async def select(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        return await anyio.to_thread.run_sync(self._select_sync, sql, params)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await anyio.to_thread.run_sync(self._execute_sync, sql, params)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()
