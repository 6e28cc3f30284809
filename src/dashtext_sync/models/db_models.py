"""SQLAlchemy database models for DashText sync storage."""
from typing import Optional

from sqlalchemy import (Boolean, Column, Integer, LargeBinary, String, Text,
                        create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import QueuePool

from dashtext_sync.config import DashTextConfig, config

# Create base class for SQLAlchemy models
Base = declarative_base()

# Sentinel doc_id for adapter metadata rows; never a generated document id
ADAPTER_META_DOC_ID = "__adapter_meta__"
ADAPTER_META_CHUNK_TYPE = "meta"


class DBChunk(Base):
    """A binary chunk of CRDT document history."""
    __tablename__ = "automerge_chunk"
    doc_id = Column(String(255), primary_key=True)
    chunk_type = Column(String(32), primary_key=True)
    chunk_id = Column(String(255), primary_key=True)
    bytes = Column(LargeBinary, nullable=False)
    created_at = Column(String(32), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Chunk(doc_id='{self.doc_id}', type='{self.chunk_type}', "
            f"id='{self.chunk_id}')>"
        )


class DBDocMap(Base):
    """Maps a draft UUID to the id of its CRDT document."""
    __tablename__ = "automerge_doc_map"
    draft_uuid = Column(String(64), primary_key=True)
    doc_id = Column(String(255), unique=True, nullable=False)
    created_at = Column(String(32), nullable=False)

    def __repr__(self) -> str:
        return f"<DocMap(draft_uuid='{self.draft_uuid}', doc_id='{self.doc_id}')>"


class DBSyncState(Base):
    """Singleton row (id=1) holding the root document id.

    The remaining columns are reserved for network sync.
    """
    __tablename__ = "sync_state"
    id = Column(Integer, primary_key=True)
    root_doc_id = Column(String(255), nullable=True)
    sync_enabled = Column(Integer, default=0, nullable=False)
    space_id = Column(String(255), nullable=True)
    device_id = Column(String(255), nullable=True)
    auth_token = Column(Text, nullable=True)
    server_url = Column(String(1024), nullable=True)
    last_connected_at = Column(String(32), nullable=True)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    def __repr__(self) -> str:
        return f"<SyncState(id={self.id}, root_doc_id='{self.root_doc_id}')>"


class DBLegacyDraft(Base):
    """Pre-CRDT flat draft table. Only ever read, by the migration."""
    __tablename__ = "draft"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(64), unique=True, nullable=False, index=True)
    content = Column(Text, nullable=True, default="")
    created_at = Column(String(32), nullable=False)
    modified_at = Column(String(32), nullable=False, index=True)
    deleted_at = Column(String(32), nullable=True, index=True)
    archived = Column(Boolean, default=False, nullable=False, index=True)
    pinned = Column(Boolean, default=False, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<LegacyDraft(id={self.id}, uuid='{self.uuid}')>"


def init_db(cfg: Optional[DashTextConfig] = None) -> Engine:
    """Create the engine and schema with hardened SQLite configuration.

    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - busy timeout so a second writer waits instead of failing
    - QueuePool with pre-ping for connection reuse
    """
    cfg = cfg or config

    # Statements run in worker threads, so connections must not be
    # pinned to the thread that opened them
    engine = create_engine(
        cfg.get_db_url(),
        poolclass=QueuePool,
        pool_size=2,
        max_overflow=4,
        pool_timeout=30,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA cache_size=-16000")  # 16MB cache
        cursor.close()

    # The legacy draft table belongs to the old schema and is never created here
    Base.metadata.create_all(
        engine,
        tables=[DBChunk.__table__, DBDocMap.__table__, DBSyncState.__table__],
    )
    return engine
