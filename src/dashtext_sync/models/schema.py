"""Data models for DashText sync storage."""

import datetime
import uuid as uuid_module
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

# Every document (root and drafts) carries this version
SCHEMA_VERSION = 1

# A storage key is a short ordered tuple: (doc_id[, chunk_type[, chunk_id]])
# or a one-element adapter metadata key.
StorageKey = Tuple[str, ...]


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def to_iso(dt_value: datetime.datetime) -> str:
    """Format a datetime as ISO 8601 UTC with millisecond precision.

    Naive datetimes are treated as UTC. The output uses a ``Z`` suffix so
    timestamps sort lexicographically in time order.
    """
    if dt_value.tzinfo is None:
        dt_value = dt_value.replace(tzinfo=timezone.utc)
    dt_value = dt_value.astimezone(timezone.utc)
    return dt_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return to_iso(utc_now())


def generate_document_id() -> str:
    """Generate an opaque CRDT document id."""
    return uuid_module.uuid4().hex


def generate_draft_uuid() -> str:
    """Generate a draft UUID (canonical hyphenated form)."""
    return str(uuid_module.uuid4())


class ChunkType(str, Enum):
    """Kinds of document chunk rows."""

    SNAPSHOT = "snapshot"  # Full document state
    INCREMENTAL = "incremental"  # One committed change


@dataclass(frozen=True)
class Chunk:
    """A stored chunk and the key it lives under."""

    key: StorageKey
    data: bytes


class DraftMetadata(BaseModel):
    """Per-draft entry in the root index document.

    Field aliases are the camelCase keys stored in the CRDT map.
    """

    doc_id: str = Field(..., alias="docId", description="CRDT document id of the draft")
    created_at: str = Field(..., alias="createdAt")
    modified_at: str = Field(
        ..., alias="modifiedAt", description="Authoritative value for list ordering"
    )
    archived: bool = Field(default=False)
    pinned: bool = Field(default=False)
    deleted_at: Optional[str] = Field(
        default=None, alias="deletedAt", description="Set when soft-deleted"
    )

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_crdt(self) -> Dict[str, Any]:
        """Plain dict for storage in the CRDT map; absent keys mean None."""
        return self.model_dump(by_alias=True, exclude_none=True)


class DraftDocument(BaseModel):
    """Materialized view of a draft's CRDT document."""

    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    uuid: str
    content: str = Field(default="")
    created_at: str = Field(..., alias="createdAt")
    modified_at: str = Field(
        ..., alias="modifiedAt", description="Best effort; may lag the root entry"
    )

    model_config = {"populate_by_name": True, "frozen": True}


class RootDocument(BaseModel):
    """Materialized view of the root index document."""

    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    drafts: Dict[str, DraftMetadata] = Field(default_factory=dict)
    pinned_uuid: Optional[str] = Field(default=None, alias="pinnedUuid")

    model_config = {"populate_by_name": True}

    def pinned_entries(self) -> Tuple[str, ...]:
        """UUIDs whose entries carry ``pinned=True``."""
        return tuple(u for u, meta in self.drafts.items() if meta.pinned)


class MetadataUpdate(BaseModel):
    """Partial update of a draft's root entry.

    Only fields that were explicitly set are applied, so
    ``MetadataUpdate(deleted_at=None)`` restores a soft-deleted draft while
    ``MetadataUpdate(archived=True)`` leaves ``deleted_at`` alone.
    """

    archived: Optional[bool] = None
    pinned: Optional[bool] = None
    deleted_at: Optional[str] = Field(default=None, alias="deletedAt")

    model_config = {"populate_by_name": True, "extra": "forbid"}

    @field_validator("archived", "pinned")
    @classmethod
    def reject_explicit_none(cls, v: Optional[bool]) -> Optional[bool]:
        # None is only meaningful for deleted_at; flags are true or false
        if v is None:
            raise ValueError("archived/pinned must be true or false when given")
        return v

    def provided(self) -> set:
        """Names of the fields the caller explicitly set."""
        return set(self.model_fields_set)


class DraftFilter(BaseModel):
    """Optional predicates for listing drafts; None means 'either'."""

    archived: Optional[bool] = None
    deleted: Optional[bool] = None

    def matches(self, meta: DraftMetadata) -> bool:
        if self.deleted is not None and meta.is_deleted != self.deleted:
            return False
        if self.archived is not None and meta.archived != self.archived:
            return False
        return True


class CreateDraftResult(BaseModel):
    """Identity of a newly created draft."""

    uuid: str
    doc_id: str

    model_config = {"frozen": True}


class LegacyDraftRow(BaseModel):
    """A row of the pre-CRDT draft table.

    SQLite stores the flags as 0/1 integers; pydantic coerces them to bool.
    """

    uuid: str
    content: str = Field(default="")
    created_at: str
    modified_at: str
    deleted_at: Optional[str] = None
    archived: bool = False
    pinned: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def none_content_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class SyncConfig(BaseModel):
    """Locally stored sync configuration (the sync_state singleton row)."""

    sync_enabled: bool = False
    root_doc_id: Optional[str] = None
    space_id: Optional[str] = None
    device_id: Optional[str] = None
    auth_token: Optional[str] = Field(default=None, repr=False)
    server_url: Optional[str] = None
    last_connected_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SyncConfig":
        return cls(**{k: row.get(k) for k in cls.model_fields if k in row})


class MigrationReport(BaseModel):
    """Outcome of a legacy migration run."""

    performed: bool = False
    total: int = 0
    migrated: int = 0
    pinned_uuid: Optional[str] = Field(
        default=None, description="New UUID of the draft that kept the pin"
    )
    demoted_pins: int = 0
