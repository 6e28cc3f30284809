"""Configuration module for DashText sync storage."""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from dashtext_sync import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default log directory
_USER_ENV = Path.home() / ".dashtext" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DashTextConfig(BaseModel):
    """Configuration for the DashText draft repository."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("DASHTEXT_BASE_DIR", "."))
    )
    # SQLite database holding chunks, doc map, sync state and the legacy table
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("DASHTEXT_DATABASE_PATH", "data/db/dashtext.db")
        )
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("DASHTEXT_LOG_DIR"))
            if os.getenv("DASHTEXT_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("DASHTEXT_LOG_LEVEL", "INFO").upper()
    )
    # Number of incremental chunks a document accumulates before they are
    # folded into a single snapshot chunk
    compaction_threshold: int = Field(
        default_factory=lambda: int(
            os.getenv("DASHTEXT_COMPACTION_THRESHOLD", "64")
        )
    )
    # Name of the pre-CRDT flat draft table read by the migration
    legacy_table: str = Field(
        default_factory=lambda: os.getenv("DASHTEXT_LEGACY_TABLE", "draft")
    )
    version: str = Field(default=__version__)

    model_config = {"validate_assignment": True}

    @field_validator("compaction_threshold")
    @classmethod
    def validate_compaction_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("compaction_threshold must be >= 1")
        return v

    @field_validator("legacy_table")
    @classmethod
    def validate_legacy_table(cls, v: str) -> str:
        """The table name is interpolated into SQL, so it must be a bare identifier."""
        if not _IDENTIFIER_PATTERN.match(v):
            raise ValueError(f"legacy_table '{v}' is not a valid SQL identifier")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = DashTextConfig()
