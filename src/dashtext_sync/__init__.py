"""
DashText Sync - CRDT-backed draft storage for the DashText note-taking app.
This package keeps every draft in its own CRDT document, tracks all drafts in
a single root index document, and persists CRDT history as binary chunks in
an embedded SQLite database.

Legacy (pre-CRDT) draft tables are migrated into the document model once.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dashtext-sync")
except PackageNotFoundError:
    __version__ = "0.3.0"
