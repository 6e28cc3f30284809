"""One-time import of the pre-CRDT flat draft table.

Legacy rows are read, never written; the old table stays behind as a
backup. Each legacy row becomes a fresh draft with a new UUID whose
content, timestamps and flags are carried over.
"""
from typing import List, Optional, Tuple

from dashtext_sync.config import config
from dashtext_sync.exceptions import MigrationError
from dashtext_sync.models.schema import LegacyDraftRow, MetadataUpdate, MigrationReport
from dashtext_sync.observability import get_logger, traced
from dashtext_sync.storage.executor import DbExecutor
from dashtext_sync.sync.repository import DraftRepository

logger = get_logger("migration")


async def _legacy_table_exists(db: DbExecutor, legacy_table: str) -> bool:
    rows = await db.select(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        [legacy_table],
    )
    return bool(rows)


async def needs_migration(db: DbExecutor, legacy_table: Optional[str] = None) -> bool:
    """True iff no draft is mapped yet and the legacy table has rows.

    A database that never had the legacy table does not need migration.
    """
    legacy_table = legacy_table or config.legacy_table
    if not await _legacy_table_exists(db, legacy_table):
        return False

    mapped = await db.select("SELECT COUNT(*) AS count FROM automerge_doc_map")
    if mapped[0]["count"] > 0:
        return False

    # legacy_table is identifier-validated by the config model
    legacy = await db.select(f"SELECT COUNT(*) AS count FROM {legacy_table}")
    return legacy[0]["count"] > 0


async def load_legacy_rows(db: DbExecutor, legacy_table: Optional[str] = None) -> List[LegacyDraftRow]:
    """Legacy drafts ordered by creation time."""
    legacy_table = legacy_table or config.legacy_table
    rows = await db.select(
        f"""SELECT uuid, content, created_at, modified_at, deleted_at, archived, pinned
            FROM {legacy_table}
            ORDER BY created_at ASC"""
    )
    return [LegacyDraftRow.model_validate(row) for row in rows]


def resolve_pin(rows: List[LegacyDraftRow]) -> Optional[str]:
    """Legacy UUID that keeps the pin: the most recently modified pinned row."""
    pinned = [row for row in rows if row.pinned]
    if not pinned:
        return None
    if len(pinned) > 1:
        logger.warning(
            "Multiple pinned legacy drafts; keeping the most recently modified",
            pinned_count=len(pinned),
        )
    return max(pinned, key=lambda row: row.modified_at).uuid


@traced("migrate")
async def migrate(
    repository: DraftRepository,
    db: DbExecutor,
    legacy_table: Optional[str] = None,
) -> MigrationReport:
    """Import every legacy draft into the repository.

    Does nothing (and reports ``performed=False``) unless
    :func:`needs_migration` says so. Rows are migrated one at a time in
    creation order; the first failure stops the run.

    Raises:
        MigrationError: A row could not be migrated. Drafts created before
            the failure remain, so the run is not retried automatically.
    """
    if not await needs_migration(db, legacy_table):
        logger.debug("No legacy drafts to migrate")
        return MigrationReport()

    rows = await load_legacy_rows(db, legacy_table)
    total = len(rows)
    pin_winner = resolve_pin(rows)
    demoted = sum(1 for row in rows if row.pinned) - (1 if pin_winner else 0)
    logger.set_context(total=total)
    try:
        migrated, new_pinned_uuid = await _migrate_rows(repository, rows, pin_winner)
    finally:
        logger.clear_context()

    return MigrationReport(
        performed=True,
        total=total,
        migrated=migrated,
        pinned_uuid=new_pinned_uuid,
        demoted_pins=demoted,
    )


async def _migrate_rows(
    repository: DraftRepository,
    rows: List[LegacyDraftRow],
    pin_winner: Optional[str],
) -> Tuple[int, Optional[str]]:
    logger.info("Starting legacy draft migration")
    migrated = 0
    new_pinned_uuid = None
    for row in rows:
        try:
            result = await repository.create_draft(created_at=row.created_at)
            await repository.set_content(
                result.uuid, row.content, modified_at=row.modified_at
            )
            # Applied last so modifiedAt ends up at the legacy value
            await repository.update_metadata(
                result.uuid,
                MetadataUpdate(
                    archived=row.archived,
                    pinned=row.uuid == pin_winner,
                    deleted_at=row.deleted_at,
                ),
                modified_at=row.modified_at,
            )
        except Exception as e:
            logger.error(
                "Legacy draft migration failed",
                exc_info=True,
                legacy_uuid=row.uuid,
                migrated=migrated,
            )
            raise MigrationError(
                f"Failed to migrate legacy draft '{row.uuid}'",
                legacy_uuid=row.uuid,
                total_count=len(rows),
                migrated_count=migrated,
                original_error=e,
            ) from e

        if row.uuid == pin_winner:
            new_pinned_uuid = result.uuid
        migrated += 1
        logger.debug("Migrated legacy draft", legacy_uuid=row.uuid, uuid=result.uuid)

    logger.info("Legacy draft migration complete", migrated=migrated)
    return migrated, new_pinned_uuid
