"""Composition root: wires the engine, executor, storage and repository.

There is no process-wide repository instance. Callers open one, keep the
returned context for as long as they need it, and close it when done.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from dashtext_sync.config import DashTextConfig, config
from dashtext_sync.models.db_models import init_db
from dashtext_sync.models.schema import MigrationReport
from dashtext_sync.storage.chunk_storage import SqliteChunkStorageAdapter
from dashtext_sync.storage.executor import DbExecutor, SqlAlchemyExecutor
from dashtext_sync.sync.migration import migrate
from dashtext_sync.sync.repository import DraftRepository

logger = logging.getLogger(__name__)


def build_repository(db: DbExecutor, cfg: Optional[DashTextConfig] = None) -> DraftRepository:
    """Create an uninitialized repository over an executor."""
    cfg = cfg or config
    return DraftRepository(
        db,
        storage=SqliteChunkStorageAdapter(db),
        compaction_threshold=cfg.compaction_threshold,
    )


@dataclass
class RepositoryContext:
    """Everything opened by :func:`open_repository`."""

    engine: Engine
    executor: SqlAlchemyExecutor
    repository: DraftRepository
    migration: MigrationReport

    def close(self) -> None:
        self.executor.dispose()


async def open_repository(
    cfg: Optional[DashTextConfig] = None,
    run_migration: bool = True,
) -> RepositoryContext:
    """Open the database, initialize the repository and import legacy drafts.

    Args:
        cfg: Configuration to use instead of the global one.
        run_migration: Import legacy drafts when the database still needs it.
    """
    cfg = cfg or config
    logger.info(f"Using SQLite database: {cfg.get_db_url()}")
    engine = init_db(cfg)
    executor = SqlAlchemyExecutor(engine)
    repository = build_repository(executor, cfg)

    try:
        await repository.initialize()
        report = MigrationReport()
        if run_migration:
            report = await migrate(repository, executor, cfg.legacy_table)
            if report.performed:
                logger.info(
                    f"Migrated {report.migrated}/{report.total} legacy drafts"
                )
    except Exception:
        executor.dispose()
        raise

    return RepositoryContext(
        engine=engine,
        executor=executor,
        repository=repository,
        migration=report,
    )
