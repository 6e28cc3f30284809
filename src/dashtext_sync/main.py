#!/usr/bin/env python
"""Maintenance command line for the DashText draft repository."""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import anyio
import pydantic

from dashtext_sync import __version__
from dashtext_sync.config import config
from dashtext_sync.exceptions import ConfigurationError, DashTextError
from dashtext_sync.models.schema import DraftFilter
from dashtext_sync.observability import configure_logging
from dashtext_sync.sync.manager import open_repository
from dashtext_sync.sync.migration import needs_migration

logger = logging.getLogger(__name__)

_YES_NO = {"yes": True, "no": False}


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="dashtext-sync", description="DashText draft repository tools"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("DASHTEXT_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("DASHTEXT_LOG_LEVEL", "WARNING")
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show repository and migration status")
    subparsers.add_parser("migrate", help="Import drafts from the legacy table")

    list_parser = subparsers.add_parser("list", help="List drafts, newest first")
    list_parser.add_argument("--archived", choices=sorted(_YES_NO))
    list_parser.add_argument("--deleted", choices=sorted(_YES_NO))

    show_parser = subparsers.add_parser("show", help="Print a draft's content")
    show_parser.add_argument("uuid")

    return parser.parse_args(argv)


def update_config(args) -> None:
    """Update the global config with command line arguments."""
    try:
        if args.database_path:
            config.database_path = Path(args.database_path)
        config.log_level = args.log_level
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid command line option: {e}") from e


async def cmd_status() -> int:
    ctx = await open_repository(config, run_migration=False)
    try:
        repo = ctx.repository
        root = repo.get_root_doc()
        pending = await needs_migration(ctx.executor, config.legacy_table)
        sync_config = await repo.get_sync_config()
        orphans = await repo.orphaned_document_ids()

        print(f"database:          {config.get_absolute_path(config.database_path)}")
        print(f"root document:     {repo.root_doc_id}")
        print(f"drafts:            {len(root.drafts)}")
        print(f"  archived:        {len(repo.list_uuids(DraftFilter(archived=True)))}")
        print(f"  deleted:         {len(repo.list_uuids(DraftFilter(deleted=True)))}")
        print(f"pinned:            {root.pinned_uuid or '-'}")
        print(f"orphaned docs:     {len(orphans)}")
        print(f"migration pending: {'yes' if pending else 'no'}")
        print(f"sync enabled:      {'yes' if sync_config.sync_enabled else 'no'}")
    finally:
        ctx.close()
    return 0


async def cmd_migrate() -> int:
    ctx = await open_repository(config, run_migration=True)
    try:
        report = ctx.migration
        if not report.performed:
            print("Nothing to migrate")
            return 0
        print(f"Migrated {report.migrated}/{report.total} legacy drafts")
        if report.pinned_uuid:
            print(f"Pinned draft: {report.pinned_uuid}")
        if report.demoted_pins:
            print(f"Unpinned {report.demoted_pins} extra pinned drafts")
    finally:
        ctx.close()
    return 0


async def cmd_list(archived: Optional[str], deleted: Optional[str]) -> int:
    ctx = await open_repository(config, run_migration=False)
    try:
        repo = ctx.repository
        draft_filter = DraftFilter(
            archived=_YES_NO.get(archived) if archived else None,
            deleted=_YES_NO.get(deleted) if deleted else None,
        )
        entries = [(uuid, repo.get_metadata(uuid)) for uuid in repo.list_uuids(draft_filter)]
        entries.sort(key=lambda entry: entry[1].modified_at, reverse=True)
        for uuid, meta in entries:
            flags = "".join([
                "P" if meta.pinned else "-",
                "A" if meta.archived else "-",
                "D" if meta.is_deleted else "-",
            ])
            print(f"{uuid}  {meta.modified_at}  {flags}")
    finally:
        ctx.close()
    return 0


async def cmd_show(uuid: str) -> int:
    ctx = await open_repository(config, run_migration=False)
    try:
        draft = await ctx.repository.get_draft_doc(uuid)
        if draft is None:
            print(f"Draft '{uuid}' not found", file=sys.stderr)
            return 1
        print(draft.content)
    finally:
        ctx.close()
    return 0


async def run(args) -> int:
    if args.command == "status":
        return await cmd_status()
    if args.command == "migrate":
        return await cmd_migrate()
    if args.command == "list":
        return await cmd_list(args.archived, args.deleted)
    return await cmd_show(args.uuid)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the dashtext-sync command line."""
    args = parse_args(argv)
    try:
        update_config(args)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 2

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        return anyio.run(run, args)
    except DashTextError as e:
        logger.error(f"{args.command} failed: {e}")
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
