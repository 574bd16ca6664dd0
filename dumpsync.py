#!/usr/bin/env python3
"""dumpsync: back up database dump directories to object storage and restore them.

Usage:
    dumpsync store <dump_dir> --database <name> [--backup-id <id>] [--prune]
    dumpsync restore --database <name> --latest
    dumpsync restore --database <name>/<backup_id>
    dumpsync restore --match <regex> --latest [--parallel N]
    dumpsync list --database <name>
    dumpsync prune --database <name> [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import sys

import config
import keyscheme
from backup import run_backup
from errors import DumpsyncError, UsageError
from locator import normalize_database
from matcher import compile_pattern, restore_matching
from restore import DEFAULT_DESTINATION, list_backups, run_restore
from retention import apply_retention
from stores import Store, create_store

log = logging.getLogger("dumpsync")


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _open_store(raw_config: dict) -> Store:
    return create_store(
        config.get_store_config(raw_config),
        config.get_restrictions(raw_config),
    )


def check_restore_args(args: argparse.Namespace) -> None:
    """Validate the restore selection flags without touching config or network.

    Splits '--database NAME/ID' into args.database and args.backup_id.
    """
    if args.match and args.database:
        raise UsageError("--match cannot be combined with an explicit --database")
    if not args.match and not args.database:
        raise UsageError("restore requires --database or --match")

    if args.match:
        if not args.latest:
            raise UsageError("--match requires --latest")
        if args.backup_id:
            raise UsageError("--backup-id cannot be used with --match")
        compile_pattern(args.match)
        return

    database = args.database.rstrip("/")
    if "/" in database:
        if args.backup_id:
            raise UsageError("Give the backup id either in --database or with --backup-id, not both")
        database, args.backup_id = database.split("/", 1)
        if "/" in args.backup_id:
            raise UsageError(f"Invalid --database '{args.database}': expected <name>/<backup_id>")
    args.database = database

    if args.latest and args.backup_id:
        raise UsageError("--latest cannot be combined with a specific backup id")
    if not args.latest and not args.backup_id:
        raise UsageError("restore --database needs --latest or a backup id (<name>/<backup_id>)")

    keyscheme.validate_segment(args.database)
    if args.backup_id:
        keyscheme.validate_segment(args.backup_id, "backup id")


def check_database_args(args: argparse.Namespace) -> None:
    """Validate --database and --backup-id for store, list and prune."""
    args.database = normalize_database(args.database)
    if getattr(args, "backup_id", None):
        keyscheme.validate_segment(args.backup_id, "backup id")


def cmd_store(args: argparse.Namespace, raw_config: dict) -> None:
    target = config.get_target(raw_config)
    with _open_store(raw_config) as store:
        run_backup(store, target, args.dump_dir, args.database, backup_id=args.backup_id)
        if args.prune:
            apply_retention(store, target, args.database, config.get_retention(raw_config))


def cmd_restore(args: argparse.Namespace, raw_config: dict) -> None:
    target = config.get_target(raw_config)
    with _open_store(raw_config) as store:
        if args.match:
            results = restore_matching(
                store, target, args.match, args.latest,
                dest=args.dest, workers=args.parallel,
            )
            failed = [r.database for r in results if not r.ok]
            if failed:
                log.error("Failed databases: %s", ", ".join(failed))
                sys.exit(1)
            return

        run_restore(
            store, target, args.database,
            backup_id=args.backup_id, latest=args.latest, dest=args.dest,
        )


def cmd_list(args: argparse.Namespace, raw_config: dict) -> None:
    target = config.get_target(raw_config)
    with _open_store(raw_config) as store:
        list_backups(store, target, args.database)


def cmd_prune(args: argparse.Namespace, raw_config: dict) -> None:
    target = config.get_target(raw_config)
    with _open_store(raw_config) as store:
        apply_retention(
            store, target, args.database, config.get_retention(raw_config),
            dry_run=args.dry_run,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dumpsync",
        description="Back up database dumps to object storage and restore them.",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help=f"Config file path (default: $DUMPSYNC_CONFIG or {config.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # store
    p_store = subparsers.add_parser("store", help="Upload a dump directory as a new backup")
    p_store.add_argument("dump_dir", help="Directory written by the dump tool for one database")
    p_store.add_argument("-d", "--database", required=True, help="Database name")
    p_store.add_argument("--backup-id", default=None,
        help="Backup id (default: current UTC time, YYYYMMDD-HHMMSS)")
    p_store.add_argument("--prune", action="store_true", help="Apply retention after upload")

    # restore
    p_restore = subparsers.add_parser("restore", help="Restore backups to local disk")
    p_restore.add_argument("-d", "--database", default=None,
        help="Database to restore, optionally as <name>/<backup_id>")
    p_restore.add_argument("-l", "--latest", action="store_true", help="Restore the latest backup")
    p_restore.add_argument("-m", "--match", default=None,
        help="Regular expression selecting the databases to restore (requires --latest)")
    p_restore.add_argument("--backup-id", default=None, help="Specific backup id to restore")
    p_restore.add_argument("--dest", default=DEFAULT_DESTINATION,
        help=f"Destination directory (default: {DEFAULT_DESTINATION})")
    p_restore.add_argument("--parallel", type=int, default=1, metavar="N",
        help="Restore up to N matched databases in parallel (default: 1, sequential)")

    # list
    p_list = subparsers.add_parser("list", help="List available backups")
    p_list.add_argument("-d", "--database", required=True, help="Database name")

    # prune
    p_prune = subparsers.add_parser("prune", help="Apply retention policy")
    p_prune.add_argument("-d", "--database", required=True, help="Database name")
    p_prune.add_argument("--dry-run", action="store_true",
        help="Show what would be deleted without actually deleting")

    return parser


def main(argv: list[str] | None = None) -> None:
    setup_logging()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "restore":
            check_restore_args(args)
        else:
            check_database_args(args)
    except UsageError as e:
        parser.error(str(e))

    try:
        raw_config = config.load(args.config)

        commands = {
            "store": cmd_store,
            "restore": cmd_restore,
            "list": cmd_list,
            "prune": cmd_prune,
        }
        commands[args.command](args, raw_config)
    except DumpsyncError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
