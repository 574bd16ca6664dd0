"""Download backup sets from a store into the local dump layout."""

from __future__ import annotations

import logging
import os
import tempfile

from config import StorageTarget
from errors import MalformedKey, TransferError, UsageError
from locator import BackupSet, list_backup_sets, resolve_exact, resolve_latest
from stores import Store
from utils import copy_stream, format_size

log = logging.getLogger(__name__)

DEFAULT_DESTINATION = "dump"

_DIR_MODE = 0o700
_FILE_MODE = 0o600


def _write_object(store: Store, key: str, local_path: str, dest: str) -> None:
    """Stream one object to *local_path* through a temporary sibling file."""
    directory = os.path.dirname(local_path)
    # makedirs only applies the mode to the leaf, so dest is created on its own.
    for path in (dest, directory):
        if path:
            os.makedirs(path, mode=_DIR_MODE, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".restore-")
    try:
        with os.fdopen(fd, "wb") as out:
            download = store.open_download(key)
            try:
                copy_stream(download, out)
            finally:
                download.close()
        os.chmod(tmp_path, _FILE_MODE)
        os.replace(tmp_path, local_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def restore_backup(store: Store, backup_set: BackupSet, dest: str = DEFAULT_DESTINATION) -> list[str]:
    """Write every object of *backup_set* to dest/<backup_id>/<collection_file>.

    Existing files are overwritten. The first failing object aborts the
    rest of the set.

    Raises:
        TransferError: naming the key that could not be fetched or written.
    """
    written: list[str] = []
    for collection_file, obj in sorted(backup_set.objects.items()):
        if {backup_set.backup_id, collection_file} & {".", ".."}:
            raise MalformedKey(f"Refusing to restore '{obj.key}' outside '{dest}'")
        local_path = os.path.join(dest, backup_set.backup_id, collection_file)
        log.info("Restoring %s -> %s", obj.key, local_path)
        try:
            _write_object(store, obj.key, local_path, dest)
        except TransferError as exc:
            if exc.key is None:
                exc.key = obj.key
            raise
        except OSError as exc:
            raise TransferError(
                f"Could not write '{obj.key}' to '{local_path}': {exc}", key=obj.key
            ) from exc
        written.append(local_path)

    log.info(
        "Restored backup %s of '%s': %d file(s), %s",
        backup_set.backup_id, backup_set.database, len(written), format_size(backup_set.size),
    )
    return written


def run_restore(
    store: Store,
    target: StorageTarget,
    database: str,
    backup_id: str | None = None,
    latest: bool = False,
    dest: str = DEFAULT_DESTINATION,
) -> BackupSet:
    """Restore one database, either its latest backup or a named one.

    Raises:
        UsageError: when neither latest nor a backup id is given, or both are.
        BackupNotFound: when the selected backup does not exist.
    """
    if latest and backup_id:
        raise UsageError("A backup id cannot be combined with latest selection")
    if not latest and not backup_id:
        raise UsageError(
            f"Restoring '{database}' needs a backup id, or latest selection"
        )

    if latest:
        log.info("Restoring the latest backup of %s...", database)
        backup_set = resolve_latest(store, target, database)
    else:
        log.info("Restoring backup %s of %s...", backup_id, database)
        backup_set = resolve_exact(store, target, database, backup_id)

    restore_backup(store, backup_set, dest)
    return backup_set


def list_backups(store: Store, target: StorageTarget, database: str) -> list[BackupSet]:
    """List available backups of a database. Returns the list for programmatic use."""
    backup_sets = list_backup_sets(store, target, database)

    if not backup_sets:
        print(f"No backups found for '{database}' in bucket '{target.bucket}'")
        return []

    print(f"{'Backup ID':<20} {'Created':<20} {'Files':>6} {'Size':>10}")
    print("-" * 60)
    for s in backup_sets:
        ts_str = s.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{s.backup_id:<20} {ts_str:<20} {len(s.objects):>6} {format_size(s.size):>10}")

    print(f"\nTotal: {len(backup_sets)} backup(s)")
    return backup_sets
