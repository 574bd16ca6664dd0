"""Find backup sets of a database in a store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator

import keyscheme
from config import StorageTarget
from errors import BackupNotFound, MalformedKey
from keyscheme import KeyParts
from stores import BackupObject, Store

log = logging.getLogger(__name__)


@dataclass
class BackupSet:
    """All collection objects of one (database, backup_id)."""

    database: str
    backup_id: str
    objects: dict[str, BackupObject] = field(default_factory=dict)  # collection file -> object

    @property
    def created_at(self) -> datetime | None:
        if not self.objects:
            return None
        return max(obj.created_at for obj in self.objects.values())

    @property
    def size(self) -> int:
        return sum(obj.size for obj in self.objects.values())


def normalize_database(database: str) -> str:
    """Validate a database argument, accepting one trailing '/'."""
    if database.endswith(keyscheme.SEPARATOR):
        database = database[:-1]
    return keyscheme.validate_segment(database)


def _iter_members(store: Store, root: str, prefix: str) -> Iterator[tuple[KeyParts, BackupObject]]:
    for obj in store.list(prefix):
        if obj.key.endswith(keyscheme.SEPARATOR):
            continue  # directory marker
        try:
            parts = keyscheme.split_key(root, obj.key)
        except MalformedKey as exc:
            log.warning("Skipping object: %s", exc)
            continue
        yield parts, obj


def resolve_exact(
    store: Store, target: StorageTarget, database: str, backup_id: str
) -> BackupSet:
    """Collect every object of one named backup.

    Raises BackupNotFound when nothing is stored under its prefix.
    """
    database = normalize_database(database)
    keyscheme.validate_segment(backup_id, "backup id")
    prefix = keyscheme.backup_prefix(target.root, database, backup_id)

    backup_set = BackupSet(database=database, backup_id=backup_id)
    for parts, obj in _iter_members(store, target.root, prefix):
        backup_set.objects[parts.collection_file] = obj

    if not backup_set.objects:
        raise BackupNotFound(f"No backup found under '{prefix}'")
    return backup_set


def resolve_latest(store: Store, target: StorageTarget, database: str) -> BackupSet:
    """Return the backup holding the most recently created object.

    The listing is scanned once, keeping only the best candidate; equal
    timestamps go to the lexicographically smaller backup id.
    """
    database = normalize_database(database)
    prefix = keyscheme.database_prefix(target.root, database)

    best: tuple[datetime, str] | None = None
    for parts, obj in _iter_members(store, target.root, prefix):
        if (
            best is None
            or obj.created_at > best[0]
            or (obj.created_at == best[0] and parts.backup_id < best[1])
        ):
            best = (obj.created_at, parts.backup_id)

    if best is None:
        raise BackupNotFound(f"No backups found under '{prefix}'")

    created_at, backup_id = best
    log.info(
        "Latest backup of '%s': %s (%s)",
        database, backup_id, created_at.strftime("%Y-%m-%d %H:%M:%S"),
    )
    return resolve_exact(store, target, database, backup_id)


def list_backup_sets(store: Store, target: StorageTarget, database: str) -> list[BackupSet]:
    """Return every backup set of *database*, oldest first."""
    database = normalize_database(database)
    prefix = keyscheme.database_prefix(target.root, database)

    sets: dict[str, BackupSet] = {}
    for parts, obj in _iter_members(store, target.root, prefix):
        backup_set = sets.setdefault(
            parts.backup_id, BackupSet(database=database, backup_id=parts.backup_id)
        )
        backup_set.objects[parts.collection_file] = obj

    return sorted(sets.values(), key=lambda s: (s.created_at, s.backup_id))
