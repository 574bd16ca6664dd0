"""Upload a database dump as one remote object per collection."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Iterable, Iterator, Sequence

import keyscheme
from config import StorageTarget
from errors import AccessError, TransferError, UsageError
from stores import BackupObject, Store
from utils import COPY_BUFFER_SIZE, format_size

log = logging.getLogger(__name__)


@dataclass
class Segment:
    """One collection's payload within a dump, in upload order."""

    name: str  # collection file name, e.g. "users.bson"
    stream: BinaryIO


class _BoundedReader:
    """Reads exactly *length* bytes of a shared source stream."""

    def __init__(self, stream: BinaryIO, length: int, name: str):
        self._stream = stream
        self._remaining = length
        self._name = name

    def read(self, size: int = -1) -> bytes:
        if self._remaining == 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._stream.read(size)
        if not data:
            raise TransferError(
                f"Source ended {self._remaining} byte(s) before the end of '{self._name}'"
            )
        self._remaining -= len(data)
        return data


def iter_framed_segments(
    stream: BinaryIO, names: Sequence[str], lengths: Sequence[int]
) -> Iterator[Segment]:
    """Split one continuous stream into segments of known length.

    The stream must hold exactly sum(lengths) bytes; leftover bytes after the
    last segment are an error.
    """
    if len(names) != len(lengths):
        raise UsageError(
            f"Got {len(names)} collection name(s) but {len(lengths)} length(s)"
        )
    for name, length in zip(names, lengths):
        if length < 0:
            raise UsageError(f"Negative length {length} for '{name}'")
        reader = _BoundedReader(stream, length, name)
        yield Segment(name=name, stream=reader)
        # Skip whatever the consumer left unread so the next segment starts aligned.
        while reader.read(COPY_BUFFER_SIZE):
            pass

    if stream.read(1):
        raise TransferError("Source has data beyond the last declared collection")


def iter_dump_segments(dump_dir: str) -> Iterator[Segment]:
    """Yield one segment per file of a dump tool's per-database output directory.

    Files are taken in name order and each is closed once consumed.
    """
    with os.scandir(dump_dir) as entries:
        names = sorted(
            entry.name for entry in entries
            if entry.is_file() and not entry.name.startswith(".")
        )
    for name in names:
        with open(os.path.join(dump_dir, name), "rb") as f:
            yield Segment(name=name, stream=f)


def upload_segments(
    store: Store,
    target: StorageTarget,
    database: str,
    backup_id: str,
    segments: Iterable[Segment],
    buffer_size: int = COPY_BUFFER_SIZE,
) -> list[BackupObject]:
    """Upload each segment as its own object and commit it before the next.

    Raises TransferError naming the failing collection index; objects
    committed before the failure stay in the store.
    """
    keyscheme.validate_segment(database)
    keyscheme.validate_segment(backup_id, "backup id")

    committed: list[BackupObject] = []
    key = None
    try:
        for segment in segments:
            key = keyscheme.to_key(target.root, database, backup_id, segment.name)
            log.info("Uploading %s to %s...", key, target.bucket)
            committed.append(store.put(key, segment.stream, buffer_size))
            key = None
    except AccessError:
        raise
    except (TransferError, OSError) as exc:
        index = len(committed)
        where = f" ('{key}')" if key else ""
        raise TransferError(
            f"Upload failed at collection #{index}{where}: {exc}",
            key=key,
            index=index,
        ) from exc
    return committed


def new_backup_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def run_backup(
    store: Store,
    target: StorageTarget,
    dump_dir: str,
    database: str,
    backup_id: str | None = None,
    buffer_size: int = COPY_BUFFER_SIZE,
) -> str:
    """Upload the dump tool's output directory for *database*.

    Returns the backup id the collections were stored under.
    """
    keyscheme.validate_segment(database)
    backup_id = backup_id or new_backup_id()
    keyscheme.validate_segment(backup_id, "backup id")

    if not os.path.isdir(dump_dir):
        raise UsageError(f"Dump directory '{dump_dir}' does not exist")
    with os.scandir(dump_dir) as entries:
        has_files = any(
            entry.is_file() and not entry.name.startswith(".") for entry in entries
        )
    if not has_files:
        raise UsageError(
            f"Dump directory '{dump_dir}' is empty. "
            f"This could indicate a problem with the dump tool."
        )

    log.info("Starting backup of '%s' as %s...", database, backup_id)
    start = time.monotonic()

    objects = upload_segments(
        store, target, database, backup_id, iter_dump_segments(dump_dir), buffer_size
    )

    elapsed = time.monotonic() - start
    total = sum(obj.size for obj in objects)
    log.info(
        "Backup complete: %d collection file(s), %s in %.1fs under %s",
        len(objects), format_size(total), elapsed,
        keyscheme.backup_prefix(target.root, database, backup_id),
    )
    return backup_id
