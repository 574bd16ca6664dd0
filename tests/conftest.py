"""Shared fixtures for dumpsync tests."""

from __future__ import annotations

import io
import sys
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add the dumpsync root to sys.path so imports work like they do at runtime.
_pkg_root = str(Path(__file__).resolve().parent.parent)
if _pkg_root not in sys.path:
    sys.path.insert(0, _pkg_root)

from config import StorageTarget  # noqa: E402
from errors import TransferError  # noqa: E402
from stores import BackupObject, Store  # noqa: E402
from utils import COPY_BUFFER_SIZE, copy_stream  # noqa: E402

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class MemoryStore(Store):
    """In-memory store that counts calls and lets tests pick creation times."""

    def __init__(self, bucket: str = "backups"):
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, datetime]] = {}
        self.calls: Counter = Counter()
        self.put_keys: list[str] = []
        self.fail_put: set[str] = set()
        self.fail_download: set[str] = set()
        self._clock = BASE_TIME

    def add(self, key: str, data: bytes = b"", created_at: datetime | None = None) -> BackupObject:
        if created_at is None:
            self._clock += timedelta(seconds=1)
            created_at = self._clock
        self.objects[key] = (data, created_at)
        return BackupObject(key=key, created_at=created_at, size=len(data))

    def put(self, key: str, stream, buffer_size: int = COPY_BUFFER_SIZE) -> BackupObject:
        self.calls["put"] += 1
        self.put_keys.append(key)
        data = io.BytesIO()
        copy_stream(stream, data, buffer_size)
        if key in self.fail_put:
            raise TransferError(f"upload refused for '{key}'", key=key)
        return self.add(key, data.getvalue())

    def open_download(self, key: str):
        self.calls["open_download"] += 1
        if key in self.fail_download or key not in self.objects:
            raise TransferError(f"Could not download '{key}'", key=key)
        return io.BytesIO(self.objects[key][0])

    def list(self, prefix: str):
        self.calls["list"] += 1
        # Reverse insertion order: callers must not rely on listing order.
        for key in reversed(list(self.objects)):
            if key.startswith(prefix):
                data, created_at = self.objects[key]
                yield BackupObject(key=key, created_at=created_at, size=len(data))

    def delete(self, key: str) -> None:
        self.calls["delete"] += 1
        self.objects.pop(key, None)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def target() -> StorageTarget:
    return StorageTarget(bucket="backups", root="mongo/")
