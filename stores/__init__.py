"""Storage backend interface and factory."""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Iterator

from errors import ConfigLoadError
from utils import COPY_BUFFER_SIZE


@dataclass(frozen=True)
class BackupObject:
    """Metadata for a single committed object in a store."""

    key: str  # full key in the bucket
    created_at: datetime
    size: int  # bytes


class Store(ABC):
    """Abstract base for backup storage backends."""

    bucket: str = ""

    @abstractmethod
    def put(self, key: str, stream: BinaryIO, buffer_size: int = COPY_BUFFER_SIZE) -> BackupObject:
        """Upload the whole of *stream* as *key* and commit it.

        Nothing is listed under *key* until the upload has completed; a
        failed upload leaves no object behind.
        """

    @abstractmethod
    def open_download(self, key: str) -> BinaryIO:
        """Return a readable byte stream for *key*. The caller closes it."""

    @abstractmethod
    def list(self, prefix: str) -> Iterator[BackupObject]:
        """Yield every object whose key starts with *prefix*, in no guaranteed order."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object from the store."""

    def list_segments(self, prefix: str) -> Iterator[str]:
        """Yield the distinct first path segments of keys under *prefix*.

        Keys that sit directly under the prefix (no further '/') are not
        segments and are skipped.
        """
        seen: set[str] = set()
        for obj in self.list(prefix):
            rest = obj.key[len(prefix):]
            segment, sep, _ = rest.partition("/")
            if sep and segment and segment not in seen:
                seen.add(segment)
                yield segment

    def close(self) -> None:
        """Release the connection. Stores without one need not override."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


# Map of store type names to module names within this package.
_STORE_TYPES = {
    "s3": "s3",
    "local": "local",
}


def create_store(config: dict, restrictions=None) -> Store:
    """Create a Store instance from a store config dict.

    The config must have a 'type' key (e.g. 's3', 'local').
    Remaining keys are passed to the store's constructor. When
    *restrictions* is given the store is wrapped so that disallowed
    operations fail before reaching the backend.
    """
    store_type = config.get("type")
    if store_type not in _STORE_TYPES:
        raise ConfigLoadError(
            f"Unknown store type '{store_type}'. "
            f"Available: {', '.join(_STORE_TYPES)}"
        )

    if restrictions is not None:
        # Refuse before any connection is attempted.
        from .restricted import RestrictedStore, check_window
        check_window(restrictions)

    module = importlib.import_module(f".{_STORE_TYPES[store_type]}", package=__name__)
    store = module.create(config)

    if restrictions is not None:
        store = RestrictedStore(store, restrictions)
    return store
