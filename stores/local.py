"""Local filesystem storage backend."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator

from errors import ConfigLoadError, TransferError
from utils import COPY_BUFFER_SIZE, copy_stream

from . import BackupObject, Store

log = logging.getLogger(__name__)

# Uploads in progress are staged here and renamed into place on commit.
_STAGING_DIR = ".uploads"


def _discard(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass


class LocalStore(Store):
    """A bucket kept as a directory tree under *path*."""

    def __init__(self, path: str, bucket: str):
        self.bucket = bucket
        self.base_path = Path(path) / bucket
        self.staging_path = self.base_path / _STAGING_DIR
        self.staging_path.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path:
        """Resolve a key to a path, refusing keys that leave the bucket."""
        parts = key.split("/")
        if not key or any(p in ("", ".", "..") for p in parts) or parts[0] == _STAGING_DIR:
            raise TransferError(f"Invalid key for local store: '{key}'", key=key)
        return self.base_path.joinpath(*parts)

    def describe(self, key: str, path: Path) -> BackupObject:
        st = path.stat()
        return BackupObject(
            key=key,
            created_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            size=st.st_size,
        )

    def put(self, key: str, stream: BinaryIO, buffer_size: int = COPY_BUFFER_SIZE) -> BackupObject:
        path = self.resolve(key)
        log.info("Uploading %s -> %s", key, self.base_path)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.staging_path, prefix="upload-")
        except OSError as exc:
            raise TransferError(f"Could not initiate upload '{key}': {exc}", key=key) from exc

        try:
            with os.fdopen(fd, "wb") as out:
                copy_stream(stream, out, buffer_size)
            path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp_path, path)
        except OSError as exc:
            _discard(tmp_path)
            raise TransferError(f"Could not upload '{key}': {exc}", key=key) from exc
        except BaseException:
            _discard(tmp_path)
            raise
        return self.describe(key, path)

    def open_download(self, key: str) -> BinaryIO:
        path = self.resolve(key)
        log.info("Downloading %s from %s", key, self.base_path)
        try:
            return open(path, "rb")
        except OSError as exc:
            raise TransferError(f"Could not download '{key}': {exc}", key=key) from exc

    def list(self, prefix: str) -> Iterator[BackupObject]:
        for dirpath, dirnames, filenames in os.walk(self.base_path):
            if Path(dirpath) == self.base_path and _STAGING_DIR in dirnames:
                dirnames.remove(_STAGING_DIR)
            for name in filenames:
                path = Path(dirpath) / name
                key = path.relative_to(self.base_path).as_posix()
                if key.startswith(prefix):
                    yield self.describe(key, path)

    def delete(self, key: str) -> None:
        path = self.resolve(key)
        log.info("Deleting %s from %s", key, self.base_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise TransferError(f"Could not delete '{key}': {exc}", key=key) from exc

        # Drop directories left empty, up to the bucket itself.
        parent = path.parent
        while parent != self.base_path and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent


def create(config: dict) -> LocalStore:
    for key in ("path", "bucket"):
        if key not in config:
            raise ConfigLoadError(f"Error: local store config is missing required '{key}' field")
    return LocalStore(path=config["path"], bucket=config["bucket"])
