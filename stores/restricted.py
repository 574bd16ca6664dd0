"""Client-side enforcement of share restrictions around any store.

The restriction fields mirror those of a Storj shared access grant, but here
they limit what this tool itself may do with its own credentials. Nothing is
shared or derived; the gateway still enforces only what the keys allow.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import BinaryIO, Iterator

from config import Restrictions
from errors import AccessError
from utils import COPY_BUFFER_SIZE

from . import BackupObject, Store

log = logging.getLogger(__name__)

_PERMISSIONS = {
    "download": "allow_download",
    "upload": "allow_upload",
    "list": "allow_list",
    "delete": "allow_delete",
}


def check_window(restrictions: Restrictions, now: datetime | None = None) -> None:
    """Raise AccessError when *now* is outside the not_before/not_after window."""
    now = now or datetime.now(timezone.utc)
    if restrictions.not_before is not None and now < restrictions.not_before:
        raise AccessError(
            f"Access is not valid before {restrictions.not_before:%Y-%m-%d %H:%M:%S} UTC"
        )
    if restrictions.not_after is not None and now > restrictions.not_after:
        raise AccessError(
            f"Access expired at {restrictions.not_after:%Y-%m-%d %H:%M:%S} UTC"
        )


class RestrictedStore(Store):
    def __init__(self, inner: Store, restrictions: Restrictions):
        self._inner = inner
        self._restrictions = restrictions
        self.bucket = inner.bucket

    def _check(self, operation: str) -> None:
        if not getattr(self._restrictions, _PERMISSIONS[operation]):
            raise AccessError(f"Access does not allow {operation} operations")
        check_window(self._restrictions)

    def put(self, key: str, stream: BinaryIO, buffer_size: int = COPY_BUFFER_SIZE) -> BackupObject:
        self._check("upload")
        return self._inner.put(key, stream, buffer_size)

    def open_download(self, key: str) -> BinaryIO:
        self._check("download")
        return self._inner.open_download(key)

    def list(self, prefix: str) -> Iterator[BackupObject]:
        self._check("list")
        return self._inner.list(prefix)

    def list_segments(self, prefix: str) -> Iterator[str]:
        self._check("list")
        return self._inner.list_segments(prefix)

    def delete(self, key: str) -> None:
        self._check("delete")
        self._inner.delete(key)

    def close(self) -> None:
        self._inner.close()
