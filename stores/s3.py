"""S3-compatible storage backend (Storj S3 gateway, AWS S3, MinIO, etc.)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import BinaryIO, Iterator

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from errors import AccessError, ConfigLoadError, TransferError
from utils import COPY_BUFFER_SIZE

from . import BackupObject, Store

log = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 10 * 1024 * 1024
# S3 rejects multipart parts (other than the last) below 5 MiB.
MIN_PART_SIZE = 5 * 1024 * 1024

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


@contextmanager
def _transfer(action: str, key: str | None = None):
    """Translate boto errors raised inside the block into TransferError."""
    try:
        yield
    except (BotoCoreError, ClientError, Boto3Error) as exc:
        target = f" '{key}'" if key else ""
        raise TransferError(f"Could not {action}{target}: {exc}", key=key) from exc


class S3Store(Store):
    def __init__(
        self,
        bucket: str,
        endpoint: str | None = None,
        access_key: str = "",
        secret_key: str = "",
        region: str = "auto",
        part_size: int = DEFAULT_PART_SIZE,
    ):
        session = boto3.session.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
        client_kwargs: dict = {
            "config": BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
            "region_name": region,
        }
        if endpoint:
            client_kwargs["endpoint_url"] = endpoint

        self._client = session.client("s3", **client_kwargs)
        self._endpoint = endpoint
        # Objects below one part go up in a single PUT; larger ones as multipart.
        self._transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
        )
        self.bucket = bucket

    def ensure_bucket(self) -> None:
        """Check the bucket is reachable, creating it when it does not exist."""
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_BUCKET_CODES:
                raise AccessError(f"Could not access bucket '{self.bucket}': {exc}") from exc
        except BotoCoreError as exc:
            raise AccessError(
                f"Could not connect to '{self._endpoint or 'default endpoint'}': {exc}"
            ) from exc

        log.info("Bucket '%s' not found, creating it", self.bucket)
        try:
            self._client.create_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise AccessError(f"Could not create bucket '{self.bucket}': {exc}") from exc

    def put(self, key: str, stream: BinaryIO, buffer_size: int = COPY_BUFFER_SIZE) -> BackupObject:
        # boto3 reads the stream in part-sized chunks, so buffer_size is not used here.
        log.info("Uploading s3://%s/%s", self.bucket, key)
        with _transfer("upload", key):
            self._client.upload_fileobj(stream, self.bucket, key, Config=self._transfer_config)
            resp = self._client.head_object(Bucket=self.bucket, Key=key)
        return BackupObject(
            key=key,
            created_at=resp["LastModified"],
            size=resp["ContentLength"],
        )

    def open_download(self, key: str) -> BinaryIO:
        log.info("Downloading s3://%s/%s", self.bucket, key)
        with _transfer("download", key):
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
        return resp["Body"]

    def list(self, prefix: str) -> Iterator[BackupObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        with _transfer("list", prefix):
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield BackupObject(
                        key=obj["Key"],
                        created_at=obj["LastModified"],
                        size=obj.get("Size", 0),
                    )

    def list_segments(self, prefix: str) -> Iterator[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        with _transfer("list", prefix):
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter="/"):
                for common in page.get("CommonPrefixes", []):
                    segment = common["Prefix"][len(prefix):].rstrip("/")
                    if segment:
                        yield segment

    def delete(self, key: str) -> None:
        log.info("Deleting s3://%s/%s", self.bucket, key)
        with _transfer("delete", key):
            self._client.delete_object(Bucket=self.bucket, Key=key)

    def close(self) -> None:
        self._client.close()


def create(config: dict) -> S3Store:
    if "bucket" not in config:
        raise ConfigLoadError("Error: S3 store config is missing required 'bucket' field")
    try:
        part_size = int(config.get("part_size", DEFAULT_PART_SIZE))
    except (TypeError, ValueError):
        raise ConfigLoadError("Error: S3 store 'part_size' must be an integer") from None
    if part_size < MIN_PART_SIZE:
        raise ConfigLoadError(
            f"Error: S3 store 'part_size' must be at least {MIN_PART_SIZE} bytes"
        )
    store = S3Store(
        bucket=config["bucket"],
        endpoint=config.get("endpoint"),
        access_key=config.get("access_key", ""),
        secret_key=config.get("secret_key", ""),
        region=config.get("region", "auto"),
        part_size=part_size,
    )
    store.ensure_bucket()
    return store
