"""Configuration loading, validation, and env-var resolution."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import yaml

from errors import ConfigLoadError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/dumpsync.yaml"

# Format of the not_before / not_after restriction timestamps (UTC).
RESTRICTION_TIME_FORMAT = "%Y-%m-%d_%H:%M:%S"

_ACCESS_FIELDS = ("endpoint", "access_key", "secret_key")


@dataclass(frozen=True)
class StorageTarget:
    bucket: str
    root: str  # upload path, always "" or ending with "/"


def normalize_root(upload_path: str) -> str:
    """Return the upload path in standard form: stripped, ending with '/'."""
    root = upload_path.strip().lstrip("/")
    if root and not root.endswith("/"):
        root += "/"
    return root


@dataclass
class Restrictions:
    """Limits this tool applies to its own store operations.

    Field names follow Storj share permissions, but nothing is shared: the
    checks run client-side before each call (see stores.restricted).
    """

    allow_download: bool = True
    allow_upload: bool = True
    allow_list: bool = True
    allow_delete: bool = True
    not_before: datetime | None = None
    not_after: datetime | None = None


@dataclass
class RetentionPolicy:
    keep_last: int = 0
    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0
    keep_yearly: int = 0


def load(config_path: str | None = None) -> dict:
    """Load and parse the YAML (or JSON) config file."""
    path = config_path or os.environ.get("DUMPSYNC_CONFIG", DEFAULT_CONFIG_PATH)

    if not Path(path).is_file():
        raise ConfigLoadError(f"Error: config file not found: {path}")

    # Warn if config file is readable by group or others (may contain credentials)
    try:
        mode = os.stat(path).st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            log.warning(
                "Config file '%s' is readable by group/others (mode %o). "
                "This file may contain credentials, consider: chmod 600 %s",
                path, stat.S_IMODE(mode), path,
            )
    except OSError:
        pass  # skip check if stat fails (e.g. on some platforms)

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"Error: could not parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"Error: could not read config file {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigLoadError("Error: config file must be a YAML mapping")

    return raw


def resolve_env(config: dict) -> dict:
    """Recursively resolve *_env keys from environment variables.

    For any key ending in '_env', look up the env var named by its value
    and replace with a key without the '_env' suffix.
    E.g. {'secret_key_env': 'MY_SECRET'} -> {'secret_key': '<value of $MY_SECRET>'}
    """
    resolved = {}
    for key, value in config.items():
        if isinstance(value, dict):
            resolved[key] = resolve_env(value)
        elif isinstance(value, str) and key.endswith("_env"):
            real_key = key.removesuffix("_env")
            env_val = os.environ.get(value)
            if env_val is None:
                raise ConfigLoadError(
                    f"Error: environment variable '{value}' "
                    f"(referenced by '{key}') is not set"
                )
            resolved[real_key] = env_val
        else:
            resolved[key] = value
    return resolved


def get_target(raw_config: dict) -> StorageTarget:
    """Build the StorageTarget (bucket + normalized upload path)."""
    for required in ("bucket", "upload_path"):
        value = raw_config.get(required)
        if not isinstance(value, str) or not value.strip():
            raise ConfigLoadError(f"Error: config is missing required '{required}' field")
    return StorageTarget(
        bucket=raw_config["bucket"].strip(),
        root=normalize_root(raw_config["upload_path"]),
    )


def parse_access(serialized: str) -> dict:
    """Decode a serialized access capability into its endpoint/key fields.

    The capability is URL-safe base64 of a JSON object holding
    'endpoint', 'access_key' and 'secret_key'.
    """
    try:
        padded = serialized.strip() + "=" * (-len(serialized.strip()) % 4)
        fields = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ConfigLoadError(f"Error: could not decode serialized access: {exc}") from exc

    if not isinstance(fields, dict):
        raise ConfigLoadError("Error: serialized access must decode to a JSON object")
    missing = [f for f in _ACCESS_FIELDS if not fields.get(f)]
    if missing:
        raise ConfigLoadError(
            f"Error: serialized access is missing field(s): {', '.join(missing)}"
        )
    return {f: fields[f] for f in _ACCESS_FIELDS}


def get_store_config(raw_config: dict) -> dict:
    """Get the resolved store config dict, with the bucket filled in."""
    store_cfg = raw_config.get("store", {})
    if not isinstance(store_cfg, dict):
        raise ConfigLoadError("Error: 'store' must be a mapping")

    store_cfg = resolve_env(store_cfg)
    store_cfg.setdefault("type", "s3")

    access = store_cfg.pop("access", None)
    if access:
        store_cfg.update(parse_access(access))

    store_cfg["bucket"] = get_target(raw_config).bucket
    return store_cfg


def _parse_restriction_time(value, field_name: str) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        return datetime.strptime(str(value), RESTRICTION_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise ConfigLoadError(
            f"Error: restriction '{field_name}' must use the form YYYY-MM-DD_HH:MM:SS, "
            f"got {value!r}"
        ) from None


def get_restrictions(raw_config: dict) -> Restrictions | None:
    """Return the configured share restrictions, or None when none are set."""
    cfg = raw_config.get("restrictions")
    if not cfg:
        return None
    if not isinstance(cfg, dict):
        raise ConfigLoadError("Error: 'restrictions' must be a mapping")

    flags = {}
    for name in ("allow_download", "allow_upload", "allow_list", "allow_delete"):
        value = cfg.get(name, True)
        if not isinstance(value, bool):
            raise ConfigLoadError(f"Error: restriction '{name}' must be true or false")
        flags[name] = value

    restrictions = Restrictions(
        **flags,
        not_before=_parse_restriction_time(cfg.get("not_before"), "not_before"),
        not_after=_parse_restriction_time(cfg.get("not_after"), "not_after"),
    )
    if (
        restrictions.not_before is not None
        and restrictions.not_after is not None
        and restrictions.not_before >= restrictions.not_after
    ):
        raise ConfigLoadError("Error: restriction 'not_before' must be earlier than 'not_after'")
    return restrictions


def get_retention(raw_config: dict) -> RetentionPolicy:
    ret_cfg = raw_config.get("retention") or {}
    try:
        return RetentionPolicy(
            keep_last=int(ret_cfg.get("keep_last", 0)),
            keep_daily=int(ret_cfg.get("keep_daily", 0)),
            keep_weekly=int(ret_cfg.get("keep_weekly", 0)),
            keep_monthly=int(ret_cfg.get("keep_monthly", 0)),
            keep_yearly=int(ret_cfg.get("keep_yearly", 0)),
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigLoadError(f"Error: invalid retention policy: {exc}") from exc
