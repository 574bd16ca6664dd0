"""Mapping between backup coordinates and flat object keys.

Objects live under ``<root><database>/<backup_id>/<collection_file>``. The
root is normalized by the config layer to end with ``/`` (or to be empty).
"""

from __future__ import annotations

from typing import NamedTuple

from errors import InvalidDatabaseName, MalformedKey

SEPARATOR = "/"


class KeyParts(NamedTuple):
    database: str
    backup_id: str
    collection_file: str


def to_key(root: str, database: str, backup_id: str, collection_file: str) -> str:
    """Build the object key for one collection file of a backup."""
    return f"{root}{database}{SEPARATOR}{backup_id}{SEPARATOR}{collection_file}"


def split_key(root: str, key: str) -> KeyParts:
    """Inverse of to_key.

    Raises MalformedKey when the key is outside *root* or does not hold
    exactly three non-empty segments below it.
    """
    if not key.startswith(root):
        raise MalformedKey(f"Key '{key}' is not under root '{root}'")
    parts = key[len(root):].split(SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise MalformedKey(
            f"Key '{key}' does not match <database>/<backup_id>/<collection> under '{root}'"
        )
    return KeyParts(*parts)


def database_prefix(root: str, database: str) -> str:
    return f"{root}{database}{SEPARATOR}"


def backup_prefix(root: str, database: str, backup_id: str) -> str:
    return f"{root}{database}{SEPARATOR}{backup_id}{SEPARATOR}"


def validate_segment(value: str, kind: str = "database name") -> str:
    """Reject names that would escape their single path segment."""
    if not value:
        raise InvalidDatabaseName(f"Empty {kind}")
    if SEPARATOR in value:
        raise InvalidDatabaseName(
            f"Invalid {kind} '{value}': it must not contain '{SEPARATOR}'"
        )
    return value
