"""Shared utility functions."""

from __future__ import annotations

from typing import BinaryIO

# Transfer buffer used when streaming between a source and a store.
COPY_BUFFER_SIZE = 10 * 1024 * 1024


def copy_stream(src: BinaryIO, dst, buffer_size: int = COPY_BUFFER_SIZE) -> int:
    """Copy *src* into anything with a write() method. Returns bytes copied."""
    copied = 0
    for chunk in iter(lambda: src.read(buffer_size), b""):
        dst.write(chunk)
        copied += len(chunk)
    return copied


def format_size(size_bytes: int) -> str:
    """Format a byte count as a human-readable string (B, KB, MB, GB)."""
    if size_bytes >= 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 ** 3):.1f} GB"
    elif size_bytes >= 1024 * 1024:
        return f"{size_bytes / (1024 ** 2):.1f} MB"
    elif size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes} B"
