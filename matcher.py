"""Restore the latest backup of every database whose name matches a pattern."""

from __future__ import annotations

import concurrent.futures
import logging
import re
import time
from dataclasses import dataclass

from config import StorageTarget
from errors import InvalidPattern, UsageError
from locator import BackupSet, resolve_latest
from restore import DEFAULT_DESTINATION, restore_backup
from stores import Store

log = logging.getLogger(__name__)


@dataclass
class MatchResult:
    database: str
    backup_set: BackupSet | None = None
    error: Exception | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a database-name pattern (a regular expression, searched)."""
    if not pattern:
        raise InvalidPattern("Empty database pattern")
    if "/" in pattern:
        raise InvalidPattern(
            f"Invalid pattern '{pattern}': it should only match database names, without '/'"
        )
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidPattern(f"Invalid regular expression '{pattern}': {exc}") from exc


def match_databases(store: Store, target: StorageTarget, pattern: str | re.Pattern) -> list[str]:
    """Return the sorted database names under the root that match *pattern*."""
    compiled = pattern if isinstance(pattern, re.Pattern) else compile_pattern(pattern)
    return sorted(
        name for name in set(store.list_segments(target.root)) if compiled.search(name)
    )


def _restore_one(store: Store, target: StorageTarget, database: str, dest: str) -> MatchResult:
    start = time.monotonic()
    try:
        backup_set = resolve_latest(store, target, database)
        restore_backup(store, backup_set, dest)
    except Exception as e:
        log.error("Restore of '%s' failed: %s", database, e)
        return MatchResult(database, error=e, elapsed=time.monotonic() - start)
    return MatchResult(database, backup_set=backup_set, elapsed=time.monotonic() - start)


def restore_matching(
    store: Store,
    target: StorageTarget,
    pattern: str,
    latest: bool,
    dest: str = DEFAULT_DESTINATION,
    workers: int = 1,
) -> list[MatchResult]:
    """Restore the latest backup of each matching database.

    Each database succeeds or fails on its own; the returned results follow
    the sorted match order.

    Raises:
        UsageError: when *latest* is False (checked before touching the store).
        InvalidPattern: when the pattern is not a usable regular expression.
    """
    if not latest:
        raise UsageError("Pattern restore requires latest selection (--latest)")
    compiled = compile_pattern(pattern)

    databases = match_databases(store, target, compiled)
    if not databases:
        log.warning("No databases match '%s'", pattern)
        return []
    log.info("Matching databases: %s", ", ".join(databases))

    if workers <= 1:
        results = [_restore_one(store, target, name, dest) for name in databases]
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(_restore_one, store, target, name, dest) for name in databases
            ]
            results = [future.result() for future in futures]

    failed = [r.database for r in results if not r.ok]
    log.info(
        "=== Summary: %d restored, %d failed ===", len(results) - len(failed), len(failed)
    )
    for r in results:
        log.info("  %s %s (%.1fs)", "OK  " if r.ok else "FAIL", r.database, r.elapsed)
    return results
