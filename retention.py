"""GFS (Grandfather-Father-Son) retention policy for backup pruning.

Mirrors the retention model used by Proxmox Backup Server and sanoid:
- keep_last:    always keep the N most recent backups
- keep_daily:   keep the newest backup per day, for the last N days
- keep_weekly:  keep the newest backup per ISO week, for the last N weeks
- keep_monthly: keep the newest backup per month, for the last N months
- keep_yearly:  keep the newest backup per year, for the last N years

A backup here is a whole backup set (every collection of one backup id),
dated by its newest object. All fields are optional (default 0 = disabled).
A backup kept by any rule is protected from deletion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from config import RetentionPolicy, StorageTarget
from locator import BackupSet, list_backup_sets
from stores import Store

log = logging.getLogger(__name__)


def _bucket_key_daily(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


def _bucket_key_weekly(dt: datetime) -> str:
    iso = dt.isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


def _bucket_key_monthly(dt: datetime) -> str:
    return dt.strftime("%Y-%m")


def _bucket_key_yearly(dt: datetime) -> str:
    return dt.strftime("%Y")


def compute_keep_set(
    backup_sets: list[BackupSet], policy: RetentionPolicy, now: datetime | None = None
) -> set[str]:
    """Determine which backup ids to keep based on the retention policy.

    Args:
        backup_sets: backup sets of one database, in any order.
        policy: retention rules.
        now: reference time (defaults to utcnow).

    Returns:
        Set of backup ids that should be kept.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    keep: set[str] = set()

    if not backup_sets:
        return keep

    sorted_newest = sorted(
        backup_sets, key=lambda s: (s.created_at, s.backup_id), reverse=True
    )

    # keep_last: always keep the N most recent
    if policy.keep_last > 0:
        for s in sorted_newest[: policy.keep_last]:
            keep.add(s.backup_id)

    # For daily/weekly/monthly/yearly: bucket backups by time period,
    # then keep the newest backup in each of the most recent N buckets.
    def _apply_bucket_rule(bucket_fn, count: int) -> None:
        if count <= 0:
            return

        buckets: dict[str, BackupSet] = {}
        for s in sorted_newest:
            # Newest-first, so the first set seen per bucket is the one kept
            buckets.setdefault(bucket_fn(s.created_at), s)

        for bkey in sorted(buckets, reverse=True)[:count]:
            keep.add(buckets[bkey].backup_id)

    _apply_bucket_rule(_bucket_key_daily, policy.keep_daily)
    _apply_bucket_rule(_bucket_key_weekly, policy.keep_weekly)
    _apply_bucket_rule(_bucket_key_monthly, policy.keep_monthly)
    _apply_bucket_rule(_bucket_key_yearly, policy.keep_yearly)

    return keep


def apply_retention(
    store: Store,
    target: StorageTarget,
    database: str,
    policy: RetentionPolicy,
    dry_run: bool = False,
) -> list[str]:
    """List backup sets, compute retention, and delete expired ones.

    Returns the backup ids that were (or, with dry_run, would be) deleted.
    """
    backup_sets = list_backup_sets(store, target, database)

    if not backup_sets:
        log.info("No backups found for '%s', nothing to prune.", database)
        return []

    # If no retention rules are configured, keep everything
    has_rules = any([
        policy.keep_last,
        policy.keep_daily,
        policy.keep_weekly,
        policy.keep_monthly,
        policy.keep_yearly,
    ])
    if not has_rules:
        log.info("No retention policy configured, keeping all %d backup(s).", len(backup_sets))
        return []

    keep = compute_keep_set(backup_sets, policy)
    to_delete = [s for s in backup_sets if s.backup_id not in keep]

    log.info(
        "Retention: %d total, %d to keep, %d to delete",
        len(backup_sets),
        len(backup_sets) - len(to_delete),
        len(to_delete),
    )

    for s in to_delete:
        ts = s.created_at.strftime("%Y-%m-%d %H:%M:%S")
        if dry_run:
            log.info("[dry-run] Would delete expired backup: %s (%s)", s.backup_id, ts)
            continue
        log.info("Deleting expired backup: %s (%s)", s.backup_id, ts)
        for obj in s.objects.values():
            store.delete(obj.key)

    if not to_delete:
        log.info("No expired backups to prune.")
    elif not dry_run:
        log.info("Pruned %d expired backup(s).", len(to_delete))
    return [s.backup_id for s in to_delete]
