"""
Cleanup module for removing expired backup snapshots and engine state.

Snapshots of jobs that finished more than a given number of days ago
(default: 30) are deleted so the key-value store does not grow without bound.
A job whose snapshots are gone can no longer be rolled back.

``clear_all_data`` wipes every key the engine owns: the cached analysis, jobs
with their logs and pinned mappings, snapshots and locks. Redirect rules and
content are not touched.
"""

from datetime import datetime, timedelta
from typing import Tuple

from .analyzer import ANALYSIS_KEY
from .backup import BACKUP_PREFIX, BackupManager
from .jobs import LOCK_PREFIX
from .logger import get_logger
from .models import JobStatus
from .repository import JOB_PREFIX, LOG_PREFIX, MAPPING_PREFIX, JobRepository
from .storage import KeyValueStore

logger = get_logger()

ENGINE_PREFIXES = (JOB_PREFIX, LOG_PREFIX, MAPPING_PREFIX, BACKUP_PREFIX, LOCK_PREFIX)


def cleanup_expired_backups(kv: KeyValueStore, days: int = 30) -> Tuple[int, int]:
    """
    Remove backup snapshots of jobs finished more than ``days`` ago.

    Args:
        kv: Key-value store holding jobs and snapshots
        days: Number of days to keep snapshots after a job finishes

    Returns:
        Tuple of (snapshots_before, snapshots_after)
        Difference = snapshots_removed
    """
    backups = BackupManager(kv)
    jobs = JobRepository(kv)
    cutoff_date = datetime.now() - timedelta(days=days)

    snapshots_before = len(kv.list_prefix(BACKUP_PREFIX))
    logger.debug(
        "Starting backup retention cleanup",
        days=days,
        cutoff_date=cutoff_date.isoformat(),
        snapshots=snapshots_before,
    )

    expired_jobs = 0
    for job in jobs.list_jobs():
        if job.status not in (JobStatus.COMPLETED, JobStatus.FAILED) or not job.finished_at:
            continue
        try:
            finished_at = datetime.fromisoformat(job.finished_at)
        except (ValueError, TypeError) as e:
            logger.warning("Invalid finished_at timestamp format", job_id=job.id, error=str(e))
            continue
        if finished_at < cutoff_date and backups.has_backups(job.id):
            removed = backups.delete_snapshots(job.id)
            expired_jobs += 1
            jobs.append_log(job.id, f"Backups expired: {removed} snapshots removed")

    snapshots_after = len(kv.list_prefix(BACKUP_PREFIX))
    logger.info(
        f"Cleanup complete: {snapshots_before - snapshots_after} snapshots removed, {snapshots_after} remaining",
        jobs_expired=expired_jobs,
        snapshots_before=snapshots_before,
        snapshots_after=snapshots_after,
        days_threshold=days,
    )
    return (snapshots_before, snapshots_after)


def clear_all_data(kv: KeyValueStore) -> int:
    """Delete all engine-owned keys and return how many were removed."""
    removed = int(kv.delete(ANALYSIS_KEY))
    for prefix in ENGINE_PREFIXES:
        for key, _ in kv.list_prefix(prefix):
            if kv.delete(key):
                removed += 1

    logger.info(f"Cleared engine data: {removed} keys removed", keys_removed=removed)
    return removed
