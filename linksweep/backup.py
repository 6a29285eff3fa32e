"""
Pre-mutation content snapshots, one per (job, content item).
"""

from typing import List

from .logger import get_logger
from .models import BackupSnapshot, ContentItem
from .storage import KeyValueStore

logger = get_logger()

BACKUP_PREFIX = "backup:"


def backup_key(job_id: str, content_id: str) -> str:
    return f"{BACKUP_PREFIX}{job_id}:{content_id}"


class BackupManager:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def snapshot(self, job_id: str, item: ContentItem) -> bool:
        """
        Store the current value of ``item`` for ``job_id``.

        Only the first call per (job, item) is recorded so the snapshot always
        holds the value from before the job's first write.

        Returns:
            True if a snapshot was created, False if one already existed
        """
        key = backup_key(job_id, item.content_id)
        if self.kv.get(key) is not None:
            return False
        snapshot = BackupSnapshot(job_id=job_id, content_id=item.content_id, original_value=dict(item.fields))
        self.kv.set(key, snapshot.to_dict())
        logger.debug("Backup snapshot stored", job_id=job_id, content_id=item.content_id)
        return True

    def get_snapshots(self, job_id: str) -> List[BackupSnapshot]:
        return [
            BackupSnapshot.from_dict(value)
            for _, value in self.kv.list_prefix(f"{BACKUP_PREFIX}{job_id}:")
        ]

    def has_backups(self, job_id: str) -> bool:
        return bool(self.kv.list_prefix(f"{BACKUP_PREFIX}{job_id}:"))

    def delete_snapshots(self, job_id: str) -> int:
        deleted = 0
        for key, _ in self.kv.list_prefix(f"{BACKUP_PREFIX}{job_id}:"):
            if self.kv.delete(key):
                deleted += 1
        return deleted
