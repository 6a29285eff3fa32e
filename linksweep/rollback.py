"""
Rollback of a completed live job from its backup snapshots.

Everything that can be checked is checked before the first write. If a
restore write then fails, the items already restored are put back to the
value they had just before the rollback began, so the content is never left
half rolled back.
"""

from typing import Any, Dict, List

from .backup import BackupManager
from .content import ContentStore
from .errors import RollbackError
from .jobs import transition
from .logger import get_logger
from .models import BackupSnapshot, ContentItem, JobStatus
from .repository import JobRepository

logger = get_logger()


class RollbackEngine:
    def __init__(self, content_store: ContentStore, backups: BackupManager, jobs: JobRepository):
        self.content_store = content_store
        self.backups = backups
        self.jobs = jobs

    def _revert(self, restored: List[BackupSnapshot], captured: Dict[str, ContentItem]) -> None:
        for snapshot in restored:
            try:
                self.content_store.save_item(captured[snapshot.content_id])
            except Exception as e:
                logger.critical(
                    "Could not revert item after failed rollback",
                    content_id=snapshot.content_id,
                    error=str(e),
                )

    def rollback_changes(self, job_id: str) -> Dict[str, Any]:
        """
        Restore every item the job changed to its pre-job value.

        Returns:
            {"success": True, "restored_count": n}

        Raises:
            JobNotFoundError: If the job does not exist
            RollbackError: If the job is not a completed live job with
                backups, or if restoring fails (nothing stays restored)
        """
        job = self.jobs.get(job_id)
        if job.status != JobStatus.COMPLETED:
            raise RollbackError(f"Job {job_id} is {job.status.value}; only completed jobs can be rolled back")
        if job.options.dry_run:
            raise RollbackError(f"Job {job_id} was a dry run and changed nothing")

        snapshots = self.backups.get_snapshots(job_id)
        if not snapshots:
            raise RollbackError(f"No backups found for job {job_id}")

        captured: Dict[str, ContentItem] = {}
        for snapshot in snapshots:
            original = snapshot.to_item()
            current = self.content_store.get_item(original.content_type, original.item_id)
            if current is None:
                raise RollbackError(f"Backed-up item no longer exists: {snapshot.content_id}")
            captured[snapshot.content_id] = current

        restored: List[BackupSnapshot] = []
        try:
            for snapshot in snapshots:
                self.content_store.save_item(snapshot.to_item())
                restored.append(snapshot)
        except Exception as e:
            self._revert(restored, captured)
            logger.error("Rollback failed during restore", job_id=job_id, error=str(e))
            raise RollbackError(f"Rollback of job {job_id} failed at {len(restored) + 1}/{len(snapshots)}: {e}") from e

        mismatched = []
        for snapshot in snapshots:
            original = snapshot.to_item()
            current = self.content_store.get_item(original.content_type, original.item_id)
            if current is None or any(
                current.fields.get(name) != value for name, value in original.fields.items()
            ):
                mismatched.append(snapshot.content_id)
        if mismatched:
            self._revert(restored, captured)
            logger.error("Rollback verification failed", job_id=job_id, mismatched=mismatched)
            raise RollbackError(f"Restored content does not match backups for: {', '.join(mismatched)}")

        transition(job, JobStatus.ROLLED_BACK)
        self.jobs.save(job)
        self.backups.delete_snapshots(job_id)
        self.jobs.append_log(job_id, f"Job rolled back: {len(snapshots)} items restored")
        logger.info("Job rolled back", job_id=job_id, restored_count=len(snapshots))

        return {"success": True, "restored_count": len(snapshots)}
