"""
Cleanup job lifecycle.

A job is created ``Pending`` against the mapping of the cached analysis, which
is pinned to the job so batch offsets keep pointing at the same entries even
if the analysis is refreshed mid-run. Batches are driven strictly one after
another; the offset of the next batch is persisted after each one, so a
``Running`` job interrupted between batches resumes where it stopped.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .analyzer import RedirectAnalyzer
from .batch import BatchProcessor
from .errors import (
    AnalysisMissingError,
    InvalidJobStateError,
    InvalidOptionsError,
    JobLockedError,
)
from .logger import get_logger
from .models import JOB_TRANSITIONS, BatchResult, Job, JobOptions, JobStatus, empty_results, now_iso
from .repository import JobRepository
from .schema import expand_content_types, validate_job_options

logger = get_logger()

LOCK_PREFIX = "lock:"
LIVE_LOCK_KEY = f"{LOCK_PREFIX}live_job"


def transition(job: Job, status: JobStatus) -> None:
    """Move ``job`` to ``status`` or raise InvalidJobStateError."""
    if status not in JOB_TRANSITIONS[job.status]:
        raise InvalidJobStateError(
            f"Job {job.id} cannot move from {job.status.value} to {status.value}"
        )
    job.status = status


class JobCoordinator:
    def __init__(
        self,
        analyzer: RedirectAnalyzer,
        batches: BatchProcessor,
        jobs: JobRepository,
        default_batch_size: int = 10,
        exclusive_live_jobs: bool = True,
    ):
        self.analyzer = analyzer
        self.batches = batches
        self.jobs = jobs
        self.default_batch_size = default_batch_size
        self.exclusive_live_jobs = exclusive_live_jobs

    def start_cleanup_process(self, options: Union[JobOptions, Dict[str, Any], None] = None) -> str:
        """
        Create a Pending job over the current analysis mapping.

        Args:
            options: JobOptions or a dict with content_types, batch_size,
                dry_run, create_backup

        Returns:
            The new job id

        Raises:
            AnalysisMissingError: If there is no fresh cached analysis
            InvalidOptionsError: If the options do not validate
        """
        analysis = self.analyzer.get_cached_analysis()
        if analysis is None:
            raise AnalysisMissingError(
                "No fresh redirect analysis found. Run the analysis before starting a cleanup."
            )

        data = options.to_dict() if isinstance(options, JobOptions) else dict(options or {})
        errors = validate_job_options(data)
        if errors:
            raise InvalidOptionsError(errors)
        data.setdefault("batch_size", self.default_batch_size)
        job_options = JobOptions.from_dict(data)
        job_options.content_types = expand_content_types(job_options.content_types)

        job_id = str(uuid.uuid4())
        while self.jobs.exists(job_id):
            job_id = str(uuid.uuid4())

        job = Job(id=job_id, options=job_options)
        job.progress["total_mappings"] = len(analysis.url_mapping)
        self.jobs.save_mapping(job_id, analysis.url_mapping)
        self.jobs.save(job)

        mode = "dry run" if job_options.dry_run else "live"
        self.jobs.append_log(
            job_id,
            f"Job created ({mode}) for {len(analysis.url_mapping)} mappings "
            f"over {', '.join(job_options.content_types)}",
        )
        logger.info(
            "Cleanup job created",
            job_id=job_id,
            total_mappings=len(analysis.url_mapping),
            **job_options.to_dict(),
        )
        return job_id

    # Live-job lock

    def _acquire_lock(self, job: Job) -> None:
        if job.options.dry_run or not self.exclusive_live_jobs:
            return
        holder = self.jobs.kv.get(LIVE_LOCK_KEY)
        if holder and holder.get("job_id") != job.id:
            other = holder.get("job_id")
            # A lock whose holder is no longer running is stale
            if self.jobs.exists(other) and self.jobs.get(other).status == JobStatus.RUNNING:
                raise JobLockedError(f"Live job {other} is already running")
            logger.warning("Taking over stale live-job lock", job_id=job.id, previous=other)
        self.jobs.kv.set(LIVE_LOCK_KEY, {"job_id": job.id, "acquired_at": now_iso()})

    def _release_lock(self, job: Job) -> None:
        holder = self.jobs.kv.get(LIVE_LOCK_KEY)
        if holder and holder.get("job_id") == job.id:
            self.jobs.kv.delete(LIVE_LOCK_KEY)

    # Execution

    def _begin(self, job: Job) -> None:
        if job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            raise InvalidJobStateError(f"Job {job.id} is {job.status.value} and cannot be processed")
        resuming = job.status == JobStatus.RUNNING
        self._acquire_lock(job)
        transition(job, JobStatus.RUNNING)
        self.jobs.save(job)
        if resuming:
            self.jobs.append_log(job.id, f"Job resumed at offset {job.progress.get('next_offset', 0)}")
        else:
            self.jobs.append_log(job.id, "Job started")
        logger.info("Cleanup job running", job_id=job.id, resumed=resuming)

    def _run_batch(self, job: Job) -> BatchResult:
        offset = job.progress.get("next_offset", 0)
        batch_size = job.options.batch_size
        result = self.batches.process_batch(job.id, offset, batch_size)

        for key in empty_results():
            job.results[key] = job.results.get(key, 0) + getattr(result, key)
        job.progress["next_offset"] = min(offset + batch_size, result.total_mappings)
        job.progress["total_mappings"] = result.total_mappings
        job.progress["batches_processed"] = job.progress.get("batches_processed", 0) + 1
        self.jobs.save(job)

        message = (
            f"Batch {result.batch_start}-{result.batch_end} of {result.total_mappings}: "
            f"{result.urls_replaced} URLs in {result.posts_updated} posts, "
            f"{result.meta_updated} meta, {result.options_updated} options"
        )
        if result.failed_writes:
            message += f" ({result.failed_writes} failed writes)"
        self.jobs.append_log(job.id, message)
        return result

    def _finish(self, job: Job, status: JobStatus, error: Optional[str] = None) -> None:
        transition(job, status)
        job.finished_at = now_iso()
        job.error = error
        self.jobs.save(job)
        self._release_lock(job)

        if status == JobStatus.COMPLETED:
            self.jobs.append_log(job.id, f"Job completed: {job.results['urls_replaced']} URLs replaced")
            logger.info("Cleanup job completed", job_id=job.id, **job.results)
        else:
            self.jobs.append_log(job.id, f"Job failed: {error}")
            logger.error("Cleanup job failed", job_id=job.id, error=error, **job.results)

    def process_cleanup_job(self, job_id: str) -> Job:
        """
        Run every remaining batch of a Pending or Running job.

        A fatal error ends the job Failed with the progress made so far kept.

        Returns:
            The job in its final state
        """
        job = self.jobs.get(job_id)
        self._begin(job)

        try:
            while True:
                result = self._run_batch(job)
                if result.is_complete:
                    break
        except Exception as e:
            self._finish(job, JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            return job

        self._finish(job, JobStatus.COMPLETED)
        logger.log_metrics_summary()
        return job

    def process_next_batch(self, job_id: str) -> BatchResult:
        """
        Run exactly one batch, starting the job if it is still Pending.

        The job is completed after the batch that covers the end of the
        mapping. A fatal error marks the job Failed and is re-raised.
        """
        job = self.jobs.get(job_id)
        if job.status == JobStatus.PENDING:
            self._begin(job)
        elif job.status != JobStatus.RUNNING:
            raise InvalidJobStateError(f"Job {job.id} is {job.status.value} and cannot be processed")

        try:
            result = self._run_batch(job)
        except Exception as e:
            self._finish(job, JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise

        if result.is_complete:
            self._finish(job, JobStatus.COMPLETED)
        return result

    # Read-only accessors

    def get_job_progress(self, job_id: str) -> Dict[str, Any]:
        job = self.jobs.get(job_id)
        total = job.progress.get("total_mappings", 0)
        offset = job.progress.get("next_offset", 0)
        if total:
            percent = round(offset / total * 100, 1)
        else:
            percent = 100.0 if job.status != JobStatus.PENDING else 0.0
        return {
            "job_id": job.id,
            "status": job.status.value,
            "processed_mappings": offset,
            "total_mappings": total,
            "batches_processed": job.progress.get("batches_processed", 0),
            "percent": percent,
            "results": dict(job.results),
        }

    def get_job_details(self, job_id: str) -> Job:
        return self.jobs.get(job_id, with_logs=True)

    def get_recent_jobs(self, n: int = 10) -> List[Job]:
        """The ``n`` most recently started jobs, most recent first."""
        jobs = self.jobs.list_jobs()
        jobs.sort(key=lambda job: datetime.fromisoformat(job.started_at), reverse=True)
        return jobs[:n]
