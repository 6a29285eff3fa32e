"""
Batch application of the resolved mapping to site content.

A batch is a window ``[batch_start, batch_start + batch_limit)`` of the job's
pinned mapping. Every item of every configured content type is scanned for the
window's source URLs. Dry runs only count; live runs snapshot the item (once
per job) and then persist it. A failed write is logged and tallied and the
batch moves on to the next item.
"""

from typing import Any, Dict, Iterable, List, Optional

from .backup import BackupManager
from .content import ContentStore
from .errors import InvalidOptionsError
from .logger import get_logger
from .models import RESULT_KEYS, BatchResult, ContentItem, Job
from .repository import JobRepository
from .rewriter import ContentRewriter, apply_to_fields
from .schema import expand_content_types, validate_job_options

logger = get_logger()


class BatchProcessor:
    def __init__(
        self,
        content_store: ContentStore,
        backups: BackupManager,
        jobs: JobRepository,
        rewriter: Optional[ContentRewriter] = None,
        scan_page_size: int = 50,
    ):
        self.content_store = content_store
        self.backups = backups
        self.jobs = jobs
        self.rewriter = rewriter or ContentRewriter()
        self.scan_page_size = scan_page_size

    def process_batch(self, job_id: str, batch_start: int, batch_limit: int) -> BatchResult:
        """
        Apply one window of the job's mapping to all configured content.

        Args:
            job_id: Job whose options and pinned mapping are used
            batch_start: Index of the first mapping entry in the window
            batch_limit: Number of mapping entries in the window

        Returns:
            BatchResult with per-content-type update counts
        """
        job = self.jobs.get(job_id)
        entries = list(self.jobs.get_mapping(job_id).items())
        total = len(entries)
        window = dict(entries[batch_start:batch_start + batch_limit])

        result = BatchResult(
            batch_start=batch_start,
            batch_end=max(min(batch_start + batch_limit, total) - 1, batch_start - 1),
            total_mappings=total,
            is_complete=batch_start + batch_limit >= total,
        )
        if not window:
            return result

        scanned = 0
        for content_type in expand_content_types(job.options.content_types):
            scanned += self._process_content_type(job, content_type, window, result)

        logger.record_batch(scanned, result.urls_replaced)
        logger.debug(
            "Batch processed",
            job_id=job_id,
            dry_run=job.options.dry_run,
            items_scanned=scanned,
            **result.to_dict(),
        )
        return result

    def _process_content_type(
        self, job: Job, content_type: str, window: Dict[str, str], result: BatchResult
    ) -> int:
        counter = RESULT_KEYS[content_type]
        scanned = 0

        for item in self.content_store.iter_items(content_type, self.scan_page_size):
            scanned += 1
            new_fields, count, _ = apply_to_fields(
                item.fields, lambda value: self.rewriter.replace_urls(value, window)
            )
            if not count:
                continue

            if not job.options.dry_run:
                try:
                    if job.options.writes_backups:
                        self.backups.snapshot(job.id, item)
                    self.content_store.save_item(ContentItem(content_type, item.item_id, new_fields))
                except Exception as e:
                    result.failed_writes += 1
                    logger.error(
                        "Content write failed",
                        job_id=job.id,
                        content_id=item.content_id,
                        error=str(e),
                    )
                    logger.record_write_failure(content_type, type(e).__name__)
                    self.jobs.append_log(job.id, f"Write failed for {item.content_id}: {e}")
                    continue

            result.urls_replaced += count
            setattr(result, counter, getattr(result, counter) + 1)
            logger.record_item_update(content_type)

        return scanned

    def repair_malformed_urls(self, content_types: Iterable[str], dry_run: bool = False) -> Dict[str, Any]:
        """
        Run the malformed-URL repair over whole content types.

        Safe to repeat: a second run over repaired content finds nothing.
        """
        results: Dict[str, Any] = {
            "posts_fixed": 0,
            "meta_fixed": 0,
            "options_fixed": 0,
            "urls_fixed": 0,
            "failed_writes": 0,
            "dry_run": dry_run,
        }
        fixed_keys = {"posts": "posts_fixed", "postmeta": "meta_fixed", "options": "options_fixed"}
        failures: List[str] = []

        content_types = list(content_types)
        errors = validate_job_options({"content_types": content_types})
        if errors:
            raise InvalidOptionsError(errors)

        for content_type in expand_content_types(content_types):
            for item in self.content_store.iter_items(content_type, self.scan_page_size):
                new_fields, count, _ = apply_to_fields(item.fields, self.rewriter.fix_malformed_urls)
                if not count:
                    continue
                if not dry_run:
                    try:
                        self.content_store.save_item(ContentItem(content_type, item.item_id, new_fields))
                    except Exception as e:
                        results["failed_writes"] += 1
                        failures.append(item.content_id)
                        logger.error("Repair write failed", content_id=item.content_id, error=str(e))
                        continue
                results[fixed_keys[content_type]] += 1
                results["urls_fixed"] += count

        logger.info(
            f"Malformed URL repair: {results['urls_fixed']} fixed",
            failed=failures,
            **{k: v for k, v in results.items() if k != "urls_fixed"},
        )
        return results
