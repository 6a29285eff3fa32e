"""
Wiring of the cleanup engine components.

``build_engine`` assembles stores, analyzer, batch processor, job coordinator
and rollback engine from :class:`~linksweep.config.Settings`. Any store can be
passed in to replace the SQLite default (the WordPress REST content store,
test doubles). Setting ``LINKSWEEP_KV_PATH`` keeps engine state in a JSON file.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .analyzer import RedirectAnalyzer
from .backup import BackupManager
from .batch import BatchProcessor
from .cleanup import cleanup_expired_backups, clear_all_data
from .config import Settings, load_settings
from .content import ContentStore, SqlContentStore
from .jobs import JobCoordinator
from .logger import configure_logger
from .models import AnalysisResult, BatchResult, Job, JobOptions
from .repository import JobRepository
from .rewriter import ContentRewriter
from .rollback import RollbackEngine
from .rules import RuleStore, SqlRuleStore
from .storage import JsonFileKeyValueStore, KeyValueStore, SqlKeyValueStore


class CleanupEngine:
    """Single entry point for analysis, jobs, rollback and maintenance."""

    def __init__(
        self,
        settings: Settings,
        kv: KeyValueStore,
        content_store: ContentStore,
        rule_store: RuleStore,
    ):
        self.settings = settings
        self.kv = kv
        self.content_store = content_store
        self.rule_store = rule_store

        self.rewriter = ContentRewriter(settings.site_hosts)
        self.analyzer = RedirectAnalyzer(
            rule_store,
            kv,
            content_store=content_store,
            site_hosts=settings.site_hosts,
            max_hops=settings.max_hops,
            cache_ttl=settings.cache_ttl,
            scan_page_size=settings.scan_page_size,
        )
        self.job_repository = JobRepository(kv)
        self.backups = BackupManager(kv)
        self.batches = BatchProcessor(
            content_store,
            self.backups,
            self.job_repository,
            rewriter=self.rewriter,
            scan_page_size=settings.scan_page_size,
        )
        self.coordinator = JobCoordinator(
            self.analyzer,
            self.batches,
            self.job_repository,
            default_batch_size=settings.batch_size,
            exclusive_live_jobs=settings.exclusive_live_jobs,
        )
        self.rollback = RollbackEngine(content_store, self.backups, self.job_repository)

    # Analysis

    def analyze_redirections(self) -> AnalysisResult:
        return self.analyzer.analyze_redirections()

    def get_analysis_data(self) -> AnalysisResult:
        return self.analyzer.get_analysis_data()

    def invalidate_analysis(self) -> None:
        self.analyzer.invalidate()

    # Jobs

    def start_cleanup_process(self, options: Union[JobOptions, Dict[str, Any], None] = None) -> str:
        return self.coordinator.start_cleanup_process(options)

    def process_cleanup_job(self, job_id: str) -> Job:
        return self.coordinator.process_cleanup_job(job_id)

    def process_next_batch(self, job_id: str) -> BatchResult:
        return self.coordinator.process_next_batch(job_id)

    def process_batch(self, job_id: str, batch_start: int, batch_limit: int) -> BatchResult:
        return self.batches.process_batch(job_id, batch_start, batch_limit)

    def get_job_progress(self, job_id: str) -> Dict[str, Any]:
        return self.coordinator.get_job_progress(job_id)

    def get_job_details(self, job_id: str) -> Job:
        return self.coordinator.get_job_details(job_id)

    def get_recent_jobs(self, n: int = 10) -> List[Job]:
        return self.coordinator.get_recent_jobs(n)

    def rollback_changes(self, job_id: str) -> Dict[str, Any]:
        return self.rollback.rollback_changes(job_id)

    # Maintenance

    def repair_malformed_urls(self, content_types: Iterable[str] = ("all",), dry_run: bool = False) -> Dict[str, Any]:
        return self.batches.repair_malformed_urls(content_types, dry_run=dry_run)

    def cleanup_expired_backups(self, days: Optional[int] = None) -> Tuple[int, int]:
        if days is None:
            days = self.settings.backup_retention_days
        return cleanup_expired_backups(self.kv, days=days)

    def clear_all_data(self) -> int:
        return clear_all_data(self.kv)


def build_engine(
    settings: Optional[Settings] = None,
    kv: Optional[KeyValueStore] = None,
    content_store: Optional[ContentStore] = None,
    rule_store: Optional[RuleStore] = None,
    configure_logging: bool = True,
) -> CleanupEngine:
    """
    Build a CleanupEngine, defaulting every store to the settings' SQLite file.

    Engine state goes to a JSON file instead when ``settings.kv_path`` is set.

    Args:
        settings: Runtime settings (default: read from the environment)
        kv: Key-value store for engine state
        content_store: Store holding the content to rewrite
        rule_store: Source of redirect rules
        configure_logging: Apply the settings' log level and directory

    Returns:
        CleanupEngine
    """
    settings = settings or load_settings()
    if configure_logging:
        configure_logger(level=settings.log_level, log_dir=settings.log_dir)

    if kv is None:
        kv = JsonFileKeyValueStore(settings.kv_path) if settings.kv_path else SqlKeyValueStore(settings.db_path)

    return CleanupEngine(
        settings,
        kv=kv,
        content_store=content_store or SqlContentStore(settings.db_path),
        rule_store=rule_store or SqlRuleStore(settings.db_path),
    )
