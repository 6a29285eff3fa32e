"""
Domain records shared by the engine components.

All records convert to and from plain dictionaries so they can be written to
any key-value backend as JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

CONTENT_TYPES = ("posts", "postmeta", "options")

# BatchResult / Job result counter per content type
RESULT_KEYS = {
    "posts": "posts_updated",
    "postmeta": "meta_updated",
    "options": "options_updated",
}


class ComparisonKind(str, Enum):
    EXACT = "exact"
    REGEX = "regex"
    CONTAINS = "contains"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# Allowed status transitions; Running -> Running is a resume.
JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: {JobStatus.ROLLED_BACK},
    JobStatus.FAILED: set(),
    JobStatus.ROLLED_BACK: set(),
}


def now_iso() -> str:
    return datetime.now().isoformat()


@dataclass(frozen=True)
class RulePattern:
    value: str
    comparison: ComparisonKind = ComparisonKind.EXACT

    def to_dict(self) -> Dict[str, str]:
        return {"value": self.value, "comparison": self.comparison.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulePattern":
        return cls(
            value=str(data.get("value", "")),
            comparison=ComparisonKind(data.get("comparison", ComparisonKind.EXACT.value)),
        )


@dataclass
class RedirectRule:
    patterns: List[RulePattern]
    destination: str
    header_code: int = 301
    hits: int = 0
    status: RuleStatus = RuleStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE


@dataclass
class ContentItem:
    """One mutable unit of site content (a post, a meta value, an option)."""

    content_type: str
    item_id: str
    fields: Dict[str, str]

    @property
    def content_id(self) -> str:
        return f"{self.content_type}:{self.item_id}"

    def copy(self) -> "ContentItem":
        return ContentItem(self.content_type, self.item_id, dict(self.fields))


@dataclass
class AnalysisResult:
    total_redirections: int
    url_mapping: Dict[str, str]
    content_analysis: Dict[str, Any]
    redirect_chains_resolved: int
    unresolved: List[str] = field(default_factory=list)
    skipped_patterns: int = 0
    analyzed_at: str = field(default_factory=now_iso)
    top_redirections: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_redirections": self.total_redirections,
            # list of pairs keeps mapping order through any JSON backend
            "url_mapping": [[src, dst] for src, dst in self.url_mapping.items()],
            "content_analysis": self.content_analysis,
            "redirect_chains_resolved": self.redirect_chains_resolved,
            "unresolved": list(self.unresolved),
            "skipped_patterns": self.skipped_patterns,
            "analyzed_at": self.analyzed_at,
            "top_redirections": [dict(entry) for entry in self.top_redirections],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            total_redirections=int(data.get("total_redirections", 0)),
            url_mapping={src: dst for src, dst in data.get("url_mapping", [])},
            content_analysis=dict(data.get("content_analysis", {})),
            redirect_chains_resolved=int(data.get("redirect_chains_resolved", 0)),
            unresolved=list(data.get("unresolved", [])),
            skipped_patterns=int(data.get("skipped_patterns", 0)),
            analyzed_at=data.get("analyzed_at") or now_iso(),
            top_redirections=[dict(entry) for entry in data.get("top_redirections", [])],
        )


@dataclass
class JobOptions:
    content_types: List[str] = field(default_factory=lambda: list(CONTENT_TYPES))
    batch_size: int = 10
    dry_run: bool = True
    create_backup: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_types": list(self.content_types),
            "batch_size": self.batch_size,
            "dry_run": self.dry_run,
            "create_backup": self.create_backup,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobOptions":
        defaults = cls()
        return cls(
            content_types=list(data.get("content_types", defaults.content_types)),
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            dry_run=bool(data.get("dry_run", defaults.dry_run)),
            create_backup=bool(data.get("create_backup", defaults.create_backup)),
        )

    @property
    def writes_backups(self) -> bool:
        return self.create_backup and not self.dry_run


def empty_results() -> Dict[str, int]:
    return {
        "posts_updated": 0,
        "meta_updated": 0,
        "options_updated": 0,
        "urls_replaced": 0,
        "failed_writes": 0,
    }


@dataclass
class Job:
    id: str
    options: JobOptions
    status: JobStatus = JobStatus.PENDING
    started_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None
    results: Dict[str, int] = field(default_factory=empty_results)
    progress: Dict[str, int] = field(
        default_factory=lambda: {"next_offset": 0, "total_mappings": 0, "batches_processed": 0}
    )
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        # logs are persisted as separate records
        return {
            "id": self.id,
            "status": self.status.value,
            "options": self.options.to_dict(),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "results": dict(self.results),
            "progress": dict(self.progress),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        results = empty_results()
        results.update(data.get("results", {}))
        return cls(
            id=data["id"],
            options=JobOptions.from_dict(data.get("options", {})),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            started_at=data.get("started_at") or now_iso(),
            finished_at=data.get("finished_at"),
            results=results,
            progress=dict(data.get("progress", {})),
            error=data.get("error"),
        )


@dataclass
class BatchResult:
    batch_start: int
    batch_end: int
    total_mappings: int
    is_complete: bool
    posts_updated: int = 0
    meta_updated: int = 0
    options_updated: int = 0
    urls_replaced: int = 0
    failed_writes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_start": self.batch_start,
            "batch_end": self.batch_end,
            "posts_updated": self.posts_updated,
            "meta_updated": self.meta_updated,
            "options_updated": self.options_updated,
            "urls_replaced": self.urls_replaced,
            "failed_writes": self.failed_writes,
            "total_mappings": self.total_mappings,
            "is_complete": self.is_complete,
        }


@dataclass
class BackupSnapshot:
    job_id: str
    content_id: str
    original_value: Dict[str, str]
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "content_id": self.content_id,
            "original_value": dict(self.original_value),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSnapshot":
        return cls(
            job_id=data["job_id"],
            content_id=data["content_id"],
            original_value=dict(data.get("original_value", {})),
            created_at=data.get("created_at") or now_iso(),
        )

    def to_item(self) -> ContentItem:
        content_type, _, item_id = self.content_id.partition(":")
        return ContentItem(content_type, item_id, dict(self.original_value))
