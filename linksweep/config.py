"""
Runtime settings read from the environment.

Values come from process environment variables (optionally seeded from a
``.env`` file via :func:`linksweep.env.load_env`). Every setting has a default
so the engine runs with no configuration at all.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

DEFAULT_DB_PATH = "data/linksweep.db"
DEFAULT_CACHE_TTL = 300
DEFAULT_MAX_HOPS = 10
DEFAULT_BATCH_SIZE = 10
DEFAULT_SCAN_PAGE_SIZE = 50
DEFAULT_RETENTION_DAYS = 30

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class Settings:
    db_path: Path = Path(DEFAULT_DB_PATH)
    kv_path: Optional[Path] = None
    site_url: Optional[str] = None
    cache_ttl: int = DEFAULT_CACHE_TTL
    max_hops: int = DEFAULT_MAX_HOPS
    batch_size: int = DEFAULT_BATCH_SIZE
    scan_page_size: int = DEFAULT_SCAN_PAGE_SIZE
    exclusive_live_jobs: bool = True
    backup_retention_days: int = DEFAULT_RETENTION_DAYS
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    extra_site_hosts: List[str] = field(default_factory=list)
    wp_username: Optional[str] = None
    wp_app_password: Optional[str] = None

    @property
    def site_hosts(self) -> List[str]:
        """Hosts whose absolute URLs are treated as internal paths."""
        hosts = [h.lower() for h in self.extra_site_hosts if h]
        if self.site_url:
            host = urlparse(self.site_url).netloc.lower()
            if host and host not in hosts:
                hosts.insert(0, host)
        return hosts


def load_settings() -> Settings:
    """Build settings from LINKSWEEP_* environment variables."""
    extra_hosts = os.getenv("LINKSWEEP_SITE_HOSTS", "")
    kv_path = os.getenv("LINKSWEEP_KV_PATH", "").strip()
    return Settings(
        db_path=Path(os.getenv("LINKSWEEP_DB_PATH", DEFAULT_DB_PATH)),
        kv_path=Path(kv_path) if kv_path else None,
        site_url=os.getenv("LINKSWEEP_SITE_URL") or None,
        cache_ttl=_env_int("LINKSWEEP_CACHE_TTL", DEFAULT_CACHE_TTL),
        max_hops=_env_int("LINKSWEEP_MAX_HOPS", DEFAULT_MAX_HOPS),
        batch_size=_env_int("LINKSWEEP_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        scan_page_size=_env_int("LINKSWEEP_SCAN_PAGE_SIZE", DEFAULT_SCAN_PAGE_SIZE),
        exclusive_live_jobs=_env_bool("LINKSWEEP_EXCLUSIVE_LIVE_JOBS", True),
        backup_retention_days=_env_int("LINKSWEEP_BACKUP_RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
        log_level=os.getenv("LINKSWEEP_LOG_LEVEL", "INFO"),
        log_dir=Path(os.getenv("LINKSWEEP_LOG_DIR", "logs")),
        extra_site_hosts=[h.strip() for h in extra_hosts.split(",") if h.strip()],
        wp_username=os.getenv("LINKSWEEP_WP_USER") or None,
        wp_app_password=os.getenv("LINKSWEEP_WP_APP_PASSWORD") or None,
    )
