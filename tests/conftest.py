"""
Pytest configuration and shared fixtures.
"""

import pytest
from pathlib import Path
from typing import Callable, Dict, Optional

from linksweep.config import Settings
from linksweep.content import SqlContentStore
from linksweep.database import Post, PostMeta, SiteOption, init_database, get_session
from linksweep.engine import CleanupEngine, build_engine
from linksweep.logger import configure_logger
from linksweep.models import ComparisonKind, ContentItem, RedirectRule, RulePattern

SCENARIO_POST = '<p>See <a href="/old-page">the old page</a> for details.</p>'


class FlakyContentStore(SqlContentStore):
    """SQL content store whose writes can be made to fail per item id."""

    def __init__(self, db_path: Path):
        super().__init__(db_path)
        self.fail_ids = set()
        self.fail_scans = False

    def iter_items(self, content_type: str, page_size: int = 50):
        if self.fail_scans:
            raise RuntimeError("content store unavailable")
        return super().iter_items(content_type, page_size)

    def save_item(self, item: ContentItem) -> None:
        if item.item_id in self.fail_ids:
            raise RuntimeError(f"write refused for {item.content_id}")
        super().save_item(item)


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Keep test runs off the console and out of ./logs."""
    configure_logger(level="DEBUG", log_dir=tmp_path / "logs", enable_console=False)


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "linksweep.db"


@pytest.fixture
def settings(tmp_path, db_path) -> Settings:
    return Settings(
        db_path=db_path,
        site_url="https://example.com",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def engine(settings) -> CleanupEngine:
    return build_engine(settings, configure_logging=False)


@pytest.fixture
def flaky_store(db_path) -> FlakyContentStore:
    return FlakyContentStore(db_path)


@pytest.fixture
def flaky_engine(settings, flaky_store) -> CleanupEngine:
    return build_engine(settings, content_store=flaky_store, configure_logging=False)


@pytest.fixture
def seed_content(db_path) -> Callable:
    """Insert posts (id -> content), meta (id -> value) and options (name -> value)."""

    def _seed(
        posts: Optional[Dict[int, str]] = None,
        meta: Optional[Dict[int, str]] = None,
        options: Optional[Dict[str, str]] = None,
        drafts: Optional[Dict[int, str]] = None,
    ) -> None:
        init_database(db_path)
        session = get_session(db_path)
        try:
            for post_id, content in (posts or {}).items():
                session.add(Post(id=post_id, post_content=content, post_excerpt=""))
            for post_id, content in (drafts or {}).items():
                session.add(Post(id=post_id, post_status="draft", post_content=content, post_excerpt=""))
            for meta_id, value in (meta or {}).items():
                session.add(PostMeta(meta_id=meta_id, post_id=1, meta_key=f"field_{meta_id}", meta_value=value))
            for name, value in (options or {}).items():
                session.add(SiteOption(option_name=name, option_value=value))
            session.commit()
        finally:
            session.close()

    return _seed


@pytest.fixture
def add_rules(engine) -> Callable:
    """Add Exact redirect rules given as (source, destination) pairs."""

    def _add(*pairs, comparison: ComparisonKind = ComparisonKind.EXACT) -> None:
        for source, destination in pairs:
            engine.rule_store.add_rule(
                RedirectRule(patterns=[RulePattern(source, comparison)], destination=destination)
            )

    return _add


@pytest.fixture
def scenario(engine, seed_content, add_rules) -> CleanupEngine:
    """Two chained rules, one post linking to the start of the chain, fresh analysis."""
    add_rules(("/old-page", "/new-page"), ("/new-page", "/final-page"))
    seed_content(posts={1: SCENARIO_POST})
    engine.analyze_redirections()
    return engine


@pytest.fixture
def crawl_report(tmp_path) -> Path:
    """Crawl report CSV in the crawler's export format."""
    report = tmp_path / "redirects.csv"
    report.write_text(
        "Source,Redirected URL,Final URL,Status Code\n"
        "https://example.com/blog/,https://example.com/old-post/,https://example.com/new-post/,301\n"
        "https://example.com/about/,https://example.com/old-post/,https://example.com/new-post/,301\n"
        "https://example.com/,https://example.com/team,https://example.com/about/team/,301\n"
        "https://example.com/,/relative-only,https://example.com/x/,301\n",
        encoding="utf-8",
    )
    return report
