"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for engine state (key-value records), the redirect
rule table and the site content tables the cleanup rewrites.
"""

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from sqlalchemy import create_engine, Column, Integer, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class KeyValueEntry(Base):
    """Engine state record: jobs, job logs, backups, cached analysis."""

    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # JSON document
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class RedirectRuleRecord(Base):
    """Redirect rule as maintained by the redirect manager."""

    __tablename__ = "redirect_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patterns = Column(Text, nullable=False)  # JSON list of {value, comparison}
    destination = Column(String, nullable=False)
    header_code = Column(Integer, nullable=False, default=301)
    hits = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="active")


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True)
    post_status = Column(String, nullable=False, default="publish")
    post_content = Column(Text, nullable=False, default="")
    post_excerpt = Column(Text, nullable=False, default="")


class PostMeta(Base):
    __tablename__ = "postmeta"

    meta_id = Column(Integer, primary_key=True)
    post_id = Column(Integer, nullable=False, default=0)
    meta_key = Column(String, nullable=False, default="")
    meta_value = Column(Text, nullable=False, default="")


class SiteOption(Base):
    __tablename__ = "options"

    option_id = Column(Integer, primary_key=True)
    option_name = Column(String, nullable=False, unique=True)
    option_value = Column(Text, nullable=False, default="")


@lru_cache(maxsize=None)
def get_engine(db_path: Path):
    """
    Get (and memoize) the SQLAlchemy engine for a database file.

    Args:
        db_path: Path to SQLite database file
    """
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(get_engine(db_path))


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=get_engine(db_path))
    return Session()
