"""
Key-value persistence for engine state.

Jobs, job log lines, backup snapshots and the cached analysis are each stored
as one JSON record under a string key. Two backends are provided: a SQLite
table (the default) and a single JSON file.
"""

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .database import KeyValueEntry, get_session, init_database


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def list_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        ...


def _expiry(ttl: Optional[int]) -> Optional[datetime]:
    if ttl is None:
        return None
    return datetime.now() + timedelta(seconds=ttl)


def _is_expired(expires_at: Optional[datetime]) -> bool:
    return expires_at is not None and expires_at <= datetime.now()


class SqlKeyValueStore:
    """Key-value store over the ``kv_entries`` table."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        init_database(db_path)

    def get(self, key: str, default: Any = None) -> Any:
        session = get_session(self.db_path)
        try:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                return default
            if _is_expired(entry.expires_at):
                session.delete(entry)
                session.commit()
                return default
            return json.loads(entry.value)
        finally:
            session.close()

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        session = get_session(self.db_path)
        try:
            session.merge(
                KeyValueEntry(
                    key=key,
                    value=json.dumps(value, ensure_ascii=False),
                    expires_at=_expiry(ttl),
                    updated_at=datetime.now(),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, key: str) -> bool:
        session = get_session(self.db_path)
        try:
            removed = session.query(KeyValueEntry).filter_by(key=key).delete()
            session.commit()
            return removed > 0
        finally:
            session.close()

    def list_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        session = get_session(self.db_path)
        try:
            escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            entries = (
                session.query(KeyValueEntry)
                .filter(KeyValueEntry.key.like(f"{escaped}%", escape="\\"))
                .order_by(KeyValueEntry.key)
                .all()
            )
            return [
                (entry.key, json.loads(entry.value))
                for entry in entries
                # LIKE is case-insensitive in SQLite
                if entry.key.startswith(prefix) and not _is_expired(entry.expires_at)
            ]
        finally:
            session.close()


def load_store(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {"entries": {}}
    try:
        with path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
            if not content:
                return {"entries": {}}
            return json.loads(content)
    except (json.JSONDecodeError, IOError):
        return {"entries": {}}


def save_store(path: Path, store: Dict[str, Any]) -> None:
    """Write ``store`` to a sibling temp file, then swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp.{os.getpid()}")
    try:
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(store, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class JsonFileKeyValueStore:
    """Key-value store kept in one JSON file. Single-process use only."""

    def __init__(self, path: Path):
        self.path = path

    def _live_entries(self) -> Dict[str, Dict[str, Any]]:
        entries = load_store(self.path).setdefault("entries", {})
        live = {}
        for key, entry in entries.items():
            expires_at = entry.get("expires_at")
            if expires_at and _is_expired(datetime.fromisoformat(expires_at)):
                continue
            live[key] = entry
        return live

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live_entries().get(key)
        return default if entry is None else entry["value"]

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        entries = self._live_entries()
        expires_at = _expiry(ttl)
        entries[key] = {
            "value": value,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }
        save_store(self.path, {"entries": entries})

    def delete(self, key: str) -> bool:
        entries = self._live_entries()
        if key not in entries:
            return False
        del entries[key]
        save_store(self.path, {"entries": entries})
        return True

    def list_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        entries = self._live_entries()
        return [
            (key, entries[key]["value"])
            for key in sorted(entries)
            if key.startswith(prefix)
        ]
