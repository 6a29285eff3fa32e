"""
Content store access.

The cleanup scans and rewrites three kinds of site content, mirroring the CMS
tables they live in:

- ``posts``: published post body and excerpt
- ``postmeta``: custom field values (page-builder data, ACF values, ...)
- ``options``: site configuration values (widgets, theme settings, ...)

Every item is read and written as a whole so a write never leaves one field
of an item updated and another stale.
"""

from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol

from .database import Post, PostMeta, SiteOption, get_session, init_database
from .models import CONTENT_TYPES, ContentItem


class ContentStore(Protocol):
    def iter_items(self, content_type: str, page_size: int = 50) -> Iterator[ContentItem]:
        ...

    def get_item(self, content_type: str, item_id: str) -> Optional[ContentItem]:
        ...

    def save_item(self, item: ContentItem) -> None:
        ...


# content_type -> (model, primary key column, editable columns)
_TABLES = {
    "posts": (Post, "id", ("post_content", "post_excerpt")),
    "postmeta": (PostMeta, "meta_id", ("meta_value",)),
    "options": (SiteOption, "option_id", ("option_value",)),
}


def _table_for(content_type: str):
    if content_type not in _TABLES:
        raise ValueError(
            f"Unknown content type: {content_type!r} (expected one of {', '.join(CONTENT_TYPES)})"
        )
    return _TABLES[content_type]


class SqlContentStore:
    """Content store over the ``posts``, ``postmeta`` and ``options`` tables."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        init_database(db_path)

    def _to_item(self, content_type: str, row) -> ContentItem:
        _, pk, columns = _table_for(content_type)
        fields: Dict[str, str] = {column: getattr(row, column) or "" for column in columns}
        return ContentItem(content_type, str(getattr(row, pk)), fields)

    def _base_query(self, session, content_type: str):
        model, pk, _ = _table_for(content_type)
        query = session.query(model)
        if content_type == "posts":
            query = query.filter(Post.post_status == "publish")
        return query.order_by(getattr(model, pk))

    def iter_items(self, content_type: str, page_size: int = 50) -> Iterator[ContentItem]:
        """Yield items ordered by id, reading ``page_size`` rows at a time."""
        model, pk, _ = _table_for(content_type)
        last_id = None
        while True:
            session = get_session(self.db_path)
            try:
                query = self._base_query(session, content_type)
                if last_id is not None:
                    query = query.filter(getattr(model, pk) > last_id)
                rows = query.limit(page_size).all()
                items = [self._to_item(content_type, row) for row in rows]
            finally:
                session.close()

            for item in items:
                yield item
            if len(rows) < page_size:
                return
            last_id = getattr(rows[-1], pk)

    def get_item(self, content_type: str, item_id: str) -> Optional[ContentItem]:
        model, _, _ = _table_for(content_type)
        session = get_session(self.db_path)
        try:
            row = session.get(model, int(item_id))
            return None if row is None else self._to_item(content_type, row)
        finally:
            session.close()

    def save_item(self, item: ContentItem) -> None:
        """Persist all fields of ``item`` in one transaction."""
        model, _, columns = _table_for(item.content_type)
        session = get_session(self.db_path)
        try:
            row = session.get(model, int(item.item_id))
            if row is None:
                raise LookupError(f"Content item not found: {item.content_id}")
            for column in columns:
                if column in item.fields:
                    setattr(row, column, item.fields[column])
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
