"""
Content store backed by the WordPress REST API.

Only published posts are exposed over ``/wp-json/wp/v2/posts``; post meta and
site options have no generic REST endpoint, so those content types yield
nothing here. Requests authenticate with an application password and are
retried with exponential backoff on timeouts, connection errors and
retryable HTTP statuses.
"""

from typing import Any, Dict, Iterator, Optional
from urllib.parse import urljoin

import requests
from requests.auth import HTTPBasicAuth

from .logger import get_logger
from .models import ContentItem
from .retry import exponential_backoff, parse_retry_after, should_retry_http_status

logger = get_logger()

REST_FIELDS = ("content", "excerpt")


class RetryableStatusError(requests.HTTPError):
    """HTTP response with a status worth retrying (5xx, 429, ...)."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        headers = getattr(self.response, "headers", None) or {}
        self.retry_after = parse_retry_after(headers.get("Retry-After"))


class WordPressContentStore:
    def __init__(
        self,
        site_url: str,
        username: Optional[str] = None,
        app_password: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.api_url = urljoin(site_url.rstrip("/") + "/", "wp-json/wp/v2/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if username and app_password:
            self.session.auth = HTTPBasicAuth(username, app_password)

        self._send = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.Timeout, requests.ConnectionError, RetryableStatusError),
            on_retry=self._on_retry,
        )(self._send_once)

    def _on_retry(self, attempt: int, error: Exception, delay: float):
        logger.warning(
            f"WordPress request failed, retrying in {delay:.1f}s",
            attempt=attempt,
            error=str(error),
        )

    def _send_once(self, method: str, path: str, **kwargs) -> requests.Response:
        response = self.session.request(method, self.api_url + path, timeout=self.timeout, **kwargs)
        if should_retry_http_status(response.status_code):
            raise RetryableStatusError(f"HTTP {response.status_code} for {path}", response=response)
        return response

    def _to_item(self, post: Dict[str, Any]) -> ContentItem:
        fields = {}
        for name in REST_FIELDS:
            value = post.get(name) or {}
            # raw is only present with context=edit
            fields[f"post_{name}"] = value.get("raw", value.get("rendered", "")) or ""
        return ContentItem("posts", str(post["id"]), fields)

    def iter_items(self, content_type: str, page_size: int = 50) -> Iterator[ContentItem]:
        if content_type != "posts":
            logger.debug("Content type not available over REST", content_type=content_type)
            return

        page = 1
        while True:
            response = self._send(
                "GET",
                "posts",
                params={"per_page": page_size, "page": page, "status": "publish", "context": "edit"},
            )
            # WordPress answers 400 once the page is past the last one
            if response.status_code == 400 and page > 1:
                return
            response.raise_for_status()

            posts = response.json()
            for post in posts:
                yield self._to_item(post)

            total_pages = int(response.headers.get("X-WP-TotalPages", 1))
            if not posts or page >= total_pages:
                return
            page += 1

    def get_item(self, content_type: str, item_id: str) -> Optional[ContentItem]:
        if content_type != "posts":
            return None
        response = self._send("GET", f"posts/{item_id}", params={"context": "edit"})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return self._to_item(response.json())

    def save_item(self, item: ContentItem) -> None:
        if item.content_type != "posts":
            raise ValueError(f"Content type not writable over REST: {item.content_type}")
        payload = {
            name: item.fields[f"post_{name}"]
            for name in REST_FIELDS
            if f"post_{name}" in item.fields
        }
        response = self._send("POST", f"posts/{item.item_id}", json=payload)
        response.raise_for_status()
        logger.debug("Post updated over REST", content_id=item.content_id)
