import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse

_URL_PATH_RE = re.compile(r"^(/|https?://)", re.IGNORECASE)
_MULTI_SLASH_RE = re.compile(r"/{2,}")
_DEFAULT_PORTS = {"http": "80", "https": "443"}


def is_url_path(value: str) -> bool:
    """True for relative paths (``/x``) and absolute http(s) URLs."""
    return bool(value) and bool(_URL_PATH_RE.match(value.strip()))


def collapse_slashes(path: str) -> str:
    return _MULTI_SLASH_RE.sub("/", path)


def canonical_path(path: str) -> str:
    """Collapse duplicate slashes and drop the trailing slash (root stays ``/``)."""
    path = collapse_slashes(path or "/")
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def _bare_host(netloc: str, scheme: str) -> str:
    host = netloc.lower()
    if ":" in host:
        name, port = host.rsplit(":", 1)
        if _DEFAULT_PORTS.get(scheme) == port:
            host = name
    return host


def _same_site(host: str, site_hosts: Iterable[str]) -> bool:
    host = host.removeprefix("www.")
    return any(host == h.lower().removeprefix("www.") for h in site_hosts)


def normalize_url(url: str, site_hosts: Optional[Iterable[str]] = None) -> str:
    """
    Canonical form used for every mapping key and value.

    Internal URLs (relative, or absolute on one of ``site_hosts``) are reduced
    to their path; external URLs stay absolute. Both get duplicate slashes
    collapsed and the trailing slash removed. Query and fragment are kept.
    Protocol-relative external URLs (``//cdn.example.org/x``) become https.
    Values that are not URL paths are returned stripped but otherwise untouched.
    """
    url = (url or "").strip()
    if not url:
        return url
    site_hosts = list(site_hosts or [])

    if url.startswith("//"):
        parsed = urlparse("http:" + url)
        scheme = ""
    else:
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if scheme not in ("http", "https") and not url.startswith("/"):
            return url

    path = canonical_path(parsed.path)
    suffix = ""
    if parsed.query:
        suffix += f"?{parsed.query}"
    if parsed.fragment:
        suffix += f"#{parsed.fragment}"

    if not parsed.netloc:
        return path + suffix

    host = _bare_host(parsed.netloc, scheme or "https")
    if _same_site(host, site_hosts):
        return path + suffix
    # Protocol-relative external URLs are pinned to https
    prefix = f"{scheme or 'https'}://"
    return f"{prefix}{host}{path}{suffix}"


def url_variants(url: str, site_hosts: Optional[Iterable[str]] = None) -> List[str]:
    """
    Spellings of a normalized URL that may appear literally in content.

    A path yields itself, its trailing-slash form, and the absolute http/https
    forms on every site host. An absolute URL yields both schemes with and
    without the trailing slash.
    """
    site_hosts = list(site_hosts or [])
    bases: List[str] = []
    if url.startswith("/") and not url.startswith("//"):
        bases.append(url)
        for host in site_hosts:
            for scheme in ("https", "http"):
                bases.append(f"{scheme}://{host.lower()}{url}")
    elif url.lower().startswith("https://"):
        bases.extend([url, "http://" + url[len("https://"):]])
    elif url.lower().startswith("http://"):
        bases.extend([url, "https://" + url[len("http://"):]])
    else:
        bases.append(url)

    variants: List[str] = []
    for base in bases:
        candidates = [base]
        if "?" not in base and "#" not in base:
            if base.endswith("/"):
                if urlparse(base).path not in ("", "/"):
                    candidates.append(base.rstrip("/"))
            else:
                candidates.append(base + "/")
        for candidate in candidates:
            if candidate not in variants:
                variants.append(candidate)
    return variants
