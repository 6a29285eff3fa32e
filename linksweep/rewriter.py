"""
URL substitution inside a single content value.

``ContentRewriter.replace_urls`` swaps every literal occurrence of a mapped
source URL for its destination. Matches are anchored on URL boundaries so a
source never matches inside a longer path (``/page`` inside ``/page-extra`` or
``/blog/page``), and longer spellings win over shorter ones.

``ContentRewriter.fix_malformed_urls`` repairs artifacts left behind by naive
string replacement: duplicated protocols, an absolute URL nested inside
another URL's path (plain or percent-encoded), and duplicate slashes in URL
paths. Running it on already-clean content changes nothing.
"""

import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from .normalize import url_variants

# Characters that continue a URL token on either side of a match; "<" before
# a slash starts a closing tag.
_BEFORE = r"(?<![\w\-.~%/:@<])"
_AFTER = r"(?![\w\-.~%/@])"

_DUP_PROTOCOL_RE = re.compile(r"(?:https?://)+(https?://)", re.IGNORECASE)
_NESTED_RE = re.compile(
    r"https?://([^/\s\"'<>]+)[^\s\"'<>]*?/(https?://([^/\s\"'<>]+))", re.IGNORECASE
)
_ENCODED_NESTED_RE = re.compile(
    r"https?://([^/\s\"'<>]+)[^\s\"'<>]*?/(https?%3A%2F%2F[^\s\"'<>]*)", re.IGNORECASE
)
_ABSOLUTE_URL_RE = re.compile(r"(https?://[^/\s\"'<>]+)(/[^\s\"'<>]*)", re.IGNORECASE)
_RELATIVE_ATTR_RE = re.compile(r"(\b(?:href|src)\s*=\s*[\"'])(/[^/\"'][^\"']*)", re.IGNORECASE)
_PATH_SLASHES_RE = re.compile(r"(?<!:)/{2,}")
_AUTHORITY_RE = re.compile(r"(?:https?:)?//[^/?#]*", re.IGNORECASE)

_MAX_REPAIR_PASSES = 10


def _slash_tolerant(variant: str) -> str:
    """Regex for ``variant`` where each slash of its path may be repeated."""
    authority = _AUTHORITY_RE.match(variant)
    head = authority.group(0) if authority else ""
    rest = variant[len(head):]
    cut = len(rest)
    for marker in ("?", "#"):
        index = rest.find(marker)
        if index != -1:
            cut = min(cut, index)
    path, tail = rest[:cut], rest[cut:]
    return re.escape(head) + "/+".join(re.escape(segment) for segment in path.split("/")) + re.escape(tail)


def _collapse_path(url_path: str) -> str:
    """Collapse duplicate slashes before any query string or fragment."""
    cut = len(url_path)
    for marker in ("?", "#"):
        index = url_path.find(marker)
        if index != -1:
            cut = min(cut, index)
    return _PATH_SLASHES_RE.sub("/", url_path[:cut]) + url_path[cut:]


class ContentRewriter:
    def __init__(self, site_hosts: Optional[Iterable[str]] = None):
        self.site_hosts = [h.lower() for h in (site_hosts or [])]

    def replacement_table(self, mapping: Dict[str, str]) -> Dict[str, str]:
        """Map every literal spelling of each source to its replacement text."""
        table: Dict[str, str] = {}
        for source, destination in mapping.items():
            for variant in url_variants(source, self.site_hosts):
                if variant not in table:
                    table[variant] = self._replacement_for(variant, source, destination)
        return table

    def _replacement_for(self, variant: str, source: str, destination: str) -> str:
        replacement = destination
        parsed = urlparse(variant)
        source_is_path = source.startswith("/") and not source.startswith("//")
        if source_is_path and parsed.scheme and destination.startswith("/"):
            replacement = f"{parsed.scheme}://{parsed.netloc}{destination}"
        keeps_slash = variant.endswith("/") and not source.endswith("/")
        if keeps_slash and not replacement.endswith("/") and not any(c in replacement for c in "?#"):
            replacement += "/"
        return replacement

    def replace_urls(self, content: str, mapping: Dict[str, str]) -> Tuple[str, int]:
        """
        Replace mapped URLs in ``content``.

        Duplicate slashes inside a path (``/blog//old-page``) still match.
        Text that already holds the replacement is left alone, so a redirect
        that only appends a query or fragment (``/page -> /page?ref=1``) does
        not grow on every run.

        Args:
            content: Text to rewrite (HTML, serialized meta, plain text)
            mapping: Normalized source -> destination URLs

        Returns:
            Tuple of (new_content, number_of_replacements)
        """
        if not content or not mapping:
            return content, 0

        full_table = self.replacement_table(mapping)
        collapsed = _PATH_SLASHES_RE.sub("/", content)
        variants = sorted((v for v in full_table if v in collapsed), key=len, reverse=True)
        if not variants:
            return content, 0

        alternatives = []
        for index, variant in enumerate(variants):
            rests = sorted(
                {r[len(variant):] for r in full_table.values() if r.startswith(variant) and r != variant},
                key=len,
                reverse=True,
            )
            guard = "(?!" + "|".join(re.escape(rest) for rest in rests) + ")" if rests else ""
            alternatives.append(f"(?P<v{index}>{_slash_tolerant(variant)}{guard})")
        pattern = re.compile(_BEFORE + "(?:" + "|".join(alternatives) + ")" + _AFTER)

        count = 0

        def _swap(match: "re.Match[str]") -> str:
            nonlocal count
            count += 1
            return full_table[variants[int(match.lastgroup[1:])]]

        return pattern.sub(_swap, content), count

    def fix_malformed_urls(self, content: str) -> Tuple[str, int]:
        """
        Repair URL artifacts in ``content``.

        Returns:
            Tuple of (fixed_content, number_of_fixes)
        """
        if not content:
            return content, 0

        total = 0
        for _ in range(_MAX_REPAIR_PASSES):
            fixed, count = self._repair_pass(content)
            if count == 0:
                break
            total += count
            content = fixed
        return content, total

    def _repair_pass(self, content: str) -> Tuple[str, int]:
        count = 0

        def counting(fix: Callable[["re.Match[str]"], str]) -> Callable[["re.Match[str]"], str]:
            def wrapper(match: "re.Match[str]") -> str:
                nonlocal count
                replacement = fix(match)
                if replacement != match.group(0):
                    count += 1
                return replacement
            return wrapper

        def nested(match: "re.Match[str]") -> str:
            if match.group(1).lower() == match.group(3).lower():
                return match.group(2)
            return match.group(0)

        def encoded_nested(match: "re.Match[str]") -> str:
            inner = unquote(match.group(2))
            if urlparse(inner).netloc.lower() == match.group(1).lower():
                return inner
            return match.group(0)

        def absolute(match: "re.Match[str]") -> str:
            return match.group(1) + _collapse_path(match.group(2))

        def relative(match: "re.Match[str]") -> str:
            return match.group(1) + _collapse_path(match.group(2))

        content = _DUP_PROTOCOL_RE.sub(counting(lambda m: m.group(1)), content)
        content = _ENCODED_NESTED_RE.sub(counting(encoded_nested), content)
        content = _NESTED_RE.sub(counting(nested), content)
        content = _ABSOLUTE_URL_RE.sub(counting(absolute), content)
        content = _RELATIVE_ATTR_RE.sub(counting(relative), content)
        return content, count


def apply_to_fields(
    fields: Dict[str, str], rewrite: Callable[[str], Tuple[str, int]]
) -> Tuple[Dict[str, str], int, List[str]]:
    """Run ``rewrite`` on every field; return new fields, total count, changed field names."""
    new_fields = dict(fields)
    total = 0
    changed: List[str] = []
    for name, value in fields.items():
        if not isinstance(value, str) or not value:
            continue
        new_value, count = rewrite(value)
        if count and new_value != value:
            new_fields[name] = new_value
            total += count
            changed.append(name)
    return new_fields, total, changed
