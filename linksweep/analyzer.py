"""
Redirect analysis: turn the rule table into a chain-free URL mapping.

Every active Exact pattern contributes one edge ``source -> destination``.
Edges are followed until the destination is no longer itself a source, so
``A -> B -> C`` collapses to ``A -> C``. Chains that loop, or that are still
unresolved after ``max_hops`` lookups, are dropped and reported rather than
guessed. The result is cached in the key-value store for ``cache_ttl``
seconds.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from .content import ContentStore
from .logger import get_logger
from .models import CONTENT_TYPES, AnalysisResult, ComparisonKind, RedirectRule, now_iso
from .normalize import is_url_path, normalize_url
from .rewriter import ContentRewriter
from .rules import RuleStore
from .storage import KeyValueStore

logger = get_logger()

ANALYSIS_KEY = "analysis"
LINK_ATTRIBUTES = ("href", "src")
TOP_REDIRECTIONS_LIMIT = 10


def empty_content_analysis(content_types: Iterable[str] = CONTENT_TYPES) -> Dict[str, Any]:
    analysis: Dict[str, Any] = {content_type: 0 for content_type in content_types}
    analysis.update({"total": 0, "occurrences": 0, "links": 0})
    return analysis


class RedirectAnalyzer:
    def __init__(
        self,
        rule_store: RuleStore,
        kv: KeyValueStore,
        content_store: Optional[ContentStore] = None,
        site_hosts: Optional[Iterable[str]] = None,
        max_hops: int = 10,
        cache_ttl: int = 300,
        content_types: Iterable[str] = CONTENT_TYPES,
        scan_page_size: int = 50,
    ):
        self.rule_store = rule_store
        self.kv = kv
        self.content_store = content_store
        self.site_hosts = list(site_hosts or [])
        self.max_hops = max_hops
        self.cache_ttl = cache_ttl
        self.content_types = list(content_types)
        self.scan_page_size = scan_page_size
        self.rewriter = ContentRewriter(self.site_hosts)

    def _build_edges(self, active: List[RedirectRule]) -> Tuple[Dict[str, str], int]:
        """Return (edges, skipped patterns) for the active rules."""
        edges: Dict[str, str] = {}
        skipped = 0

        for rule in active:
            if not is_url_path(rule.destination):
                skipped += len(rule.patterns)
                logger.debug("Skipping rule with non-URL destination", destination=rule.destination)
                continue
            destination = normalize_url(rule.destination, self.site_hosts)

            for pattern in rule.patterns:
                if pattern.comparison != ComparisonKind.EXACT or not is_url_path(pattern.value):
                    skipped += 1
                    logger.debug(
                        "Skipping pattern that cannot be substituted literally",
                        pattern=pattern.value,
                        comparison=pattern.comparison.value,
                    )
                    continue
                source = normalize_url(pattern.value, self.site_hosts)
                if source == "/" or source == destination:
                    skipped += 1
                    continue
                if source in edges:
                    if edges[source] != destination:
                        logger.warning(
                            "Conflicting redirect rules; keeping the first",
                            source=source,
                            kept=edges[source],
                            ignored=destination,
                        )
                    continue
                edges[source] = destination

        return edges, skipped

    @staticmethod
    def top_redirections(
        active: List[RedirectRule], limit: int = TOP_REDIRECTIONS_LIMIT
    ) -> List[Dict[str, Any]]:
        """Most-hit rules first; ties keep rule table order."""
        ranked = sorted((rule for rule in active if rule.patterns), key=lambda rule: rule.hits, reverse=True)
        return [
            {"source": rule.patterns[0].value, "destination": rule.destination, "hits": rule.hits}
            for rule in ranked[:limit]
        ]

    def _resolve(self, edges: Dict[str, str]) -> Tuple[Dict[str, str], int, List[str]]:
        mapping: Dict[str, str] = {}
        unresolved: List[str] = []
        chains = 0

        for source, destination in edges.items():
            current = destination
            seen = {source}
            hops = 0
            resolved = True
            while current in edges:
                if current in seen or hops >= self.max_hops:
                    resolved = False
                    break
                seen.add(current)
                current = edges[current]
                hops += 1

            if not resolved:
                unresolved.append(source)
                logger.warning(
                    "Unresolved redirect chain dropped",
                    source=source,
                    hops=hops,
                    reason="loop" if current in seen else "hop_limit",
                )
                continue
            mapping[source] = current
            if hops:
                chains += 1

        return mapping, chains, unresolved

    def analyze_redirections(self) -> AnalysisResult:
        """Rebuild the mapping from the rule store and refresh the cache."""
        active = [rule for rule in self.rule_store.load_rules() if rule.is_active]
        edges, skipped = self._build_edges(active)
        mapping, chains, unresolved = self._resolve(edges)

        if self.content_store is not None and mapping:
            content_analysis = self.analyze_content(mapping)
        else:
            content_analysis = empty_content_analysis(self.content_types)

        result = AnalysisResult(
            total_redirections=len(active),
            url_mapping=mapping,
            content_analysis=content_analysis,
            redirect_chains_resolved=chains,
            unresolved=unresolved,
            skipped_patterns=skipped,
            analyzed_at=now_iso(),
            top_redirections=self.top_redirections(active),
        )
        self.kv.set(ANALYSIS_KEY, result.to_dict(), ttl=self.cache_ttl)

        logger.info(
            f"Redirect analysis complete: {len(mapping)} mappings",
            total_redirections=len(active),
            chains_resolved=chains,
            unresolved=len(unresolved),
            skipped_patterns=skipped,
        )
        return result

    def get_cached_analysis(self) -> Optional[AnalysisResult]:
        """Cached result if still inside the freshness window, else None."""
        data = self.kv.get(ANALYSIS_KEY)
        if not data:
            return None
        result = AnalysisResult.from_dict(data)
        try:
            analyzed_at = datetime.fromisoformat(result.analyzed_at)
        except ValueError:
            return None
        if datetime.now() - analyzed_at > timedelta(seconds=self.cache_ttl):
            return None
        return result

    def get_analysis_data(self) -> AnalysisResult:
        cached = self.get_cached_analysis()
        if cached is not None:
            return cached
        return self.analyze_redirections()

    def invalidate(self) -> None:
        self.kv.delete(ANALYSIS_KEY)

    def _count_links(self, value: str, mapping: Dict[str, str]) -> int:
        if "<" not in value:
            return 0
        soup = BeautifulSoup(value, "html.parser")
        links = 0
        for attribute in LINK_ATTRIBUTES:
            for tag in soup.find_all(attrs={attribute: True}):
                target = tag.get(attribute)
                if isinstance(target, str) and normalize_url(target, self.site_hosts) in mapping:
                    links += 1
        return links

    def analyze_content(self, mapping: Dict[str, str]) -> Dict[str, Any]:
        """
        Count content that still references superseded URLs.

        Per content type: the number of items with at least one occurrence.
        ``occurrences`` counts every literal occurrence, ``links`` only those
        found in ``href``/``src`` attributes of HTML values.
        """
        analysis = empty_content_analysis(self.content_types)
        for content_type in self.content_types:
            for item in self.content_store.iter_items(content_type, self.scan_page_size):
                item_hits = 0
                for value in item.fields.values():
                    if not value:
                        continue
                    _, count = self.rewriter.replace_urls(value, mapping)
                    if count:
                        item_hits += count
                        analysis["links"] += self._count_links(value, mapping)
                if item_hits:
                    analysis[content_type] += 1
                    analysis["occurrences"] += item_hits
        analysis["total"] = sum(analysis[content_type] for content_type in self.content_types)
        return analysis
