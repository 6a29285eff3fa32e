"""
Redirect rule store.

Rules are owned by the site's redirect manager; the engine only reads them.
``import_crawl_report`` seeds the table from a site-crawler export, where every
row records a link that answered with a redirect (``Redirected URL``) and the
URL the redirect finally landed on (``Final URL``).
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .database import RedirectRuleRecord, get_session, init_database
from .logger import get_logger
from .models import ComparisonKind, RedirectRule, RulePattern, RuleStatus
from .schema import validate_rule

logger = get_logger()

REDIRECTED_COLUMN_NAMES = ["redirected url", "redirected_url"]
FINAL_COLUMN_NAMES = ["final url", "final_url"]


class RuleStore(Protocol):
    def load_rules(self) -> List[RedirectRule]:
        ...


def _find_column(headers: List[str], names: List[str]) -> Optional[int]:
    for index, header in enumerate(headers):
        normalized = header.strip().lower()
        if any(name in normalized for name in names):
            return index
    return None


def _is_absolute_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://")) and len(value.split("://", 1)[1]) > 0


class SqlRuleStore:
    """Rule store over the ``redirect_rules`` table."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        init_database(db_path)

    def load_rules(self) -> List[RedirectRule]:
        session = get_session(self.db_path)
        try:
            records = session.query(RedirectRuleRecord).order_by(RedirectRuleRecord.id).all()
            rules = []
            for record in records:
                try:
                    patterns = [RulePattern.from_dict(p) for p in json.loads(record.patterns)]
                except (json.JSONDecodeError, ValueError, TypeError) as e:
                    logger.warning("Skipping rule with unreadable patterns", rule_id=record.id, error=str(e))
                    continue
                rules.append(
                    RedirectRule(
                        patterns=patterns,
                        destination=record.destination,
                        header_code=record.header_code,
                        hits=record.hits,
                        status=RuleStatus(record.status),
                    )
                )
            return rules
        finally:
            session.close()

    def add_rule(self, rule: RedirectRule) -> int:
        data = {
            "patterns": [p.to_dict() for p in rule.patterns],
            "destination": rule.destination,
        }
        errors = validate_rule(data)
        if errors:
            raise ValueError("; ".join(errors))

        session = get_session(self.db_path)
        try:
            record = RedirectRuleRecord(
                patterns=json.dumps(data["patterns"]),
                destination=rule.destination,
                header_code=rule.header_code,
                hits=rule.hits,
                status=rule.status.value,
            )
            session.add(record)
            session.commit()
            return record.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def import_crawl_report(self, csv_path: Path) -> Dict[str, Any]:
        """
        Add one Exact rule per distinct redirected URL in a crawl report.

        Args:
            csv_path: CSV export with "Redirected URL" and "Final URL" columns

        Returns:
            Stats dict: total_rows, unique_urls, total_occurrences, rules_added

        Raises:
            FileNotFoundError: If the report does not exist
            ValueError: If the required columns are missing
        """
        if not csv_path.exists():
            raise FileNotFoundError(f"Crawl report not found: {csv_path}")

        with csv_path.open("r", encoding="utf-8-sig", newline="") as f:
            reader = csv.reader(f)
            headers = next(reader, None)
            if not headers:
                raise ValueError("Invalid CSV format - no headers found.")

            redirected_index = _find_column(headers, REDIRECTED_COLUMN_NAMES)
            final_index = _find_column(headers, FINAL_COLUMN_NAMES)
            if redirected_index is None or final_index is None:
                raise ValueError(
                    'Required columns not found. CSV must contain "Redirected URL" and "Final URL" columns.'
                )

            mappings: Dict[str, Dict[str, Any]] = {}
            total_rows = 0
            total_occurrences = 0
            for row in reader:
                total_rows += 1
                if len(row) <= max(redirected_index, final_index):
                    continue
                redirected = row[redirected_index].strip()
                final = row[final_index].strip()
                if not _is_absolute_url(redirected) or not _is_absolute_url(final):
                    continue
                entry = mappings.setdefault(redirected, {"final_url": final, "occurrences": 0})
                entry["occurrences"] += 1
                total_occurrences += 1

        rules_added = 0
        for redirected, entry in mappings.items():
            self.add_rule(
                RedirectRule(
                    patterns=[RulePattern(redirected, ComparisonKind.EXACT)],
                    destination=entry["final_url"],
                    hits=entry["occurrences"],
                )
            )
            rules_added += 1

        stats = {
            "total_rows": total_rows,
            "unique_urls": len(mappings),
            "total_occurrences": total_occurrences,
            "rules_added": rules_added,
        }
        logger.info(
            f"Crawl report imported: {len(mappings)} unique redirections",
            path=str(csv_path),
            **stats,
        )
        return stats
