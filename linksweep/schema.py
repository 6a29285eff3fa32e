from typing import Any, Dict, List

from .models import CONTENT_TYPES, ComparisonKind
from .normalize import is_url_path

OPTION_BOOL_FIELDS = ["dry_run", "create_backup"]
MAX_BATCH_SIZE = 500


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def expand_content_types(content_types: List[str]) -> List[str]:
    """Resolve the ``all`` shorthand and drop duplicates, keeping order."""
    expanded: List[str] = []
    for content_type in content_types:
        names = CONTENT_TYPES if content_type in ("all", "all_tables") else (content_type,)
        for name in names:
            if name not in expanded:
                expanded.append(name)
    return expanded


def validate_job_options(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    content_types = data.get("content_types")
    if content_types is not None:
        if not isinstance(content_types, list) or not content_types:
            errors.append("Field 'content_types' must be a non-empty list")
        else:
            for content_type in expand_content_types(content_types):
                if content_type not in CONTENT_TYPES:
                    errors.append(
                        f"Unknown content type: {content_type!r} (expected one of {', '.join(CONTENT_TYPES)} or 'all')"
                    )

    batch_size = data.get("batch_size")
    if batch_size is not None:
        if isinstance(batch_size, bool) or not isinstance(batch_size, int):
            errors.append("Field 'batch_size' must be an integer")
        elif not 1 <= batch_size <= MAX_BATCH_SIZE:
            errors.append(f"Field 'batch_size' must be between 1 and {MAX_BATCH_SIZE}")

    for f in OPTION_BOOL_FIELDS:
        if f in data and not isinstance(data[f], bool):
            errors.append(f"Field '{f}' must be a boolean")

    return errors


def validate_rule(data: Dict[str, Any]) -> List[str]:
    """
    Validate a redirect rule document before it is stored.
    """
    errors: List[str] = []

    patterns = data.get("patterns")
    if not isinstance(patterns, list) or not patterns:
        errors.append("Field 'patterns' must be a non-empty list")
    else:
        kinds = {kind.value for kind in ComparisonKind}
        for i, pattern in enumerate(patterns):
            if not isinstance(pattern, dict) or not _is_non_empty_str(pattern.get("value")):
                errors.append(f"Pattern {i} must have a non-empty 'value'")
                continue
            if pattern.get("comparison", ComparisonKind.EXACT.value) not in kinds:
                errors.append(f"Pattern {i} has unknown comparison {pattern.get('comparison')!r}")

    destination = data.get("destination")
    if not _is_non_empty_str(destination):
        errors.append("Missing required field: destination")
    elif destination.strip().startswith("//"):
        errors.append("Field 'destination' must not be protocol-relative; use an absolute https URL")
    elif not is_url_path(destination):
        errors.append("Field 'destination' must be a path or an absolute http(s) URL")

    return errors
