"""Parsing and normalization helpers for configuration values.

TOML gives typed values; environment variables give strings. These helpers
accept either.
"""

import logging
from typing import Any, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

VALID_SEVERITIES = frozenset({"critical", "major", "minor"})


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _try_parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return None


def _parse_str_list(value: Any) -> list[str]:
    """Accept a TOML array or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    else:
        items = value
    return [str(item).strip() for item in items if str(item).strip()]


def _parse_severities(value: Any) -> FrozenSet[str]:
    """Parse a severity list, dropping unknown names with a warning."""
    parsed = set()
    for item in _parse_str_list(value):
        normalized = item.lower()
        if normalized in VALID_SEVERITIES:
            parsed.add(normalized)
        else:
            logger.warning(
                "Ignoring unknown severity '%s'. Valid options: %s",
                item,
                ", ".join(sorted(VALID_SEVERITIES)),
            )
    return frozenset(parsed)
