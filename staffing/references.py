"""
Helpers for the loosely typed field values that come back from the record store.

A relationship may be stored as ``None``, a bare id, or a list of ids depending
on which form wrote the record. Every join goes through ``to_id_list`` so the
three encodings behave the same.
"""

import logging
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime
from functools import lru_cache
from typing import Any

from staffing.config import AIRTABLE_RECORD_ID_PATTERN
from staffing.errors import InvalidReference

logger = logging.getLogger(__name__)


def to_id_list(value: Any) -> list[str]:
    """Normalize a foreign-key field to a list of non-empty, distinct ids."""
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = [value]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        return []

    ids: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        item = item.strip()
        if item and item not in ids:
            ids.append(item)
    return ids


def first_truthy(fields: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the value of the first alias holding a truthy value, else None."""
    for name in aliases:
        value = fields.get(name)
        if value:
            return value
    return None


@lru_cache(maxsize=8)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def check_record_id(
    value: Any, pattern: str = AIRTABLE_RECORD_ID_PATTERN
) -> str:
    if not isinstance(value, str) or not _compiled(pattern).fullmatch(value):
        raise InvalidReference(value)
    return value


def split_valid_ids(
    ids: Iterable[Any],
    pattern: str = AIRTABLE_RECORD_ID_PATTERN,
    *,
    context: str = "",
) -> tuple[list[str], list[Any]]:
    """
    Partition ids into (valid, invalid). Invalid ids are logged, not raised.
    """
    valid: list[str] = []
    invalid: list[Any] = []
    for value in ids:
        try:
            valid.append(check_record_id(value, pattern))
        except InvalidReference as exc:
            invalid.append(value)
            logger.warning("dropping reference in %s: %s", context or "query", exc)
    return valid, invalid


def coerce_count(value: Any) -> int:
    """
    Read a headcount field. Numbers, numeric strings and one-element lookup
    arrays are accepted; anything else counts as 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (list, tuple)):
        return coerce_count(value[0]) if len(value) == 1 else 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0
        return int(number) if math.isfinite(number) else 0
    return 0


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a stored date into an aware UTC datetime. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def text(value: Any) -> str | None:
    """Return a stripped string field, or None for blanks and non-strings."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
