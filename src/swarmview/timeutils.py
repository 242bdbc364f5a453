"""Timestamp helpers shared by the monitoring package.

Log records carry ISO 8601 strings (usually with a trailing ``Z``). These
helpers turn them into timezone-aware datetimes so recency checks compare
like with like.

Compatibility:
- datetime.UTC: Introduced in Python 3.11
  - Python 3.11+: Uses native datetime.UTC
  - Python 3.10: Uses datetime.timezone.utc as fallback
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone

if sys.version_info >= (3, 11):
    from datetime import UTC
else:
    UTC = timezone.utc

__all__ = ["UTC", "parse_timestamp", "utc_now", "seconds_since"]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp from a log record.

    Naive values are assumed to be UTC. Anything unparseable yields None.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def seconds_since(value: str | None, now: datetime) -> float | None:
    """Seconds elapsed between a log timestamp and ``now`` (None if unparseable)."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return (now - parsed).total_seconds()
