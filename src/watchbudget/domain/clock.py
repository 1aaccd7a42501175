"""Server clock helpers.

All elapsed-time and billing arithmetic uses these, never a client value.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date(moment: datetime, tz_name: str | None) -> date:
    """Calendar date of ``moment`` in the given IANA zone (UTC if unset)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name or "UTC")).date()
