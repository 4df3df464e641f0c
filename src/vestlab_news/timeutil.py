"""Timestamp normalization and reporting-timezone date helpers.

Records are stored in UTC; report dates and sessions are computed in a fixed
reporting offset (UTC+8 by default).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_iso(dt: datetime) -> str:
    """Render as `YYYY-MM-DDTHH:MM:SS.mmmZ`; naive values are assumed UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Parse RFC 2822 or ISO-8601 text into an aware datetime, or None."""
    if raw is None:
        return None
    txt = str(raw).strip()
    if not txt:
        return None

    try:
        parsed = parsedate_to_datetime(txt)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is not None:
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    # datetime.fromisoformat doesn't accept common RFC3339 variants such as a
    # trailing "Z" or offsets like "+0000". Normalize those before parsing.
    if txt.endswith(("Z", "z")):
        txt = f"{txt[:-1]}+00:00"
    else:
        txt = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", txt)
    try:
        parsed = datetime.fromisoformat(txt)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_to_utc(raw: Optional[str], *, now: Optional[datetime] = None) -> str:
    """Coerce a feed timestamp to UTC ISO-8601, falling back to *now*."""
    parsed = parse_timestamp(raw)
    if parsed is None:
        return to_utc_iso(now or utc_now())
    return to_utc_iso(parsed)


def reporting_tz(offset_hours: int = 8) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def reporting_date(now: Optional[datetime] = None, offset_hours: int = 8) -> date:
    """Calendar date in the reporting timezone."""
    current = now or utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(reporting_tz(offset_hours)).date()


def previous_reporting_date(now: Optional[datetime] = None, offset_hours: int = 8) -> date:
    """Reporting-timezone date 24 hours before *now* (fixed subtraction)."""
    current = now or utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return reporting_date(current - timedelta(hours=24), offset_hours)


def parse_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"date must be YYYY-MM-DD, got {value!r}") from exc
