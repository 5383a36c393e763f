from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from rentdesk.config import settings


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(value: datetime, tz_name: str | None = None) -> date:
    """Calendar day of ``value`` at the counter, in ``settings.business_timezone`` by default."""
    return as_utc(value).astimezone(ZoneInfo(tz_name or settings.business_timezone)).date()


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse ISO-8601 text into an aware UTC datetime; naive input is read as UTC."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(text))
