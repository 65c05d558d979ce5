# nightaudit/business_date.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from nightaudit.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    # Stored timestamps are naive UTC (DB columns are TIMESTAMP WITHOUT TIME ZONE).
    return utcnow().replace(tzinfo=None)


def parse_business_date(value, tz: ZoneInfo, now: Optional[datetime] = None) -> date:
    """
    Accepts a `date`, a YYYY-MM-DD string, or None (today in the club timezone).
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        current = now or utcnow()
        return current.astimezone(tz).date()
    if isinstance(value, datetime):
        raise ValidationError("Business date must be a calendar day, not a timestamp")
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")


def local_day_bounds(target: date) -> Tuple[datetime, datetime]:
    """Naive club-local [start, end) of a business day (tee times are stored this way)."""
    start = datetime.combine(target, time.min)
    return start, start + timedelta(days=1)


def utc_window(target: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Naive UTC [start, end) covering the club-local business day."""
    start_local = datetime.combine(target, time.min).replace(tzinfo=tz)
    end_local = datetime.combine(target + timedelta(days=1), time.min).replace(tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def to_club_local_naive(moment: datetime, tz: ZoneInfo) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).replace(tzinfo=None)


def to_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
