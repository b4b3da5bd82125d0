"""
Timezone helpers.

Timestamps are stored as naive UTC; the attendance day is the calendar date in
the business time zone (``BUSINESS_TZ_OFFSET_HOURS``).
"""
from datetime import date, datetime, timezone, timedelta
from typing import Optional

from app.core.config import BUSINESS_TZ_OFFSET_HOURS

BUSINESS_TZ = timezone(timedelta(hours=BUSINESS_TZ_OFFSET_HOURS))


def utc_now() -> datetime:
    """Current UTC time without tzinfo, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Normalise an incoming timestamp to naive UTC"""
    if dt.tzinfo is None:
        # Naive input is taken to be UTC already
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC tzinfo to a stored naive datetime"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def business_date(dt: Optional[datetime] = None) -> date:
    """Calendar date of ``dt`` (default: now) in the business time zone"""
    if dt is None:
        return datetime.now(BUSINESS_TZ).date()
    return as_utc(dt).astimezone(BUSINESS_TZ).date()


def format_business_time(dt: Optional[datetime] = None, format_str: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Format a UTC timestamp in the business time zone"""
    if dt is None:
        return datetime.now(BUSINESS_TZ).strftime(format_str)
    return as_utc(dt).astimezone(BUSINESS_TZ).strftime(format_str)
