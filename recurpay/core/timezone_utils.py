"""Time and timezone helpers for recurpay."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIME = datetime.time(9, 0, 0)
TEST_TIME_ENV = "RECURPAY_TEST_TIME"


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via RECURPAY_TEST_TIME environment variable.
    Format: ISO 8601 datetime string (e.g., "2024-05-31T23:50:00Z")

    Returns:
        Current time in UTC with timezone info
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.timezone.utc)
            # Assume naive datetime is already UTC
            return dt.replace(tzinfo=datetime.timezone.utc)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now(datetime.timezone.utc)


def today_utc() -> datetime.date:
    """Return the current UTC calendar date."""
    return now_utc().date()


@lru_cache(maxsize=64)
def resolve_zone(tz_name: Optional[str]) -> datetime.tzinfo:
    """Resolve an IANA zone name, falling back to UTC.

    Args:
        tz_name: IANA timezone identifier (e.g., "Asia/Seoul"). None or
            unknown names resolve to UTC.

    Returns:
        Timezone info object (either ZoneInfo or datetime.timezone.utc)
    """
    if not tz_name:
        return datetime.timezone.utc

    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to UTC", tz_name)
        return datetime.timezone.utc


def is_valid_zone(tz_name: str) -> bool:
    try:
        zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        return False
    return True


def zoned_due_instant(
    local_date: datetime.date,
    reminder_time: Optional[datetime.time],
    tz_name: Optional[str],
) -> datetime.datetime:
    """Combine a local date and time-of-day in a zone and convert to UTC.

    Args:
        local_date: Calendar date in the owner's zone
        reminder_time: Local time-of-day; 09:00:00 when None
        tz_name: Owner's IANA zone; UTC when None or unknown

    Returns:
        Aware UTC datetime of the reminder instant

    Example:
        >>> zoned_due_instant(date(2024, 6, 1), time(9), "Asia/Seoul")
        datetime.datetime(2024, 6, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    local_time = reminder_time or DEFAULT_REMINDER_TIME
    naive = datetime.datetime.combine(local_date, local_time.replace(tzinfo=None))
    local = naive.replace(tzinfo=resolve_zone(tz_name))
    return local.astimezone(datetime.timezone.utc)


def utc_midnight(day: datetime.date) -> datetime.datetime:
    """Return 00:00 UTC of the given date."""
    return datetime.datetime.combine(day, datetime.time(0, 0), tzinfo=datetime.timezone.utc)
