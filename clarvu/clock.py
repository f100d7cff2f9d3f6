"""Clock utilities for time operations.

Wall-clock timestamps are timezone-aware UTC; the user's timezone is only
used to decide where "today" starts and ends. Timer ticking uses the
monotonic clock so it cannot drift with wall-clock adjustments.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class SystemClock:
    """System clock for time operations."""

    def now(self) -> datetime:
        """Get current time in UTC."""
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for ``name``, falling back to UTC if unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return ZoneInfo("UTC")


def today_range(tz_name: str, now: datetime) -> Tuple[datetime, datetime]:
    """Get the [start, end) range of the user's current day, in UTC.

    Args:
        tz_name: IANA timezone name from the user's profile.
        now: Current instant (timezone-aware).
    """
    tz = resolve_timezone(tz_name)
    local_now = now.astimezone(tz)
    start_local = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    end_local = start_local + timedelta(days=1)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


system_clock = SystemClock()
