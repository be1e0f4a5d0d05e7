# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities for provider timestamps (always normalized to UTC)
"""
import time
from datetime import datetime, timedelta
from typing import Optional
import pytz


def get_utc_time() -> datetime:
    """Get current time in UTC"""
    return datetime.now(pytz.UTC)


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Returns None for empty or unparseable input instead of raising, since
    provider payloads routinely carry missing or malformed timestamps.
    """
    if not value:
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        iso_string = value.strip()
        if iso_string.endswith('Z'):
            iso_string = iso_string[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(iso_string)
        except ValueError:
            return None
    else:
        return None

    # Naive timestamps from the provider are UTC
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime the way the provider does: 2024-01-01T10:00:00Z"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC).strftime('%Y-%m-%dT%H:%M:%SZ')


def add_minutes(iso_string, minutes) -> Optional[str]:
    """Return iso_string shifted by the given number of minutes, or None"""
    start = parse_iso(iso_string)
    if start is None or minutes is None:
        return None
    try:
        return to_iso(start + timedelta(minutes=float(minutes)))
    except (TypeError, ValueError):
        return None


def format_date(dt: datetime) -> str:
    """Format as YYYY-MM-DD for the provider's from/to query parameters"""
    return dt.astimezone(pytz.UTC).strftime('%Y-%m-%d')


class Clock:
    """Time source for the sync pipeline; tests swap in a fixed clock"""

    def now(self) -> datetime:
        return get_utc_time()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)


class Deadline:
    """Wall-clock budget shared by every stage of one sync run"""

    def __init__(self, clock: Clock, seconds: float):
        self.clock = clock
        self.seconds = seconds
        self.started_at = clock.monotonic()

    def elapsed(self) -> float:
        return self.clock.monotonic() - self.started_at

    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed())

    def expired(self) -> bool:
        return self.elapsed() >= self.seconds
