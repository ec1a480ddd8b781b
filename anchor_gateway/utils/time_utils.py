"""Date and time helpers"""

import time
from datetime import datetime, timezone
from typing import Any, Optional

from anchor_gateway.domain.exceptions import DeadlineExceededError

SECONDS_PER_DAY = 86_400


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime (None if absent or invalid)"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        # fromisoformat on older interpreters does not accept a trailing Z
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc(parsed)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from earlier to later"""
    return (to_utc(later) - to_utc(earlier)).total_seconds() / SECONDS_PER_DAY


class Deadline:
    """Monotonic time budget checked cooperatively by long-running steps"""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    @property
    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def expired(self) -> bool:
        return self.remaining <= 0

    def check(self, step: str) -> None:
        """Raise DeadlineExceededError if the budget is spent"""
        if self.expired():
            raise DeadlineExceededError(f"Deadline of {self.seconds}s exceeded before {step}")
