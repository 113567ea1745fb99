"""Calendar helpers used to bucket habit fulfillments.

All bucketing happens in the configured application timezone
(`settings.APP_TIMEZONE`, Asia/Seoul by default) so the result does not
depend on the host clock's zone.

A bucket is `(year, week, day)`:
- `year`: calendar year of the local date
- `week`: ISO week number minus one, clamped to 53
- `day`: weekday with Sunday = 0 ... Saturday = 6
"""

from datetime import datetime
from typing import NamedTuple, Optional

from ..config import settings

MAX_WEEK = 53


class FulfillmentBucket(NamedTuple):
    year: int
    week: int
    day: int


def local_now() -> datetime:
    """Current aware datetime in the application timezone."""
    return datetime.now(settings.tz)


def _to_local(now: Optional[datetime]) -> datetime:
    if now is None:
        return local_now()
    if now.tzinfo is None:
        # naive values are taken to already be local
        return now.replace(tzinfo=settings.tz)
    return now.astimezone(settings.tz)


def current_bucket(now: Optional[datetime] = None) -> FulfillmentBucket:
    """Return the fulfillment bucket for `now` (defaults to the current instant)."""
    local = _to_local(now)
    week = min(local.isocalendar()[1] - 1, MAX_WEEK)
    day = (local.weekday() + 1) % 7
    return FulfillmentBucket(year=local.year, week=week, day=day)
