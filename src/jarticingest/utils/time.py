from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


FEED_TZ = ZoneInfo("Asia/Tokyo")

_TIME_CODE_RE = re.compile(r"^\d{12}$")


def to_feed_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(FEED_TZ)


def floor_to_minutes(dt: datetime, minutes: int) -> datetime:
    if minutes <= 0:
        raise ValueError("minutes must be > 0")
    discard = timedelta(
        minutes=dt.minute % minutes,
        seconds=dt.second,
        microseconds=dt.microsecond,
    )
    return dt - discard


def format_time_code(dt: datetime) -> str:
    """Format a datetime as the feed's bucket token (`YYYYMMDDHHMM`, JST)."""

    return to_feed_tz(dt).strftime("%Y%m%d%H%M")


def parse_time_code(token: str) -> datetime:
    text = str(token).strip()
    if not _TIME_CODE_RE.match(text):
        raise ValueError(f"Invalid time code: {token!r}")
    return datetime.strptime(text, "%Y%m%d%H%M").replace(tzinfo=FEED_TZ)


def bucket_time_codes(now: datetime, attempts: int, step_minutes: int) -> list[str]:
    """Return the bucket tokens a probe starting at `now` visits, newest first."""

    start = floor_to_minutes(to_feed_tz(now), step_minutes)
    step = timedelta(minutes=step_minutes)
    return [format_time_code(start - step * i) for i in range(max(0, attempts))]
