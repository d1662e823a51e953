from __future__ import annotations

from datetime import datetime, timezone

import pytest

from jarticingest.utils.time import (
    FEED_TZ,
    bucket_time_codes,
    floor_to_minutes,
    format_time_code,
    parse_time_code,
)


def test_format_time_code_uses_jst() -> None:
    assert format_time_code(datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)) == "202401011200"
    # Naive datetimes are treated as UTC.
    assert format_time_code(datetime(2024, 1, 1, 15, 30)) == "202401020030"


def test_parse_time_code_returns_jst() -> None:
    parsed = parse_time_code("202401011205")
    assert parsed == datetime(2024, 1, 1, 12, 5, tzinfo=FEED_TZ)
    assert parsed.utcoffset().total_seconds() == 9 * 3600


@pytest.mark.parametrize("token", ["", "2024010112", "2024-01-01T12", "20240101120a"])
def test_parse_time_code_rejects_bad_tokens(token: str) -> None:
    with pytest.raises(ValueError):
        parse_time_code(token)


def test_floor_to_minutes_rejects_non_positive_step() -> None:
    with pytest.raises(ValueError):
        floor_to_minutes(datetime(2024, 1, 1), 0)


def test_bucket_time_codes_steps_back_from_floored_now() -> None:
    now = datetime(2024, 1, 1, 3, 7, 42, tzinfo=timezone.utc)
    assert bucket_time_codes(now, 3, 5) == ["202401011205", "202401011200", "202401011155"]


def test_bucket_time_codes_crosses_midnight() -> None:
    now = datetime(2024, 1, 1, 15, 2, tzinfo=timezone.utc)  # 00:02 JST on Jan 2
    assert bucket_time_codes(now, 2, 5) == ["202401020000", "202401012355"]
