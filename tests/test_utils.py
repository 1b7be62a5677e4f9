"""
tests/test_utils.py
Operating day and report window boundaries.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import NEW_YORK

from dropwatch.utils import chunked, operating_date, report_window


def test_window_covers_local_day_in_utc():
    window = report_window(NEW_YORK, datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc))
    assert window.start == "2024-03-05T05:00:00.000Z"
    assert window.end == "2024-03-06T04:59:59.999Z"
    assert window.timezone_name == "America/New_York"


def test_window_follows_local_date_not_utc_date():
    # 02:30 UTC on the 6th is still the evening of the 5th in New York
    now = datetime(2024, 3, 6, 2, 30, tzinfo=timezone.utc)
    assert operating_date(NEW_YORK, now).isoformat() == "2024-03-05"
    assert report_window(NEW_YORK, now).start == "2024-03-05T05:00:00.000Z"


def test_window_across_daylight_saving_change():
    window = report_window(NEW_YORK, datetime(2024, 3, 10, 18, 0, tzinfo=timezone.utc))
    assert window.start == "2024-03-10T05:00:00.000Z"
    assert window.end == "2024-03-11T03:59:59.999Z"


def test_naive_now_is_treated_as_utc():
    assert operating_date(ZoneInfo("UTC"), datetime(2024, 1, 1, 23, 59)).isoformat() == "2024-01-01"


def test_chunked():
    assert list(chunked(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]
    assert list(chunked([], 50)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))
