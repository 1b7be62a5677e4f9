"""Utility helpers shared across detector components."""

from __future__ import annotations

import hashlib
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from .models import DropBatch, ReportWindow

T = TypeVar("T")


def compute_batch_identity(call_ids: Iterable[Optional[str]]) -> Optional[str]:
    """Return a deterministic hash for a set of call IDs, or None if any is missing."""
    ids = list(call_ids)
    if not ids or any(not call_id for call_id in ids):
        return None
    joined = "|".join(sorted(str(call_id) for call_id in ids))
    return hashlib.md5(joined.encode("utf-8")).hexdigest()


def batch_identity(batch: DropBatch) -> Optional[str]:
    return compute_batch_identity(batch.call_ids)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def operating_date(tz: ZoneInfo, now: Optional[datetime] = None) -> date:
    """Calendar day as observed in the detector's time zone."""
    current = now or now_utc()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(tz).date()


def report_window(tz: ZoneInfo, now: Optional[datetime] = None) -> ReportWindow:
    """Return the current operating day as UTC ISO timestamps.

    The end boundary is the next local midnight minus one millisecond, which is
    what the reporting API expects for an inclusive range.
    """
    day = operating_date(tz, now)
    start_local = datetime(day.year, day.month, day.day, tzinfo=tz)
    next_day = day + timedelta(days=1)
    end_local = datetime(next_day.year, next_day.month, next_day.day, tzinfo=tz) - timedelta(milliseconds=1)
    return ReportWindow(
        start=_iso_utc(start_local),
        end=_iso_utc(end_local),
        timezone_name=tz.key,
    )


def _iso_utc(value: datetime) -> str:
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
