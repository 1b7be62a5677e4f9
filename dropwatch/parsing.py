"""
dropwatch/parsing.py
Turns loosely typed call log JSON into strict ``CallRecord`` values.

Safety-critical fields never default to a passing value: a duration that cannot
be read becomes ``None`` (never short), a bid that cannot be read becomes
``None`` (never matches another bid).
"""

from __future__ import annotations

import logging
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from .models import CallRecord, TerminationSource

logger = logging.getLogger(__name__)

PRICING_SUMMARY_EVENT = "PingTreePingingSummary"
ACCEPTED_TARGETS_FIELD = "acceptedRingTreeTargets"

# "Target Name[12.50, ...]" -> ("Target Name", "12.50")
ACCEPTED_TARGET_RE = re.compile(r"^(.+?)\[\s*(\d+(?:\.\d+)?)\s*[,\]]")
HMS_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})$")
INT_RE = re.compile(r"^\d+$")


def parse_duration(value: Any) -> Optional[int]:
    """Normalize ``H:M:S`` strings or numeric seconds; None when unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value < 0 or not math.isfinite(value):
            return None
        # rounded up: 20.5 seconds is not short
        return math.ceil(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    match = HMS_RE.match(text)
    if match:
        hours, minutes, seconds = (int(part) for part in match.groups())
        return hours * 3600 + minutes * 60 + seconds
    if INT_RE.match(text):
        return int(text)
    return None


def parse_termination_source(value: Any) -> TerminationSource:
    if not isinstance(value, str):
        return TerminationSource.UNKNOWN
    try:
        return TerminationSource(value.strip())
    except ValueError:
        return TerminationSource.UNKNOWN


def extract_bid_amount(events: Any, entity_name: str) -> Optional[Decimal]:
    """Find the bid the entity placed, as listed in the pricing summary event."""
    if not isinstance(events, list) or not entity_name:
        return None

    summary = None
    for event in events:
        if not isinstance(event, dict) or event.get("name") != PRICING_SUMMARY_EVENT:
            continue
        accepted = event.get(ACCEPTED_TARGETS_FIELD)
        if isinstance(accepted, str) and accepted.strip():
            summary = accepted
            break
    if summary is None:
        return None

    wanted = entity_name.strip()
    for line in summary.splitlines():
        match = ACCEPTED_TARGET_RE.match(line.strip())
        if not match or match.group(1).strip() != wanted:
            continue
        try:
            return Decimal(match.group(2))
        except InvalidOperation:
            return None
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def record_from_summary(raw: Any, duration_field: str = "connectedCallLengthInSeconds") -> Optional[CallRecord]:
    """Build a record from a paginated call log row."""
    if not isinstance(raw, dict):
        return None
    call_id = _text(raw.get("inboundCallId")) or None
    return CallRecord(
        entity_name=_text(raw.get("targetName")),
        phone_number=_text(raw.get("inboundPhoneNumber")),
        call_id=call_id,
        duration_seconds=parse_duration(raw.get(duration_field)),
        termination_source=parse_termination_source(raw.get("endCallSource")),
    )


def record_from_detail(raw: Any) -> Optional[CallRecord]:
    """Build a record from a call detail row, deriving the bid from its events."""
    if not isinstance(raw, dict):
        return None
    call_id = _text(raw.get("inboundCallId"))
    if not call_id:
        logger.debug("Dropping detail row without inboundCallId")
        return None
    entity_name = _text(raw.get("targetName"))
    return CallRecord(
        entity_name=entity_name,
        phone_number=_text(raw.get("inboundPhoneNumber")),
        call_id=call_id,
        duration_seconds=parse_duration(raw.get("callLengthInSeconds")),
        termination_source=parse_termination_source(raw.get("endCallSource")),
        bid_amount=extract_bid_amount(raw.get("events"), entity_name),
    )


def extract_records(payload: Any) -> list:
    """Return ``report.records`` from a reporting API response body."""
    if not isinstance(payload, dict):
        return []
    report = payload.get("report") or {}
    if not isinstance(report, dict):
        return []
    records = report.get("records") or []
    return [item for item in records if item is not None] if isinstance(records, list) else []


def target_names(records: Iterable[Dict[str, Any]]) -> list:
    """Target names from an insights report, skipping placeholders."""
    names = []
    for record in records:
        if not isinstance(record, dict):
            continue
        name = record.get("targetName")
        if not isinstance(name, str) or not name.strip() or name == "-no value-":
            continue
        names.append(name)
    return names
