"""
tests/conftest.py
Shared builders for call records, clocks and configuration.
"""

from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from dropwatch.models import (
    CallRecord,
    DetectorConfig,
    NotificationConfig,
    RingbaConfig,
    RuntimeConfig,
    SlackConfig,
    TerminationSource,
)

NEW_YORK = ZoneInfo("America/New_York")

# 2024-03-05 15:00 UTC is 10:00 in New York
FIXED_NOW = datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)


def make_call(call_id, seconds=10, source="Target", entity="Acme Buyer", phone="+15550000000", bid=None):
    """Build a CallRecord with terse defaults that satisfy the drop predicate."""
    return CallRecord(
        entity_name=entity,
        phone_number=phone,
        call_id=call_id,
        duration_seconds=seconds,
        termination_source=TerminationSource(source),
        bid_amount=Decimal(str(bid)) if bid is not None else None,
    )


class MutableClock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def runtime_config(tmp_path):
    return RuntimeConfig(
        ringba=RingbaConfig(account_id="RA123", api_token="token", backoff_seconds=0.0),
        notifications=NotificationConfig(slack_webhook="https://hooks.slack.test/T000/B000"),
        slack=SlackConfig(),
        detectors=[
            DetectorConfig(name="consecutive_calls"),
            DetectorConfig(name="consecutive_calls_same_bid", same_bid=True, enrich_details=True),
        ],
        database_path=str(tmp_path / "dropwatch.db"),
        lock_dir=str(tmp_path / "locks"),
    )
