"""
tests/test_alerts.py
Restricted-number suppression, message formatting and sink delivery.
"""

import asyncio
import json
from decimal import Decimal

import httpx

from conftest import make_call

from dropwatch.alerts import AlertDispatcher, format_amount, format_drop_message, has_restricted_number
from dropwatch.models import DispatchOutcome, DropBatch, NotificationConfig, SlackConfig
from dropwatch.notifications import NotificationManager
from dropwatch.slack_client import SlackClientWrapper

WEBHOOK = "https://hooks.slack.test/T000/B000"


def drop_batch(phones=("+15550000001", "+15550000002", "+15550000003"), bid=None):
    return DropBatch(
        calls=tuple(make_call(f"RGB{n}", phone=phone, bid=bid) for n, phone in enumerate(phones, start=1))
    )


def webhook_notifier(status=200, sent=None):
    def handler(request):
        if sent is not None:
            sent.append(json.loads(request.content))
        return httpx.Response(status, text="ok" if status == 200 else "invalid_payload")

    return NotificationManager(NotificationConfig(slack_webhook=WEBHOOK), transport=httpx.MockTransport(handler))


class FakeSlackClient:
    def __init__(self):
        self.posted = []

    async def post_message(self, channel, text):
        self.posted.append((channel, text))
        return True


class UnreachableWebClient:
    """Stands in for slack_sdk.WebClient when the network is down."""

    def __init__(self):
        self.calls = 0

    def chat_postMessage(self, **kwargs):
        self.calls += 1
        raise ConnectionError("connection refused")


# ── FORMATTING ───────────────────────────────────────────────

class TestFormatting:

    def test_base_message(self):
        message = format_drop_message(drop_batch())
        assert message.splitlines() == [
            "",
            "Acme Buyer has dropped three consecutive calls",
            "+15550000001 / RGB1",
            "+15550000002 / RGB2",
            "+15550000003 / RGB3",
        ]

    def test_same_bid_message_names_bid(self):
        message = format_drop_message(drop_batch(bid="10.5"), same_bid=True)
        assert "Acme Buyer has dropped three consecutive calls on the same bid $10.5" in message

    def test_bid_is_printed_without_trailing_zeros(self):
        assert "on the same bid $10.5\n" in format_drop_message(drop_batch(bid="10.50"), same_bid=True)
        assert "on the same bid $10\n" in format_drop_message(drop_batch(bid="10.00"), same_bid=True)
        assert format_amount(Decimal("12.25")) == "12.25"

    def test_restricted_detection_is_case_insensitive(self):
        assert has_restricted_number(drop_batch(phones=("+1555", "RESTRICTED", "+1556")))
        assert has_restricted_number(drop_batch(phones=("+1555", "Restricted Number", "+1556")))
        assert not has_restricted_number(drop_batch())
        assert has_restricted_number(drop_batch(phones=("Anonymous", "+1", "+2")), markers=["anonymous"])


# ── DISPATCH ─────────────────────────────────────────────────

class TestDispatcher:

    def test_sends_via_webhook(self):
        sent = []
        dispatcher = AlertDispatcher(webhook_notifier(sent=sent))
        outcome = asyncio.run(dispatcher.dispatch(drop_batch()))
        assert outcome == DispatchOutcome.SENT
        assert sent[0]["text"].startswith("\nAcme Buyer has dropped")

    def test_restricted_batch_is_suppressed(self):
        sent = []
        dispatcher = AlertDispatcher(webhook_notifier(sent=sent))
        outcome = asyncio.run(dispatcher.dispatch(drop_batch(phones=("+1555", "Restricted", "+1556"))))
        assert outcome == DispatchOutcome.SUPPRESSED
        assert sent == []

    def test_delivery_failure_is_reported(self):
        dispatcher = AlertDispatcher(webhook_notifier(status=500))
        assert asyncio.run(dispatcher.dispatch(drop_batch())) == DispatchOutcome.FAILED

    def test_transport_error_is_reported(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        notifier = NotificationManager(NotificationConfig(slack_webhook=WEBHOOK), transport=httpx.MockTransport(handler))
        assert asyncio.run(AlertDispatcher(notifier).dispatch(drop_batch())) == DispatchOutcome.FAILED

    def test_dry_run_collects_messages(self):
        dispatcher = AlertDispatcher(None, dry_run=True)
        assert asyncio.run(dispatcher.dispatch(drop_batch())) == DispatchOutcome.DRY_RUN
        assert "RGB1" in dispatcher.dry_run_messages[0]

    def test_missing_notifier_fails(self):
        assert asyncio.run(AlertDispatcher(None).dispatch(drop_batch())) == DispatchOutcome.FAILED


# ── SINK ─────────────────────────────────────────────────────

class TestNotificationManager:

    def test_bot_token_fallback_posts_to_channel(self):
        fake = FakeSlackClient()
        notifier = NotificationManager(NotificationConfig(), SlackConfig(channel="call-alerts"), slack_client=fake)
        assert notifier.configured
        assert asyncio.run(notifier.send("hello")) is True
        assert fake.posted == [("#call-alerts", "hello")]

    def test_webhook_takes_precedence(self):
        fake = FakeSlackClient()
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(200)

        notifier = NotificationManager(
            NotificationConfig(slack_webhook=WEBHOOK),
            SlackConfig(channel="C0123456789"),
            slack_client=fake,
            transport=httpx.MockTransport(handler),
        )
        assert asyncio.run(notifier.send("hello")) is True
        assert len(sent) == 1
        assert fake.posted == []

    def test_unconfigured_sink_returns_false(self):
        notifier = NotificationManager(NotificationConfig())
        assert not notifier.configured
        assert asyncio.run(notifier.send("hello")) is False

    def test_bot_connection_error_is_reported_as_failure(self):
        web_client = UnreachableWebClient()
        notifier = NotificationManager(
            NotificationConfig(),
            SlackConfig(channel="call-alerts"),
            slack_client=SlackClientWrapper("xoxb-test", client=web_client),
        )
        assert asyncio.run(notifier.send("hello")) is False
        assert asyncio.run(AlertDispatcher(notifier).dispatch(drop_batch())) == DispatchOutcome.FAILED
        assert web_client.calls == 2
