"""Formatting and delivery of consecutive-drop alerts."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from .models import DispatchOutcome, DropBatch
from .notifications import NotificationManager

logger = logging.getLogger(__name__)

DEFAULT_RESTRICTED_MARKERS = ("Restricted",)


def has_restricted_number(batch: DropBatch, markers: Iterable[str] = DEFAULT_RESTRICTED_MARKERS) -> bool:
    lowered = [marker.lower() for marker in markers if marker]
    for phone_number in batch.phone_numbers:
        value = (phone_number or "").lower()
        if any(marker in value for marker in lowered):
            return True
    return False


def format_amount(amount: Decimal) -> str:
    """Render a bid without trailing zeros or exponent: 10.50 -> 10.5, 10.00 -> 10."""
    return f"{amount.normalize():f}"


def format_drop_message(batch: DropBatch, same_bid: bool = False) -> str:
    if same_bid and batch.bid_amount is not None:
        bid = format_amount(batch.bid_amount)
        headline = f"{batch.entity_name} has dropped three consecutive calls on the same bid ${bid}"
    else:
        headline = f"{batch.entity_name} has dropped three consecutive calls"

    lines: List[str] = ["", headline]
    for call in batch.calls:
        lines.append(f"{call.phone_number} / {call.call_id}")
    return "\n".join(lines)


class AlertDispatcher:
    """Applies the restricted-number filter, then formats and sends one message per batch."""

    def __init__(
        self,
        notifier: Optional[NotificationManager],
        same_bid: bool = False,
        restricted_markers: Iterable[str] = DEFAULT_RESTRICTED_MARKERS,
        dry_run: bool = False,
    ):
        self.notifier = notifier
        self.same_bid = same_bid
        self.restricted_markers = list(restricted_markers)
        self.dry_run = dry_run
        self.dry_run_messages: List[str] = []

    async def dispatch(self, batch: DropBatch) -> DispatchOutcome:
        if has_restricted_number(batch, self.restricted_markers):
            logger.info("Skipping notification for %s: batch contains restricted numbers", batch.entity_name)
            return DispatchOutcome.SUPPRESSED

        message = format_drop_message(batch, same_bid=self.same_bid)
        if self.dry_run:
            self.dry_run_messages.append(message)
            return DispatchOutcome.DRY_RUN

        if self.notifier is None:
            logger.error("No notifier configured; alert for %s not delivered", batch.entity_name)
            return DispatchOutcome.FAILED

        if await self.notifier.send(message):
            logger.info("Alert sent for %s: %s", batch.entity_name, ", ".join(str(cid) for cid in batch.call_ids))
            return DispatchOutcome.SENT

        logger.error("Alert delivery failed for %s", batch.entity_name)
        return DispatchOutcome.FAILED
