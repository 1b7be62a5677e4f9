"""Drives one detector run: lock, caches, targets, grouping, dedup and dispatch."""

from __future__ import annotations

import logging
import sqlite3
import time
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .alerts import AlertDispatcher
from .dedup import DedupStore
from .grouper import DropBatchGrouper
from .lock import RunLock
from .models import (
    AlertRecord,
    DetectorConfig,
    DispatchOutcome,
    DropBatch,
    ReportWindow,
    RunStatus,
    RunSummary,
    RuntimeConfig,
)
from .notifications import NotificationManager
from .ringba_client import RingbaAPIError, RingbaClient
from .storage import AlertStore
from .utils import batch_identity, now_utc, report_window

logger = logging.getLogger(__name__)


class DropDetector:
    """Runs one detector variant over every target for the current operating day.

    Per-target failures are logged and skipped. Dedup state is saved and the run
    lock released on every exit path, including cancellation and ``SystemExit``
    raised from a signal handler.
    """

    def __init__(
        self,
        detector: DetectorConfig,
        source: RingbaClient,
        dedup_store: DedupStore,
        lock: RunLock,
        dispatcher: AlertDispatcher,
        tz: ZoneInfo,
        ledger: Optional[AlertStore] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.detector = detector
        self.source = source
        self.dedup_store = dedup_store
        self.lock = lock
        self.dispatcher = dispatcher
        self.tz = tz
        self.ledger = ledger
        self.clock = clock
        self.grouper = DropBatchGrouper.for_detector(detector)

    async def run(self) -> RunSummary:
        summary = RunSummary(detector=self.detector.name)
        started = time.monotonic()

        if not self.lock.acquire():
            logger.info("Skipping run of %s: another instance is already processing", self.detector.name)
            summary.status = RunStatus.ALREADY_RUNNING
            return summary

        try:
            self.dedup_store.load()
            window = report_window(self.tz, self.clock())
            logger.info("Starting %s for %s .. %s", self.detector.name, window.start, window.end)

            try:
                targets = await self.source.list_targets(window)
            except RingbaAPIError as error:
                logger.error("Problem fetching target list: %s", error)
                summary.status = RunStatus.ABORTED
                return summary

            summary.entities_total = len(targets)
            logger.info("Processing %d targets...", len(targets))

            for index, target in enumerate(targets, start=1):
                if self.dedup_store.reset_if_new_day():
                    window = report_window(self.tz, self.clock())
                try:
                    logger.info("[%d/%d] Processing target: %s", index, len(targets), target)
                    await self._process_target(target, window, summary)
                    summary.entities_processed += 1
                except Exception:
                    logger.exception("Error processing target %s", target)
                    summary.entities_failed += 1
        except Exception:
            logger.exception("Fatal error in %s run", self.detector.name)
            summary.status = RunStatus.FAILED
        finally:
            self.dedup_store.save()
            self.lock.release()
            summary.duration_seconds = time.monotonic() - started
            self._log_summary(summary)

        return summary

    async def _process_target(self, target: str, window: ReportWindow, summary: RunSummary) -> None:
        calls = await self.source.fetch_entity_calls(target, window, enrich=self.detector.enrich_details)
        summary.calls_examined += len(calls)
        logger.info("   Found %d calls for %s", len(calls), target)

        for batch in self.grouper.iter_batches(calls):
            summary.batches_found += 1
            await self._handle_batch(batch, summary)

    async def _handle_batch(self, batch: DropBatch, summary: RunSummary) -> None:
        identity = batch_identity(batch)
        if identity is None:
            logger.warning("Skipping invalid batch for %s (missing call IDs)", batch.entity_name)
            summary.invalid_batches += 1
            return

        if self.dedup_store.contains(identity):
            logger.debug("Duplicate batch skipped: %s", identity)
            summary.duplicates_skipped += 1
            return

        # Recorded before dispatch: a crash here loses an alert, never repeats one.
        self.dedup_store.insert(identity)

        outcome = await self.dispatcher.dispatch(batch)
        if outcome == DispatchOutcome.SUPPRESSED:
            summary.alerts_suppressed += 1
        elif outcome == DispatchOutcome.FAILED:
            summary.alerts_failed += 1
        elif outcome == DispatchOutcome.DRY_RUN:
            summary.alerts_dry_run += 1
            summary.messages.append(self.dispatcher.dry_run_messages[-1])
        else:
            summary.alerts_sent += 1

        if self.ledger is None:
            return
        try:
            self.ledger.record_alert(
                AlertRecord(
                    identity=identity,
                    detector=self.detector.name,
                    entity_name=batch.entity_name,
                    call_ids=[str(call_id) for call_id in batch.call_ids],
                    phone_numbers=batch.phone_numbers,
                    bid_amount=batch.bid_amount if self.detector.same_bid else None,
                    suppressed=outcome == DispatchOutcome.SUPPRESSED,
                    sent=outcome == DispatchOutcome.SENT,
                    detected_at=self.clock(),
                )
            )
        except sqlite3.Error:
            logger.exception("Failed to record %s batch %s in the alert ledger", batch.entity_name, identity)

    @staticmethod
    def _log_summary(summary: RunSummary) -> None:
        logger.info(
            "%s finished with %s: %d/%d targets processed (%d failed), %d batches found, "
            "%d duplicates, %d sent, %d suppressed, %d failed deliveries, %d dry-run in %.1fs",
            summary.detector,
            summary.status.value,
            summary.entities_processed,
            summary.entities_total,
            summary.entities_failed,
            summary.batches_found,
            summary.duplicates_skipped,
            summary.alerts_sent,
            summary.alerts_suppressed,
            summary.alerts_failed,
            summary.alerts_dry_run,
            summary.duration_seconds,
        )


def build_detector(
    config: RuntimeConfig,
    detector: DetectorConfig,
    dry_run: bool = False,
    source: Optional[RingbaClient] = None,
    notifier: Optional[NotificationManager] = None,
    store: Optional[AlertStore] = None,
    clock: Callable[[], datetime] = now_utc,
) -> DropDetector:
    """Wire a ``DropDetector`` from runtime configuration."""
    tz = ZoneInfo(config.timezone_name)
    store = store or AlertStore(config.database_path)
    source = source or RingbaClient(config.ringba)
    if notifier is None and not dry_run:
        notifier = NotificationManager(config.notifications, config.slack)

    return DropDetector(
        detector=detector,
        source=source,
        dedup_store=DedupStore(store, detector.name, tz, clock=clock, persist=not dry_run),
        lock=RunLock.for_detector(
            config.lock_dir,
            detector.name,
            stale_after=timedelta(minutes=config.lock_stale_minutes),
            clock=clock,
        ),
        dispatcher=AlertDispatcher(
            notifier,
            same_bid=detector.same_bid,
            restricted_markers=config.restricted_markers,
            dry_run=dry_run,
        ),
        tz=tz,
        ledger=None if dry_run else store,
        clock=clock,
    )


def select_detectors(config: RuntimeConfig, names: Optional[Iterable[str]] = None) -> List[DetectorConfig]:
    """Enabled detectors, or the named ones in the given order. Raises KeyError on unknown names."""
    if not names:
        return [detector for detector in config.detectors if detector.enabled]
    selected: List[DetectorConfig] = []
    for name in names:
        detector = config.get_detector(name)
        if detector is None:
            raise KeyError(name)
        selected.append(detector)
    return selected


def reset_caches(config: RuntimeConfig, names: Optional[Iterable[str]] = None) -> List[str]:
    """Write an empty batch cache for today for each selected detector."""
    tz = ZoneInfo(config.timezone_name)
    store = AlertStore(config.database_path)
    cleared: List[str] = []
    for detector in select_detectors(config, names):
        DedupStore(store, detector.name, tz).clear()
        cleared.append(detector.name)
        logger.info("Cleared batch cache for %s", detector.name)
    return cleared
