#!/usr/bin/env python3
"""Command line entry point for the consecutive-drop detectors."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .configuration import ConfigurationError, load_runtime_config
from .detector import build_detector, reset_caches, select_detectors
from .models import RunStatus, RunSummary, RuntimeConfig
from .notifications import NotificationManager
from .storage import AlertStore

logger = logging.getLogger("dropwatch")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_ABORTED = 2
EXIT_ALREADY_RUNNING = 3

STATUS_EXIT_CODES = {
    RunStatus.COMPLETED: EXIT_OK,
    RunStatus.FAILED: EXIT_FATAL,
    RunStatus.ABORTED: EXIT_ABORTED,
    RunStatus.ALREADY_RUNNING: EXIT_ALREADY_RUNNING,
}


def _load_env() -> None:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect three consecutive short target-ended calls and alert on Slack",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", "-c", default="config.yaml", help="Path to configuration file")
    parser.add_argument(
        "--detector",
        "-d",
        action="append",
        dest="detectors",
        metavar="NAME",
        help="Detector to run (repeatable); defaults to every enabled detector",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print alerts instead of sending; persist nothing")
    parser.add_argument("--reset-cache", action="store_true", help="Clear today's batch cache and exit")
    parser.add_argument("--stats", action="store_true", help="Show alert statistics and exit")
    parser.add_argument("--hours", type=int, default=24, help="Hours of history for statistics")
    parser.add_argument("--clear-old", action="store_true", help="Delete ledger rows older than --days")
    parser.add_argument("--days", type=int, default=30, help="Age threshold for clear-old")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def show_stats(store: AlertStore, hours: int) -> None:
    stats = store.get_statistics(hours=hours)

    print(f"\n📊 Drop alert statistics (last {hours}h)")
    print("=" * 60)
    print(f"Batches recorded:   {stats['total']}")
    print(f"Sent to Slack:      {stats['sent']}")
    print(f"Suppressed:         {stats['suppressed']}")
    print(f"Delivery failed:    {stats['failed']}")

    if stats["top_entities"]:
        print("\nTop targets:")
        for entity_name, count in stats["top_entities"]:
            print(f"  • {entity_name}: {count}")

    recent = store.fetch_recent_alerts(lookback_minutes=hours * 60)[:10]
    if recent:
        print("\nRecent batches:")
        for alert in recent:
            state = "sent" if alert.sent else "suppressed" if alert.suppressed else "failed"
            call_ids = ", ".join(alert.call_ids)
            print(f"  • {alert.detected_at:%Y-%m-%d %H:%M} {alert.entity_name} [{alert.detector}, {state}]: {call_ids}")
    print("=" * 60)


def clear_old(store: AlertStore, days: int) -> None:
    deleted = store.purge_old_alerts(days)
    if deleted:
        print(f"✅ Deleted {deleted} ledger rows older than {days} days")
    else:
        print(f"✅ No ledger rows older than {days} days found")


def exit_code_for(summaries: List[RunSummary]) -> int:
    return max((STATUS_EXIT_CODES[summary.status] for summary in summaries), default=EXIT_OK)


def _raise_system_exit(signum: int, _frame) -> None:
    logger.warning("Received %s, cleaning up...", signal.Signals(signum).name)
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Turn SIGINT/SIGTERM into SystemExit so cleanup in ``finally`` blocks runs."""
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _raise_system_exit)


async def run(config: RuntimeConfig, names: Optional[List[str]], dry_run: bool) -> List[RunSummary]:
    summaries: List[RunSummary] = []
    for detector in select_detectors(config, names):
        summary = await build_detector(config, detector, dry_run=dry_run).run()
        summaries.append(summary)

        if summary.status == RunStatus.ALREADY_RUNNING:
            print(f"⏭️  {detector.name}: another instance is already running")
        for message in summary.messages:
            print(f"📝 [dry-run] {message}")
    return summaries


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _load_env()

    try:
        config = load_runtime_config(args.config)
    except ConfigurationError as error:
        print(f"❌ Configuration error: {error}")
        return EXIT_FATAL

    try:
        select_detectors(config, args.detectors)
    except KeyError as error:
        print(f"❌ Unknown detector: {error.args[0]}")
        return EXIT_FATAL

    if args.stats:
        show_stats(AlertStore(config.database_path), hours=max(1, args.hours))
        return EXIT_OK

    if args.clear_old:
        clear_old(AlertStore(config.database_path), days=max(1, args.days))
        return EXIT_OK

    if args.reset_cache:
        cleared = reset_caches(config, args.detectors)
        print(f"✅ Cleared batch cache for: {', '.join(cleared) or 'nothing'}")
        return EXIT_OK

    if not args.dry_run and not NotificationManager(config.notifications, config.slack).configured:
        print("⚠️  No Slack webhook or bot channel configured; alerts will not be delivered")

    install_signal_handlers()
    try:
        summaries = asyncio.run(run(config, args.detectors, args.dry_run))
    except Exception:
        logger.exception("Uncaught error; exiting")
        return EXIT_FATAL

    return exit_code_for(summaries)


def entrypoint() -> None:
    sys.exit(main())


if __name__ == "__main__":
    entrypoint()
