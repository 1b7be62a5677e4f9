"""File-based guard preventing overlapping runs of the same detector."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from .utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)


@dataclass
class LockToken:
    owner_pid: int
    acquired_at: datetime
    detector: Optional[str] = None


class RunLock:
    """Single JSON token on disk; a token older than ``stale_after`` is reclaimed."""

    def __init__(
        self,
        path: str | Path,
        detector_name: Optional[str] = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.path = Path(path)
        self.detector_name = detector_name
        self.stale_after = stale_after
        self.clock = clock
        self._held = False

    @classmethod
    def for_detector(cls, lock_dir: str | Path, detector_name: str, **kwargs) -> "RunLock":
        return cls(Path(lock_dir) / f".{detector_name}.lock", detector_name=detector_name, **kwargs)

    @property
    def held(self) -> bool:
        return self._held

    def read_token(self) -> Optional[LockToken]:
        """Return the token on disk, falling back to file mtime if its content is corrupt."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            data = json.loads(raw)
            acquired_at = datetime.fromisoformat(data["acquired_at"])
            if acquired_at.tzinfo is None:
                acquired_at = acquired_at.replace(tzinfo=timezone.utc)
            return LockToken(owner_pid=int(data["pid"]), acquired_at=acquired_at, detector=data.get("detector"))
        except (ValueError, KeyError, TypeError):
            try:
                mtime = self.path.stat().st_mtime
            except FileNotFoundError:
                return None
            logger.warning("Lock file %s is unreadable; using its modification time", self.path)
            return LockToken(owner_pid=-1, acquired_at=datetime.fromtimestamp(mtime, tz=timezone.utc))

    def is_stale(self, token: LockToken) -> bool:
        return self.clock() - token.acquired_at > self.stale_after

    def acquire(self) -> bool:
        """Write a token for this process; False if another live run holds the lock."""
        if self._held:
            return True

        token = self.read_token()
        if token is not None:
            age = self.clock() - token.acquired_at
            if not self.is_stale(token):
                logger.info(
                    "Another instance is already running (started at %s, PID: %s)",
                    token.acquired_at.isoformat(),
                    token.owner_pid,
                )
                return False
            logger.warning("Stale lock file detected (%d minutes old); removing", int(age.total_seconds() // 60))
            self._unlink()

        payload = json.dumps(
            {
                "pid": os.getpid(),
                "acquired_at": self.clock().isoformat(),
                "detector": self.detector_name,
            },
            indent=2,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            logger.info("Lock %s was taken by a concurrent run", self.path)
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)

        self._held = True
        logger.info("Lock acquired: %s", self.path)
        return True

    def release(self) -> None:
        """Remove our token. Safe to call repeatedly and from any exit path."""
        if not self._held:
            return
        self._held = False
        token = self.read_token()
        if token is not None and token.owner_pid not in (os.getpid(), -1):
            logger.warning("Lock %s now belongs to PID %s; leaving it in place", self.path, token.owner_pid)
            return
        self._unlink()
        logger.info("Lock released: %s", self.path)

    def _unlink(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "RunLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
