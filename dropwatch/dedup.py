"""Per-day set of already-alerted batch identities, persisted through ``AlertStore``."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

from .storage import AlertStore
from .utils import now_utc, operating_date

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "processed_batches"


def state_key(detector_name: str) -> str:
    return f"{STATE_KEY_PREFIX}:{detector_name}"


class DedupStore:
    """Identities of batches already handled today for one detector.

    Every ``insert`` is written through immediately so a crash never loses
    progress. Pass ``persist=False`` for a throwaway copy (dry runs).
    """

    def __init__(
        self,
        backend: AlertStore,
        detector_name: str,
        tz: ZoneInfo,
        clock: Callable[[], datetime] = now_utc,
        persist: bool = True,
    ):
        self.backend = backend
        self.detector_name = detector_name
        self.tz = tz
        self.clock = clock
        self.persist = persist
        self.operating_date: date = self._today()
        self._identities: Set[str] = set()
        self._order: List[str] = []

    def _today(self) -> date:
        return operating_date(self.tz, self.clock())

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, identity: str) -> bool:
        return self.contains(identity)

    @property
    def identities(self) -> List[str]:
        return list(self._order)

    def load(self) -> "DedupStore":
        """Read today's identities; anything stored for another day is discarded."""
        self.operating_date = self._today()
        self._replace([])

        raw = self.backend.get_state(state_key(self.detector_name))
        if raw is None:
            return self
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as error:
            logger.warning("Failed to parse batch cache for %s (%s); starting fresh", self.detector_name, error)
            return self

        if not isinstance(data, dict) or not isinstance(data.get("batches"), list):
            logger.warning("Batch cache for %s has unexpected shape; starting fresh", self.detector_name)
            return self
        if data.get("date") != self.operating_date.isoformat():
            logger.info(
                "Batch cache for %s is from %s; starting fresh for %s",
                self.detector_name,
                data.get("date"),
                self.operating_date.isoformat(),
            )
            return self

        self._replace(item for item in data["batches"] if isinstance(item, str) and item)
        if self._identities:
            logger.info("Loaded %d unique batches from cache for %s", len(self._identities), self.detector_name)
        return self

    def contains(self, identity: str) -> bool:
        return identity in self._identities

    def insert(self, identity: str) -> None:
        if identity not in self._identities:
            self._identities.add(identity)
            self._order.append(identity)
        self.save()

    def reset_if_new_day(self) -> bool:
        """Empty the store when the operating day has rolled over. Returns True on reset."""
        today = self._today()
        if today == self.operating_date:
            return False
        logger.info(
            "Operating day changed from %s to %s; clearing batch cache for %s",
            self.operating_date.isoformat(),
            today.isoformat(),
            self.detector_name,
        )
        self.operating_date = today
        self._replace([])
        self.save()
        return True

    def clear(self) -> None:
        self.operating_date = self._today()
        self._replace([])
        self.save()

    def save(self) -> None:
        if not self.persist:
            return
        payload = {"date": self.operating_date.isoformat(), "batches": list(self._order)}
        self.backend.set_state(state_key(self.detector_name), json.dumps(payload))
        logger.debug("Batch cache saved: %d batch(es) for %s", len(self._order), self.detector_name)

    def _replace(self, identities: Iterable[str]) -> None:
        self._identities = set()
        self._order = []
        for identity in identities:
            if identity in self._identities:
                continue
            self._identities.add(identity)
            self._order.append(identity)
