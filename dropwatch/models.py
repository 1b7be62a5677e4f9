"""Core dataclasses and enums used across the drop detector."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple


class TerminationSource(str, Enum):
    """Which leg of the call hung up first, as reported upstream."""

    TARGET = "Target"
    CALLER = "Caller"
    SYSTEM = "System"
    UNKNOWN = "unknown"


class DispatchOutcome(str, Enum):
    """Result of handing a batch to the alert dispatcher."""

    SENT = "SENT"
    SUPPRESSED = "SUPPRESSED"
    FAILED = "FAILED"
    DRY_RUN = "DRY_RUN"


class RunStatus(str, Enum):
    """Terminal state of one detector run."""

    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    ALREADY_RUNNING = "ALREADY_RUNNING"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CallRecord:
    """One call as reported by the call log source.

    ``duration_seconds`` is already normalized; ``None`` means the upstream value
    was missing or unparseable and the call can never count as short.
    """

    entity_name: str
    phone_number: str
    call_id: Optional[str]
    duration_seconds: Optional[int] = None
    termination_source: TerminationSource = TerminationSource.UNKNOWN
    bid_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class DropBatch:
    """Three consecutive calls matching the drop predicate."""

    calls: Tuple[CallRecord, CallRecord, CallRecord]

    @property
    def entity_name(self) -> str:
        return self.calls[0].entity_name

    @property
    def bid_amount(self) -> Optional[Decimal]:
        return self.calls[0].bid_amount

    @property
    def call_ids(self) -> List[Optional[str]]:
        return [call.call_id for call in self.calls]

    @property
    def phone_numbers(self) -> List[str]:
        return [call.phone_number for call in self.calls]


@dataclass(frozen=True)
class ReportWindow:
    """UTC boundaries of one operating day, plus the zone used for formatting."""

    start: str
    end: str
    timezone_name: str


@dataclass
class RingbaConfig:
    """Call log source (Ringba reporting API) settings."""

    account_id: str
    api_token: str
    base_url: str = "https://api.ringba.com/v2"
    timeout_seconds: float = 30.0
    page_size: int = 150
    max_records: int = 10000
    detail_chunk_size: int = 50
    max_retries: int = 3
    backoff_seconds: float = 1.0


@dataclass
class SlackConfig:
    """Optional bot-token delivery used when no webhook is configured."""

    bot_token: Optional[str] = None
    channel: Optional[str] = None


@dataclass
class NotificationConfig:
    """Notification channel configuration."""

    slack_webhook: Optional[str] = None
    timeout_seconds: float = 6.0


@dataclass
class DetectorConfig:
    """One variant of the consecutive-drop detector."""

    name: str
    same_bid: bool = False
    max_duration_seconds: int = 20
    enrich_details: bool = False
    enabled: bool = True


@dataclass
class RuntimeConfig:
    """Root configuration object for the detector process."""

    ringba: RingbaConfig
    notifications: NotificationConfig
    slack: SlackConfig
    detectors: List[DetectorConfig]
    timezone_name: str = "America/New_York"
    database_path: str = "dropwatch.db"
    lock_dir: str = "."
    lock_stale_minutes: int = 30
    restricted_markers: List[str] = field(default_factory=lambda: ["Restricted"])

    def get_detector(self, name: str) -> Optional[DetectorConfig]:
        for detector in self.detectors:
            if detector.name == name:
                return detector
        return None


@dataclass
class AlertRecord:
    """Ledger row describing an accepted batch and what happened to it."""

    identity: str
    detector: str
    entity_name: str
    call_ids: List[str]
    phone_numbers: List[str]
    detected_at: datetime
    bid_amount: Optional[Decimal] = None
    suppressed: bool = False
    sent: bool = False


@dataclass
class RunSummary:
    """Counters collected while a detector run executes."""

    detector: str
    status: RunStatus = RunStatus.COMPLETED
    entities_total: int = 0
    entities_processed: int = 0
    entities_failed: int = 0
    calls_examined: int = 0
    batches_found: int = 0
    duplicates_skipped: int = 0
    invalid_batches: int = 0
    alerts_sent: int = 0
    alerts_suppressed: int = 0
    alerts_failed: int = 0
    alerts_dry_run: int = 0
    duration_seconds: float = 0.0
    messages: List[str] = field(default_factory=list)
