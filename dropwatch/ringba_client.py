"""Async client for the Ringba reporting API used as the call log source."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import httpx

from .models import CallRecord, ReportWindow, RingbaConfig
from .parsing import extract_records, record_from_detail, record_from_summary, target_names
from .utils import chunked

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 150
MAX_DETAIL_CHUNK = 50

SUMMARY_COLUMNS = (
    "targetName",
    "inboundCallId",
    "callDt",
    "inboundPhoneNumber",
    "endCallSource",
    "callLengthInSeconds",
    "connectedCallLengthInSeconds",
)


class RingbaAPIError(RuntimeError):
    """Raised when a reporting API request fails after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RingbaClient:
    """Retrieves targets, paginated call logs and per-call details."""

    def __init__(
        self,
        config: RingbaConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.page_size = max(1, min(config.page_size, MAX_PAGE_SIZE))
        self.detail_chunk_size = max(1, min(config.detail_chunk_size, MAX_DETAIL_CHUNK))
        self._transport = transport
        self._sleep = sleep

    @property
    def account_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/{self.config.account_id}"

    async def list_targets(self, window: ReportWindow) -> List[str]:
        """Names of all targets with traffic in the window. Raises RingbaAPIError."""
        body = {
            "reportStart": window.start,
            "reportEnd": window.end,
            "groupByColumns": [{"column": "targetName", "displayName": "Target"}],
            "valueColumns": [{"column": "callCount", "aggregateFunction": None}],
            "orderByColumns": [{"column": "callCount", "direction": "desc"}],
            "formatTimespans": True,
            "formatPercentages": True,
            "generateRollups": True,
            "maxResultsPerGroup": 1000,
            "filters": [],
            "formatTimeZone": window.timezone_name,
        }
        payload = await self._post("insights", body)
        return target_names(extract_records(payload))

    def _call_log_body(self, target_name: str, window: ReportWindow, offset: int) -> Dict[str, Any]:
        return {
            "reportStart": window.start,
            "reportEnd": window.end,
            "orderByColumns": [{"column": "callDt", "direction": "asc"}],
            "filters": [
                {
                    "anyConditionToMatch": [
                        {
                            "column": "targetName",
                            "value": target_name,
                            "isNegativeMatch": False,
                            "comparisonType": "EQUALS",
                        }
                    ]
                }
            ],
            "valueColumns": [{"column": column} for column in SUMMARY_COLUMNS],
            "formatTimespans": True,
            "formatPercentages": True,
            "formatDateTime": True,
            "formatTimeZone": window.timezone_name,
            "size": self.page_size,
            "offset": offset,
        }

    async def fetch_call_logs(self, target_name: str, window: ReportWindow) -> List[CallRecord]:
        """All of a target's calls in the window, ordered by call time.

        A failed page ends pagination with whatever was already collected.
        """
        records: List[CallRecord] = []
        seen_ids: Set[str] = set()
        offset = 0

        while True:
            try:
                payload = await self._post("calllogs", self._call_log_body(target_name, window, offset))
            except RingbaAPIError as error:
                logger.warning("Call log page at offset %d failed for %s: %s", offset, target_name, error)
                break

            page = extract_records(payload)
            for raw in page:
                record = record_from_summary(raw)
                if record is None:
                    continue
                if record.call_id:
                    if record.call_id in seen_ids:
                        continue
                    seen_ids.add(record.call_id)
                records.append(record)

            if len(page) < self.page_size:
                break
            offset += self.page_size
            if offset >= self.config.max_records:
                logger.warning(
                    "Hit %d call limit for %s; results truncated",
                    self.config.max_records,
                    target_name,
                )
                break

        return records[: self.config.max_records]

    async def fetch_call_details(self, call_ids: Sequence[str], window: ReportWindow) -> List[CallRecord]:
        """Detail records (with bid amounts) in the same order as ``call_ids``.

        Chunks that fail are logged and skipped.
        """
        valid_ids = [call_id for call_id in call_ids if call_id]
        if not valid_ids:
            return []

        by_id: Dict[str, CallRecord] = {}
        chunks = list(chunked(valid_ids, self.detail_chunk_size))
        for index, chunk in enumerate(chunks, start=1):
            body = {
                "inboundCallIds": chunk,
                "formatTimespans": True,
                "formatPercentages": True,
                "formatDateTime": True,
                "formatTimeZone": window.timezone_name,
            }
            try:
                payload = await self._post("calllogs/detail", body)
            except RingbaAPIError as error:
                logger.warning("Detail chunk %d/%d (%d IDs) failed: %s", index, len(chunks), len(chunk), error)
                continue

            for raw in extract_records(payload):
                record = record_from_detail(raw)
                if record is not None and record.call_id not in by_id:
                    by_id[record.call_id] = record

        return [by_id[call_id] for call_id in valid_ids if call_id in by_id]

    async def fetch_entity_calls(self, target_name: str, window: ReportWindow, enrich: bool) -> List[CallRecord]:
        calls = await self.fetch_call_logs(target_name, window)
        if not enrich:
            return calls
        call_ids = [call.call_id for call in calls if call.call_id]
        logger.info("   Fetching details for %d calls in chunks of %d", len(call_ids), self.detail_chunk_size)
        return await self.fetch_call_details(call_ids, window)

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        """POST with bounded retry on rate limiting, server errors and transport errors."""
        url = f"{self.account_url}/{path}"
        headers = {
            "Authorization": f"Token {self.config.api_token}",
            "Content-Type": "application/json",
        }
        attempts = 0
        while True:
            attempts += 1
            try:
                async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=body)
            except httpx.TransportError as error:
                if attempts > self.config.max_retries:
                    raise RingbaAPIError(f"POST {path} failed: {error}") from error
                await self._sleep(self.config.backoff_seconds * attempts)
                continue

            status = response.status_code
            if status == 429 or status >= 500:
                if attempts > self.config.max_retries:
                    raise RingbaAPIError(f"POST {path} failed: {status} {response.text[:200]}", status)
                delay = self._retry_after(response) if status == 429 else None
                await self._sleep(delay if delay is not None else self.config.backoff_seconds * attempts)
                continue
            if status >= 400:
                raise RingbaAPIError(f"POST {path} failed: {status} {response.text[:200]}", status)

            try:
                return response.json()
            except ValueError as error:
                raise RingbaAPIError(f"POST {path} returned invalid JSON", status) from error

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None
