"""Greedy windowing of ordered call records into consecutive-drop batches."""

from __future__ import annotations

from typing import Iterator, List, Sequence, Set

from .models import CallRecord, DetectorConfig, DropBatch, TerminationSource

BATCH_SIZE = 3


class DropBatchGrouper:
    """Scans a time-ordered call sequence left to right and emits disjoint triples.

    A triple is accepted when every call was hung up by the target within
    ``max_duration_seconds``; the same-bid variant additionally requires one
    entity and one known bid across the triple. An accepted triple moves the
    cursor past all three calls, a rejected one moves it by a single position.
    The scan never revisits accepted calls, so it does not search for a maximal
    set of triples.
    """

    def __init__(self, max_duration_seconds: int = 20, same_bid: bool = False):
        self.max_duration_seconds = max_duration_seconds
        self.same_bid = same_bid

    @classmethod
    def for_detector(cls, detector: DetectorConfig) -> "DropBatchGrouper":
        return cls(max_duration_seconds=detector.max_duration_seconds, same_bid=detector.same_bid)

    def iter_batches(self, records: Sequence[CallRecord]) -> Iterator[DropBatch]:
        consumed: Set[str] = set()
        index = 0
        while index <= len(records) - BATCH_SIZE:
            window = tuple(records[index : index + BATCH_SIZE])
            if self._accepts(window, consumed):
                consumed.update(call.call_id for call in window)
                yield DropBatch(calls=window)
                index += BATCH_SIZE
            else:
                index += 1

    def group(self, records: Sequence[CallRecord]) -> List[DropBatch]:
        return list(self.iter_batches(records))

    def _accepts(self, window: Sequence[CallRecord], consumed: Set[str]) -> bool:
        if any(call is None or not call.call_id for call in window):
            return False
        if any(call.call_id in consumed for call in window):
            return False
        if any(call.termination_source != TerminationSource.TARGET for call in window):
            return False
        if not all(self._is_short(call) for call in window):
            return False
        if self.same_bid:
            return self._same_bid(window)
        return True

    def _is_short(self, call: CallRecord) -> bool:
        return call.duration_seconds is not None and call.duration_seconds <= self.max_duration_seconds

    @staticmethod
    def _same_bid(window: Sequence[CallRecord]) -> bool:
        first = window[0]
        if not first.entity_name:
            return False
        if any(call.entity_name != first.entity_name for call in window):
            return False
        if any(call.bid_amount is None for call in window):
            return False
        return all(call.bid_amount == first.bid_amount for call in window)


def group_drop_batches(
    records: Sequence[CallRecord],
    same_bid: bool = False,
    max_duration_seconds: int = 20,
) -> List[DropBatch]:
    """Convenience wrapper returning all batches for one entity's calls."""
    grouper = DropBatchGrouper(max_duration_seconds=max_duration_seconds, same_bid=same_bid)
    return grouper.group(records)
