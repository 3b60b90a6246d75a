from __future__ import annotations

from collections import deque
from datetime import datetime
from itertools import islice
from typing import Iterator, Optional

from app.models.telemetry import HistoryRecord, TelemetryReading

DEFAULT_MAX_RECORDS = 1000


class HistoryStore:
    """Bounded, newest-first buffer of readings.

    Records are ordered by insertion, not by their timestamp. Once the
    buffer holds ``max_records`` entries every append evicts the oldest one.
    The store does no locking of its own; callers that share it across
    threads serialize access (see TelemetryHub).
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        if max_records < 1:
            raise ValueError("max_records must be a positive integer")
        self.max_records = max_records
        self._records: deque[HistoryRecord] = deque(maxlen=max_records)
        self._last_sequence_id = 0

    def __len__(self) -> int:
        return len(self._records)

    def append(self, reading: TelemetryReading) -> HistoryRecord:
        self._last_sequence_id += 1
        record = HistoryRecord(sequence_id=self._last_sequence_id, reading=reading)
        # appendleft on a full deque drops the rightmost (oldest) record
        self._records.appendleft(record)
        return record

    def records(self, device_id: Optional[str] = None) -> Iterator[HistoryRecord]:
        if device_id is None:
            return iter(self._records)
        return (r for r in self._records if r.device_id == device_id)

    def list(
        self, device_id: Optional[str] = None, limit: int = 100
    ) -> list[HistoryRecord]:
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        return list(islice(self.records(device_id), limit))

    def range(
        self,
        start: datetime,
        end: datetime,
        device_id: Optional[str] = None,
    ) -> list[HistoryRecord]:
        if end < start:
            return []
        return [r for r in self.records(device_id) if start <= r.timestamp <= end]
