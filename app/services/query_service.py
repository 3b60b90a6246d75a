import math
import re
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import TypeAdapter, ValidationError

from app.core.errors import InvalidRangeError
from app.models.telemetry import (
    HistoryRecord,
    MetricStats,
    StatsResult,
    TelemetryReading,
)
from app.services.telemetry_service import TelemetryHub

_EPOCH_MILLIS = re.compile(r"^-?\d+$")
_datetime_adapter = TypeAdapter(datetime)


def parse_instant(value: Union[str, int, float, datetime, None]) -> datetime:
    """Read a range bound as a UTC-aware datetime.

    Accepts ISO-8601 datetimes and dates, epoch milliseconds, and datetime
    objects. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _from_millis(value)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if _EPOCH_MILLIS.match(text):
            parsed = _from_millis(int(text))
        else:
            try:
                parsed = _datetime_adapter.validate_python(text)
            except ValidationError:
                raise InvalidRangeError(f"Invalid date: {value!r}")
    else:
        raise InvalidRangeError(f"Invalid date: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _from_millis(value: Union[int, float]) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise InvalidRangeError(f"Invalid date: {value!r}")


def _metric_stats(values: list[float]) -> MetricStats:
    if not values:
        return MetricStats()
    low, high = min(values), max(values)
    try:
        avg = math.fsum(values) / len(values)
    except OverflowError:
        # values near the float limit overflow the sum but not the mean
        avg = math.fsum(v / len(values) for v in values)
    # rounding can push the mean a hair outside the observed bounds
    return MetricStats(min=low, max=high, avg=min(max(avg, low), high))


class QueryEngine:
    """Read-only views over a TelemetryHub's history and latest value."""

    def __init__(self, hub: TelemetryHub):
        self.hub = hub
        self.settings = hub.settings

    def snapshot(self) -> Optional[TelemetryReading]:
        with self.hub.lock:
            return self.hub.latest.get()

    def history(
        self, limit: Optional[int] = None, device_id: Optional[str] = None
    ) -> list[HistoryRecord]:
        if limit is None:
            limit = self.settings.history_default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError("limit must be a positive integer")

        with self.hub.lock:
            return self.hub.history.list(device_id=device_id, limit=limit)

    def history_range(
        self,
        start: Union[str, int, float, datetime, None],
        end: Union[str, int, float, datetime, None],
        device_id: Optional[str] = None,
    ) -> list[HistoryRecord]:
        start_at = parse_instant(start)
        end_at = parse_instant(end)

        with self.hub.lock:
            return self.hub.history.range(start_at, end_at, device_id=device_id)

    def stats(self, device_id: Optional[str] = None) -> StatsResult:
        with self.hub.lock:
            records = list(self.hub.history.records(device_id))

        names = list(self.settings.tracked_metrics)
        seen = set(names)
        for record in records:
            for name in record.reading.metrics:
                if name not in seen:
                    seen.add(name)
                    names.append(name)

        metrics = {}
        for name in names:
            values = [
                value
                for value in (r.reading.metric(name) for r in records)
                if value is not None
            ]
            metrics[name] = _metric_stats(values)

        return StatsResult(total_records=len(records), metrics=metrics)
