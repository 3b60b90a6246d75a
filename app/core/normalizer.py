import json
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.core.errors import ParseError
from app.models.telemetry import TelemetryReading

DEVICE_ID_FIELD = "deviceId"
TIMESTAMP_FIELD = "ts"

# Keys that never become metrics: they are either mapped onto the reading
# itself or would collide with the serialized form.
RESERVED_FIELDS = frozenset(
    {DEVICE_ID_FIELD, TIMESTAMP_FIELD, "timestamp", "sequenceId"}
)

DEFAULT_DEVICE_ID = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_metric(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    elif not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _device_id(value: Any) -> str:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return DEFAULT_DEVICE_ID


def _timestamp(value: Any, clock: Callable[[], datetime]) -> datetime:
    millis = coerce_metric(value)
    if millis is None:
        return clock()
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return clock()


def normalize(
    raw: bytes, clock: Callable[[], datetime] = utcnow
) -> TelemetryReading:
    """Parse a raw payload into a TelemetryReading.

    The payload must decode to a JSON object. ``deviceId`` falls back to
    ``"unknown"`` and ``ts`` (epoch milliseconds) falls back to the current
    time. Every other field is treated as a metric; a metric that cannot be
    read as a number is kept as None rather than failing the whole reading.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        payload = json.loads(text)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise ParseError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(
            f"Payload must be a JSON object, got {type(payload).__name__}"
        )

    metrics = {
        name: coerce_metric(value)
        for name, value in payload.items()
        if name not in RESERVED_FIELDS
    }

    return TelemetryReading(
        device_id=_device_id(payload.get(DEVICE_ID_FIELD)),
        timestamp=_timestamp(payload.get(TIMESTAMP_FIELD), clock),
        metrics=metrics,
    )
