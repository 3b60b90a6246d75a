from typing import Optional

from app.models.telemetry import TelemetryReading


class LatestValueCache:
    """Single slot holding the most recent reading from any device."""

    def __init__(self):
        self._reading: Optional[TelemetryReading] = None

    def set(self, reading: TelemetryReading) -> None:
        self._reading = reading

    def get(self) -> Optional[TelemetryReading]:
        return self._reading
