import logging
import threading
from typing import Any, Optional, Protocol

from app.models.telemetry import SENSOR_DATA_EVENT, TelemetryReading

logger = logging.getLogger(__name__)


class Observer(Protocol):
    """A connected push-channel client.

    ``deliver`` must not block: implementations hand the message to their
    transport and return immediately.
    """

    def deliver(self, message: dict[str, Any]) -> None: ...


def sensor_data_message(reading: TelemetryReading) -> dict[str, Any]:
    return {"event": SENSOR_DATA_EVENT, "data": reading.to_wire()}


class LiveFanout:
    def __init__(self):
        self._observers: set[Observer] = set()
        self._lock = threading.Lock()
        self.total_broadcasts = 0
        self.total_delivery_failures = 0

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def connect(
        self, observer: Observer, latest: Optional[TelemetryReading] = None
    ) -> None:
        with self._lock:
            self._observers.add(observer)
        logger.info(f"Observer connected ({self.observer_count} total)")

        if latest is not None:
            self._deliver(observer, sensor_data_message(latest))

    def disconnect(self, observer: Observer) -> None:
        with self._lock:
            self._observers.discard(observer)
        logger.info(f"Observer disconnected ({self.observer_count} total)")

    def broadcast(self, reading: TelemetryReading) -> int:
        """Send ``reading`` to every connected observer, returning how many accepted it."""
        message = sensor_data_message(reading)
        with self._lock:
            observers = list(self._observers)
            self.total_broadcasts += 1

        delivered = 0
        for observer in observers:
            if self._deliver(observer, message):
                delivered += 1
        return delivered

    def _deliver(self, observer: Observer, message: dict[str, Any]) -> bool:
        try:
            observer.deliver(message)
            return True
        except Exception as e:
            with self._lock:
                self.total_delivery_failures += 1
            logger.warning(f"Dropping message for observer {observer!r}: {e}")
            return False
