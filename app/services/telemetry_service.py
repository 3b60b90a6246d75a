import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from app.config.settings import Settings, get_settings
from app.core.errors import ParseError
from app.core.fanout import LiveFanout, Observer
from app.core.normalizer import normalize, utcnow
from app.models.telemetry import HistoryRecord, TelemetryReading
from app.storage.history_store import HistoryStore
from app.storage.latest_cache import LatestValueCache

logger = logging.getLogger(__name__)


class TelemetryHub:
    """Owns the history buffer, latest-value cache and live fan-out.

    Ingestion may run on a transport thread while queries run on the event
    loop, so one re-entrant lock guards the store and the cache together.
    Broadcasting happens under the same lock; observers only enqueue, so
    this stays non-blocking and a connecting observer can never miss or
    duplicate a reading between its sync message and the next broadcast.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.lock = threading.RLock()
        self.history = HistoryStore(self.settings.history_max_records)
        self.latest = LatestValueCache()
        self.fanout = LiveFanout()

        self.messages_received = 0
        self.messages_processed = 0
        self.messages_failed = 0

    def ingest(self, raw: bytes) -> Optional[HistoryRecord]:
        """Normalize ``raw`` and publish it; never raises.

        Returns the stored record, or None when the payload was dropped.
        """
        with self.lock:
            self.messages_received += 1

        try:
            reading = normalize(raw, clock=self.clock)
        except ParseError as e:
            with self.lock:
                self.messages_failed += 1
            logger.warning(f"Dropping telemetry message: {e}")
            return None

        try:
            return self.publish(reading)
        except Exception as e:
            with self.lock:
                self.messages_failed += 1
            logger.error(f"Error processing telemetry message: {e}", exc_info=True)
            return None

    def publish(self, reading: TelemetryReading) -> HistoryRecord:
        with self.lock:
            self.latest.set(reading)
            record = self.history.append(reading)
            self.messages_processed += 1
            self.fanout.broadcast(reading)

        logger.debug(f"Received reading: {reading.to_wire()}")
        return record

    def on_observer_connected(self, observer: Observer) -> None:
        with self.lock:
            self.fanout.connect(observer, self.latest.get())

    def on_observer_disconnected(self, observer: Observer) -> None:
        self.fanout.disconnect(observer)

    def get_stats(self) -> dict:
        with self.lock:
            return {
                "messages_received": self.messages_received,
                "messages_processed": self.messages_processed,
                "messages_failed": self.messages_failed,
                "history_size": len(self.history),
                "observers": self.fanout.observer_count,
                "broadcasts": self.fanout.total_broadcasts,
                "delivery_failures": self.fanout.total_delivery_failures,
            }
