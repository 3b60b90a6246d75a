import logging
from typing import Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from app.config.settings import Settings
from app.services.telemetry_service import TelemetryHub

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}
_TLS_SCHEMES = {"mqtts", "ssl"}


def parse_broker_url(url: str) -> tuple[str, int, bool]:
    """Split an ``mqtt://host:port`` URL into (host, port, use_tls)."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"Unsupported MQTT URL scheme: {url}")
    if not parsed.hostname:
        raise ValueError(f"MQTT URL has no host: {url}")
    port = parsed.port or _DEFAULT_PORTS[scheme]
    return parsed.hostname, port, scheme in _TLS_SCHEMES


class MqttSubscriber:
    """Subscribes to the telemetry topic and feeds every payload to the hub.

    paho runs the network loop on its own thread and reconnects on its own;
    the topic is subscribed again from ``_on_connect`` after every reconnect.
    """

    def __init__(
        self,
        settings: Settings,
        hub: TelemetryHub,
        client: Optional[mqtt.Client] = None,
    ):
        self.settings = settings
        self.hub = hub
        self.topic = settings.mqtt_topic
        self.host, self.port, self.use_tls = parse_broker_url(settings.mqtt_url)
        self.connected = False
        self._client = client or mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.mqtt_client_id,
            protocol=mqtt.MQTTv311,
        )

        if settings.mqtt_username:
            self._client.username_pw_set(
                settings.mqtt_username, settings.mqtt_password
            )
        if self.use_tls:
            self._client.tls_set()

        self._client.reconnect_delay_set(min_delay=1, max_delay=30)
        self._client.on_connect = self._on_connect
        self._client.on_connect_fail = self._on_connect_fail
        self._client.on_disconnect = self._on_disconnect
        self._client.on_subscribe = self._on_subscribe
        self._client.on_message = self._on_message

    def start(self):
        logger.info(f"Connecting to MQTT broker at {self.settings.mqtt_url}")
        self._client.connect_async(
            self.host, self.port, keepalive=self.settings.mqtt_keepalive_seconds
        )
        self._client.loop_start()

    def stop(self):
        self._client.disconnect()
        self._client.loop_stop()
        self.connected = False
        logger.info("MQTT subscriber stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"MQTT connection refused: {reason_code}")
            return

        self.connected = True
        logger.info(f"Connected to MQTT broker at {self.settings.mqtt_url}")
        result, _ = client.subscribe(self.topic, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(
                f"Failed to subscribe to topic {self.topic}: "
                f"{mqtt.error_string(result)}"
            )

    def _on_connect_fail(self, client, userdata):
        logger.warning("MQTT connection failed, reconnecting...")

    def _on_disconnect(
        self, client, userdata, disconnect_flags, reason_code, properties=None
    ):
        self.connected = False
        logger.warning(f"MQTT connection closed ({reason_code})")

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error(f"Failed to subscribe to topic {self.topic}: {reason_code}")
            else:
                logger.info(f"Subscribed to topic: {self.topic}")

    def _on_message(self, client, userdata, message):
        self.hub.ingest(message.payload)
