"""Device simulator: publishes synthetic sensor readings to the MQTT topic.

Usage::

    python -m app.tools.publisher --interval 2 --device-id sensor-001
"""

import argparse
import json
import logging
import random
import time
from typing import Optional

import paho.mqtt.client as mqtt

from app.config.settings import get_settings
from app.core.mqtt_subscriber import parse_broker_url

logger = logging.getLogger(__name__)

# (low, span) per metric; values are drawn uniformly from [low, low + span)
METRIC_RANGES = {
    "temperature": (20.0, 5.0),
    "humidity": (40.0, 10.0),
    "co2": (400.0, 200.0),
    "ph": (6.0, 2.0),
}


def build_reading(
    device_id: str, rng: Optional[random.Random] = None, now_ms: Optional[int] = None
) -> dict:
    rng = rng or random
    reading = {
        "deviceId": device_id,
        "ts": now_ms if now_ms is not None else int(time.time() * 1000),
    }
    for name, (low, span) in METRIC_RANGES.items():
        reading[name] = f"{low + rng.random() * span:.2f}"
    return reading


def parse_args(argv=None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--url", default=settings.mqtt_url, help="MQTT broker URL")
    parser.add_argument("--topic", default=settings.mqtt_topic)
    parser.add_argument("--device-id", default=settings.publisher_device_id)
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.publisher_interval_seconds,
        help="Seconds between readings",
    )
    parser.add_argument(
        "--count", type=int, default=0, help="Stop after N readings (0 = forever)"
    )
    return parser.parse_args(argv)


def main(argv=None):
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)
    settings = get_settings()
    host, port, use_tls = parse_broker_url(args.url)

    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
    if settings.mqtt_username:
        client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
    if use_tls:
        client.tls_set()

    client.connect(host, port)
    client.loop_start()
    logger.info(f"Connected: {args.url}")

    sent = 0
    try:
        while not args.count or sent < args.count:
            payload = json.dumps(build_reading(args.device_id))
            info = client.publish(args.topic, payload, qos=0)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Publish error: {mqtt.error_string(info.rc)}")
            else:
                logger.info(f"Sent: {payload}")
            sent += 1
            time.sleep(args.interval)
    except KeyboardInterrupt:
        pass
    finally:
        client.disconnect()
        client.loop_stop()


if __name__ == "__main__":
    main()
