"""
Ingest transport adapter tests (MQTT and Redis pub/sub) and the device simulator.
"""

import asyncio
import json
import random
from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from app.core.mqtt_subscriber import MqttSubscriber, parse_broker_url
from app.core.normalizer import normalize
from app.core.redis_subscriber import RedisSubscriber
from app.tools.publisher import METRIC_RANGES, build_reading


@pytest.fixture
def mqtt_client():
    client = MagicMock()
    client.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
    return client


@pytest.fixture
def subscriber(settings, hub, mqtt_client):
    return MqttSubscriber(settings, hub, client=mqtt_client)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("mqtt://localhost:1883", ("localhost", 1883, False)),
        ("mqtt://broker.example.com", ("broker.example.com", 1883, False)),
        ("mqtts://broker.example.com", ("broker.example.com", 8883, True)),
        ("tcp://10.0.0.5:1884", ("10.0.0.5", 1884, False)),
    ],
)
def test_parse_broker_url(url, expected):
    assert parse_broker_url(url) == expected


@pytest.mark.parametrize("url", ["http://localhost", "mqtt://"])
def test_parse_broker_url_rejects_bad_urls(url):
    with pytest.raises(ValueError):
        parse_broker_url(url)


def test_mqtt_subscribes_on_connect(subscriber, mqtt_client, settings):
    subscriber._on_connect(mqtt_client, None, {}, SimpleNamespace(is_failure=False))

    assert subscriber.connected
    mqtt_client.subscribe.assert_called_once_with(settings.mqtt_topic, qos=0)


def test_mqtt_refused_connection_does_not_subscribe(subscriber, mqtt_client):
    subscriber._on_connect(mqtt_client, None, {}, SimpleNamespace(is_failure=True))

    assert not subscriber.connected
    mqtt_client.subscribe.assert_not_called()


def test_mqtt_resubscribes_after_reconnect(subscriber, mqtt_client):
    ok = SimpleNamespace(is_failure=False)
    subscriber._on_connect(mqtt_client, None, {}, ok)
    subscriber._on_disconnect(mqtt_client, None, {}, ok)
    subscriber._on_connect(mqtt_client, None, {}, ok)

    assert mqtt_client.subscribe.call_count == 2


def test_mqtt_message_is_ingested(subscriber, hub, payload):
    message = SimpleNamespace(
        topic="iot/demo/temperature",
        payload=payload(deviceId="s1", temperature="22.50"),
    )

    subscriber._on_message(None, None, message)

    assert hub.latest.get().device_id == "s1"
    assert len(hub.history) == 1


def test_mqtt_malformed_message_is_dropped(subscriber, hub):
    message = SimpleNamespace(topic="t", payload=b"\x00garbage")

    subscriber._on_message(None, None, message)

    assert len(hub.history) == 0
    assert hub.messages_failed == 1


def test_mqtt_credentials_applied(settings, hub, mqtt_client):
    settings = settings.model_copy(
        update={"mqtt_username": "user", "mqtt_password": "secret"}
    )

    MqttSubscriber(settings, hub, client=mqtt_client)

    mqtt_client.username_pw_set.assert_called_once_with("user", "secret")


class FakePubSub:
    def __init__(self, messages, subscribe_error=None):
        self.messages = messages
        self.subscribe_error = subscribe_error
        self.closed = False

    async def subscribe(self, channel):
        if self.subscribe_error:
            raise self.subscribe_error

    async def listen(self):
        for message in self.messages:
            yield message

    async def aclose(self):
        self.closed = True


class IdlePubSub(FakePubSub):
    """A subscription that stays open without delivering anything."""

    def __init__(self):
        super().__init__([])

    async def listen(self):
        await asyncio.Event().wait()
        yield


class FakeRedis:
    def __init__(self, pubsubs):
        self.pubsubs = list(pubsubs)
        self.pubsub_calls = 0

    def pubsub(self, ignore_subscribe_messages=False):
        self.pubsub_calls += 1
        if self.pubsubs:
            return self.pubsubs.pop(0)
        return IdlePubSub()

    async def aclose(self):
        pass


def run_redis_subscriber(subscriber, hub, expected_records, ticks=200):
    async def scenario():
        await subscriber.start()
        for _ in range(ticks):
            if len(hub.history) >= expected_records:
                break
            await asyncio.sleep(0.01)
        await subscriber.stop()

    asyncio.run(scenario())


def test_redis_messages_are_ingested(settings, hub, payload):
    subscriber = RedisSubscriber(settings, hub, client=MagicMock())
    pubsub = FakePubSub(
        [
            {"type": "subscribe", "channel": b"iot/demo/temperature", "data": 1},
            {"type": "message", "data": payload(deviceId="r1", co2="512.00")},
            {"type": "message", "data": b"not json"},
            {"type": "message", "data": payload(deviceId="r2", co2="498.20")},
        ]
    )

    count = asyncio.run(subscriber.consume(pubsub))

    assert count == 3
    assert [r.device_id for r in hub.history.list(limit=10)] == ["r2", "r1"]
    assert hub.messages_failed == 1


@pytest.fixture
def fast_retry_settings(settings):
    return settings.model_copy(update={"redis_reconnect_delay_seconds": 0})


def test_redis_reconnects_after_connection_error(fast_retry_settings, hub, payload):
    """A dropped connection is retried and later messages still arrive."""
    failing = FakePubSub([], subscribe_error=RedisConnectionError("connection reset"))
    healthy = FakePubSub([{"type": "message", "data": payload(deviceId="r1")}])
    client = FakeRedis([failing, healthy])
    subscriber = RedisSubscriber(fast_retry_settings, hub, client=client)

    run_redis_subscriber(subscriber, hub, expected_records=1)

    assert [r.device_id for r in hub.history.list(limit=10)] == ["r1"]
    assert failing.closed
    assert healthy.closed


def test_redis_keeps_running_after_server_error(fast_retry_settings, hub, payload):
    failing = FakePubSub([], subscribe_error=ResponseError("NOPERM channel"))
    healthy = FakePubSub([{"type": "message", "data": payload(deviceId="r2")}])
    client = FakeRedis([failing, healthy])
    subscriber = RedisSubscriber(fast_retry_settings, hub, client=client)

    run_redis_subscriber(subscriber, hub, expected_records=1)

    assert [r.device_id for r in hub.history.list(limit=10)] == ["r2"]


def test_redis_waits_before_resubscribing(settings, hub):
    """An ended subscription is retried only after the reconnect delay."""
    slow_retry = settings.model_copy(update={"redis_reconnect_delay_seconds": 60})
    client = FakeRedis([FakePubSub([])])
    subscriber = RedisSubscriber(slow_retry, hub, client=client)

    run_redis_subscriber(subscriber, hub, expected_records=1, ticks=10)

    assert client.pubsub_calls == 1


def test_simulated_reading_is_accepted_by_normalizer():
    raw = build_reading("sensor-001", rng=random.Random(7), now_ms=1700000000000)

    reading = normalize(json.dumps(raw).encode())

    assert reading.device_id == "sensor-001"
    assert set(reading.metrics) == set(METRIC_RANGES)
    for name, (low, span) in METRIC_RANGES.items():
        assert low <= reading.metric(name) <= low + span
        assert raw[name] == f"{reading.metric(name):.2f}"
