from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    mqtt_url: str = "mqtt://localhost:1883"
    mqtt_topic: str = Field(
        "iot/demo/temperature",
        validation_alias=AliasChoices("topic", "mqtt_topic"),
    )
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id: str = "sensorbridge"
    mqtt_keepalive_seconds: int = 60

    ingest_transport: Literal["mqtt", "redis", "none"] = "mqtt"

    redis_url: str = "redis://localhost:6379"
    redis_socket_timeout: int = 5
    redis_reconnect_delay_seconds: float = 2.0

    history_max_records: int = 1000
    history_default_limit: int = 100
    tracked_metrics: list[str] = [
        "temperature",
        "humidity",
        "co2",
        "ph",
        "light",
        "soilMoisture",
    ]

    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"

    publisher_device_id: str = "sensor-001"
    publisher_interval_seconds: float = 2.0

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
