from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

SENSOR_DATA_EVENT = "sensorData"


def format_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class TelemetryReading(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str = Field("unknown", alias="deviceId")
    timestamp: datetime
    metrics: dict[str, Optional[float]] = Field(default_factory=dict)

    def metric(self, name: str) -> Optional[float]:
        return self.metrics.get(name)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "deviceId": self.device_id,
            "timestamp": format_timestamp(self.timestamp),
        }
        data.update(self.metrics)
        return data


class HistoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence_id: int
    reading: TelemetryReading

    @property
    def device_id(self) -> str:
        return self.reading.device_id

    @property
    def timestamp(self) -> datetime:
        return self.reading.timestamp

    def to_wire(self) -> dict[str, Any]:
        return {"sequenceId": self.sequence_id, **self.reading.to_wire()}


class MetricStats(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None


class StatsResult(BaseModel):
    total_records: int = 0
    metrics: dict[str, MetricStats] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"totalRecords": self.total_records}
        for name, stats in self.metrics.items():
            data[f"min_{name}"] = stats.min
            data[f"max_{name}"] = stats.max
            data[f"avg_{name}"] = stats.avg
        return data


class ApiResponse(BaseModel):
    message: str = "success"
    data: Any = None


class ErrorResponse(BaseModel):
    error: str
