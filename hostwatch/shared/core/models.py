import math
from typing import Any, ClassVar
from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_validator,
    ConfigDict
)
from pydantic.alias_generators import to_camel

from hostwatch.shared.utils.time import get_current_timestamp


def _finite_non_negative(value: Any) -> float:
    """
    Coerce to a finite float ≥ 0.

    NaN, infinities and negatives become 0. Values that are not numbers at all
    raise, so the model rejects them.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a number, got {value!r}")
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _percentage(value: Any) -> float:
    """Coerce to a finite percentage in [0, 100]"""
    return min(100.0, _finite_non_negative(value))


class WireModel(BaseModel):
    """
    Base for models that travel over the wire.

    Python attributes are snake_case, JSON keys are camelCase. Both names are
    accepted on input; output always uses the camelCase aliases.
    """
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        validate_by_name=True,
        validate_by_alias=True,
        serialize_by_alias=True
    )


class MemoryReading(WireModel):
    """Physical memory usage"""
    used_mb: int = Field(default=0, description="Used memory in MiB")
    total_mb: int = Field(default=0, description="Total memory in MiB")
    percent: float = Field(default=0.0, description="Used / total in percent")

    @field_validator('used_mb', 'total_mb', mode='before')
    @classmethod
    def validate_megabytes(cls, v: Any) -> int:
        return int(_finite_non_negative(v))

    @field_validator('percent', mode='before')
    @classmethod
    def validate_percent(cls, v: Any) -> float:
        return _percentage(v)


class DiskReading(WireModel):
    """Filesystem usage of the monitored mount"""
    used_human: str = Field(default="0B", examples=["12G"])
    total_human: str = Field(default="0B", examples=["120G"])
    percent: float = 0.0

    @field_validator('percent', mode='before')
    @classmethod
    def validate_percent(cls, v: Any) -> float:
        return _percentage(v)


class NetworkReading(WireModel):
    """Network throughput in MiB/s since the previous tick"""
    download_mbps: float = Field(default=0.0, alias="downloadMBps")
    upload_mbps: float = Field(default=0.0, alias="uploadMBps")

    @field_validator('download_mbps', 'upload_mbps', mode='before')
    @classmethod
    def validate_rate(cls, v: Any) -> float:
        return _finite_non_negative(v)


class TemperatureReading(BaseModel):
    """CPU temperature; `available` is False when no sensor could be read"""
    model_config = ConfigDict(frozen=True)

    celsius: float = 0.0
    available: bool = False

    @field_validator('celsius', mode='before')
    @classmethod
    def validate_celsius(cls, v: Any) -> float:
        return _finite_non_negative(v)


class ProcessInfo(WireModel):
    """One entry of the top-processes list"""
    name: str = ""
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    pid: int = 0

    @field_validator('cpu_percent', mode='before')
    @classmethod
    def validate_cpu_percent(cls, v: Any) -> float:
        # Multi-threaded processes can exceed 100% of one core
        return _finite_non_negative(v)

    @field_validator('memory_percent', mode='before')
    @classmethod
    def validate_memory_percent(cls, v: Any) -> float:
        return _percentage(v)

    @field_validator('pid', mode='before')
    @classmethod
    def validate_pid(cls, v: Any) -> int:
        return int(_finite_non_negative(v))

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return "" if v is None else str(v)


class MetricsSnapshot(WireModel):
    """
    One complete, immutable reading of all tracked metrics.

    Every field is always present. A sampler that failed contributes its
    documented default, so consumers never see a partial shape.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "cpuPercent": 12.5,
                "memory": {"usedMb": 2048, "totalMb": 8192, "percent": 25.0},
                "disk": {"usedHuman": "12G", "totalHuman": "120G", "percent": 10.0},
                "network": {"downloadMBps": 1.48, "uploadMBps": 0.0},
                "temperatureC": 48.0,
                "temperatureAvailable": True,
                "uptimeSeconds": 86400.5,
                "processes": [
                    {"name": "python3", "cpuPercent": 8.1, "memoryPercent": 1.2, "pid": 4242}
                ],
                "capturedAt": 1760000000000
            }
        }
    )

    WIRE_FIELDS: ClassVar[tuple[str, ...]] = (
        "cpuPercent", "memory", "disk", "network", "temperatureC",
        "temperatureAvailable", "uptimeSeconds", "processes", "capturedAt"
    )

    cpu_percent: float = 0.0
    memory: MemoryReading = Field(default_factory=MemoryReading)
    disk: DiskReading = Field(default_factory=DiskReading)
    network: NetworkReading = Field(default_factory=NetworkReading)
    temperature_c: float = Field(default=0.0, description="0 when no sensor is available")
    temperature_available: bool = False
    uptime_seconds: float = 0.0
    processes: tuple[ProcessInfo, ...] = ()
    captured_at: int = Field(
        default_factory=get_current_timestamp,
        description="Capture time in Unix epoch milliseconds"
    )

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "cpu_percent", "memory", "disk", "network", "captured_at"
    )

    @model_validator(mode='before')
    @classmethod
    def require_sections(cls, data: Any) -> Any:
        """Reject input that lacks the capture time or a top-level section"""
        if isinstance(data, dict):
            missing = [
                to_camel(name) for name in cls.REQUIRED_FIELDS
                if name not in data and to_camel(name) not in data
            ]
            if missing:
                raise ValueError(f"Missing snapshot fields: {', '.join(missing)}")
        return data

    @field_validator('cpu_percent', mode='before')
    @classmethod
    def validate_cpu_percent(cls, v: Any) -> float:
        return _percentage(v)

    @field_validator('temperature_c', 'uptime_seconds', mode='before')
    @classmethod
    def validate_non_negative(cls, v: Any) -> float:
        return _finite_non_negative(v)

    @field_validator('captured_at', mode='before')
    @classmethod
    def validate_captured_at(cls, v: Any) -> int:
        return int(_finite_non_negative(v))

    @classmethod
    def empty(cls) -> 'MetricsSnapshot':
        """All-default snapshot, served before the first real one arrives"""
        return cls.model_construct()

    def summary(self) -> str:
        """One-line human summary used in logs"""
        return (
            f"CPU: {self.cpu_percent}%, RAM: {self.memory.percent}%, "
            f"Temp: {self.temperature_c}°C"
        )
