"""Core data models for the DCGM metrics relay."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .errors import DecodeError, UnknownMetricError

NANOSECONDS_PER_SECOND = 1_000_000_000

# Label names carried by DCGM exporter series
LABEL_METRIC_NAME = "__name__"
LABEL_UUID = "UUID"
LABEL_HOSTNAME = "Hostname"
LABEL_DEVICE_ID = "gpu"
LABEL_MODEL_NAME = "modelName"

JST = timezone(timedelta(hours=9), "JST")


class MetricName(Enum):
    """DCGM series the merger knows how to fold into a GpuStatus."""
    GPU_TEMP = "DCGM_FI_DEV_GPU_TEMP"
    MEMORY_FREE = "DCGM_FI_DEV_FB_FREE"
    MEMORY_USED = "DCGM_FI_DEV_FB_USED"
    GPU_UTIL = "DCGM_FI_DEV_GPU_UTIL"
    MEMORY_COPY_UTIL = "DCGM_FI_DEV_MEM_COPY_UTIL"

    @classmethod
    def parse(cls, name: Optional[str]) -> "MetricName":
        """Return the variant for an exact series name.

        Raises:
            UnknownMetricError: If the name is not one of the recognized series
        """
        try:
            return cls(name)
        except ValueError:
            raise UnknownMetricError(name) from None


def convert_utc_to_jst(utc_time: datetime) -> datetime:
    """Express an aware datetime at the fixed +09:00 display offset."""
    if utc_time.tzinfo is None:
        utc_time = utc_time.replace(tzinfo=timezone.utc)
    return utc_time.astimezone(JST)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format an aware datetime as RFC 3339 with trailing fraction zeros trimmed."""
    if value is None:
        return None

    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    fraction = f"{value.microsecond:06d}".rstrip("0")
    if fraction:
        text += f".{fraction}"

    offset = value.strftime("%z")
    if offset in ("", "+0000"):
        return text + "Z"
    return f"{text}{offset[:3]}:{offset[3:]}"


@dataclass(frozen=True)
class Observation:
    """One labeled sample returned by the backend for one series and one device."""
    labels: Mapping[str, str]
    timestamp_ns: int
    value: float

    def __post_init__(self):
        """Validate the observation and freeze its labels."""
        if not isinstance(self.labels, Mapping):
            raise ValueError(f"labels must be a mapping, got {type(self.labels)}")

        for key, label_value in self.labels.items():
            if not isinstance(key, str) or not isinstance(label_value, str):
                raise ValueError(f"labels must map strings to strings, got {key!r}: {label_value!r}")

        if not isinstance(self.timestamp_ns, int) or isinstance(self.timestamp_ns, bool):
            raise ValueError(f"timestamp_ns must be an integer, got {self.timestamp_ns!r}")

        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @property
    def metric_name(self) -> str:
        return self.labels.get(LABEL_METRIC_NAME, "")

    @property
    def uuid(self) -> str:
        return self.labels.get(LABEL_UUID, "")

    @property
    def hostname(self) -> str:
        return self.labels.get(LABEL_HOSTNAME, "")

    @property
    def device_id(self) -> str:
        return self.labels.get(LABEL_DEVICE_ID, "")

    @property
    def model_name(self) -> str:
        return self.labels.get(LABEL_MODEL_NAME, "")

    @property
    def timestamp(self) -> datetime:
        """Sample instant as an aware UTC datetime (microsecond precision)."""
        seconds, nanos = divmod(self.timestamp_ns, NANOSECONDS_PER_SECOND)
        return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(microseconds=nanos // 1000)

    @staticmethod
    def instant_to_nanoseconds(instant: float) -> int:
        """Convert float Unix seconds to integer nanoseconds, rounding the fraction."""
        seconds = int(instant)
        nanos = round((instant - seconds) * NANOSECONDS_PER_SECOND)
        return seconds * NANOSECONDS_PER_SECOND + nanos

    @classmethod
    def from_json(cls, row: Any, metric: Optional[str] = None) -> "Observation":
        """Decode one instant-query result row.

        Args:
            row: A result entry of the form {"metric": {...}, "value": [instant, "value"]}
            metric: Name of the queried series, used in error messages

        Raises:
            DecodeError: If the row is malformed or the value is not numeric
        """
        if not isinstance(row, dict):
            raise DecodeError(f"invalid result row for metric {metric}: expected an object, got {type(row).__name__}")

        labels = row.get("metric") or {}
        if not isinstance(labels, dict):
            raise DecodeError(f"invalid labels for metric {metric}: expected an object")

        name = metric or labels.get(LABEL_METRIC_NAME)

        sample = row.get("value")
        if not isinstance(sample, list) or len(sample) < 2:
            raise DecodeError(f"invalid sample for metric {name}: expected [timestamp, value]")

        instant, raw_value = sample[0], sample[1]
        if isinstance(instant, bool) or not isinstance(instant, (int, float)):
            raise DecodeError(f"invalid timestamp format for metric {name}: expected a number")

        if not isinstance(raw_value, str):
            raise DecodeError(f"invalid value format for metric {name}: expected a string")

        try:
            value = float(raw_value)
        except ValueError as e:
            raise DecodeError(f"invalid value for metric {name}: {e}") from e

        try:
            if not math.isfinite(instant):
                raise ValueError(f"{instant!r} is not a finite number")
            timestamp_ns = cls.instant_to_nanoseconds(instant)
        except (ValueError, OverflowError) as e:
            raise DecodeError(f"invalid timestamp for metric {name}: {e}") from e

        try:
            observation = cls(labels=labels, timestamp_ns=timestamp_ns, value=value)
        except ValueError as e:
            raise DecodeError(f"invalid result row for metric {name}: {e}") from e

        # The instant must also be representable as a JST datetime
        try:
            convert_utc_to_jst(observation.timestamp)
        except (ValueError, OverflowError, OSError) as e:
            raise DecodeError(f"invalid timestamp for metric {name}: {instant!r} is out of range") from e

        return observation


@dataclass
class GpuStatus:
    """Merged current status of one GPU, keyed by its UUID."""
    uuid: str
    hostname: str = ""
    device_id: str = ""
    model_name: str = ""
    timestamp: Optional[datetime] = None
    memory_free: float = 0.0
    memory_used: float = 0.0
    memory_total: float = 0.0
    gpu_utilization: float = 0.0
    gpu_memory_utilization: float = 0.0
    gpu_temp: float = 0.0

    def __post_init__(self):
        """Validate GPU status after initialization."""
        if not isinstance(self.uuid, str) or not self.uuid:
            raise ValueError(f"uuid must be a non-empty string, got {self.uuid!r}")

    def update_metric(self, metric: MetricName, value: float) -> None:
        """Set the field fed by ``metric`` and refresh the derived total memory."""
        if metric is MetricName.MEMORY_FREE:
            self.memory_free = value
        elif metric is MetricName.MEMORY_USED:
            self.memory_used = value
        elif metric is MetricName.GPU_UTIL:
            self.gpu_utilization = value
        elif metric is MetricName.MEMORY_COPY_UTIL:
            self.gpu_memory_utilization = value
        elif metric is MetricName.GPU_TEMP:
            self.gpu_temp = value
        else:
            raise UnknownMetricError(metric)

        # A zero reading for free or used leaves the previous total in place
        if self.memory_free != 0 and self.memory_used != 0:
            self.memory_total = self.memory_free + self.memory_used

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the public JSON field names."""
        return {
            "Hostname": self.hostname,
            "gpu": self.device_id,
            "uuid": self.uuid,
            "timestamp": format_timestamp(self.timestamp),
            "modelName": self.model_name,
            "memory_free": self.memory_free,
            "memory_used": self.memory_used,
            "memory_total": self.memory_total,
            "gpu_utilization": self.gpu_utilization,
            "gpu_memory_utilization": self.gpu_memory_utilization,
            "gpu_temp": self.gpu_temp,
        }


def create_observations_from_json(data: Any, metric: Optional[str] = None) -> List[Observation]:
    """Decode the result rows of an instant-query envelope's data section.

    An absent data section or result list decodes as no rows; either one
    present with the wrong type is malformed.

    Raises:
        DecodeError: If the data section, the result list or any row is malformed
    """
    if data is None:
        return []
    if not isinstance(data, dict):
        raise DecodeError(f"failed to decode response for metric {metric}: data must be an object")

    rows = data.get("result")
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise DecodeError(f"failed to decode response for metric {metric}: result must be a list")

    return [Observation.from_json(row, metric) for row in rows]
