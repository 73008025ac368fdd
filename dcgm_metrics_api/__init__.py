"""DCGM Metrics API - merged per-GPU status relayed from Prometheus."""

__version__ = "1.0.0"
__license__ = "MIT"

# Public API exports
from .models import (
    GpuStatus,
    MetricName,
    Observation,
    convert_utc_to_jst,
)
from .config import (
    ConfigurationManager,
    EnvironmentConfigurationManager,
    StaticConfigurationManager,
    parse_metric_names,
)
from .prometheus_client import (
    AsyncPrometheusHTTPClient,
    MockPrometheusClient,
    PrometheusClient,
    fetch_prometheus_metrics,
)
from .merger import merge_gpu_metrics
from .errors import (
    MetricsRelayError,
    ConfigError,
    ParseError,
    TransportError,
    DecodeError,
    BackendError,
    UnknownMetricError,
    EmptyInputError,
    EmptyResultError,
    NoValidIdentityError,
)

__all__ = [
    # Version info
    "__version__",
    "__license__",

    # Data models
    "GpuStatus",
    "MetricName",
    "Observation",
    "convert_utc_to_jst",

    # Configuration
    "ConfigurationManager",
    "EnvironmentConfigurationManager",
    "StaticConfigurationManager",
    "parse_metric_names",

    # Fetching and merging
    "AsyncPrometheusHTTPClient",
    "MockPrometheusClient",
    "PrometheusClient",
    "fetch_prometheus_metrics",
    "merge_gpu_metrics",

    # Exceptions
    "MetricsRelayError",
    "ConfigError",
    "ParseError",
    "TransportError",
    "DecodeError",
    "BackendError",
    "UnknownMetricError",
    "EmptyInputError",
    "EmptyResultError",
    "NoValidIdentityError",
]
