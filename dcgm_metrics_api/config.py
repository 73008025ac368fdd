"""Configuration management for the DCGM metrics relay."""

import os
import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Sequence, Union

import yaml

from .errors import ConfigError, ParseError

logger = logging.getLogger(__name__)

PROMETHEUS_URL_ENV = "PROMETHEUS_URL"
METRIC_NAMES_ENV = "METRIC_NAMES"
METRICS_ENDPOINT_ENV = "METRICS_ENDPOINT"
PROMETHEUS_TIMEOUT_ENV = "PROMETHEUS_TIMEOUT_SECONDS"

DEFAULT_METRICS_ENDPOINT = "/metrics"


def parse_metric_names(metric_names: Union[str, Sequence[str], None]) -> List[str]:
    """Parse the metric-name list from its YAML sequence serialization.

    Already-parsed sequences are passed through as a list.

    Args:
        metric_names: YAML text such as "- DCGM_FI_DEV_GPU_TEMP" or a sequence of names

    Returns:
        Metric names in their configured order

    Raises:
        ConfigError: If the input is empty or parses to an empty list
        ParseError: If the text is not a YAML sequence of scalar names
    """
    if not metric_names:
        raise ConfigError("metric names string is empty")

    if isinstance(metric_names, str):
        try:
            parsed = yaml.safe_load(metric_names)
        except yaml.YAMLError as e:
            raise ParseError(f"failed to parse metric names: {e}") from e

        if not isinstance(parsed, list):
            raise ParseError(
                f"failed to parse metric names: expected a YAML sequence, got {type(parsed).__name__}"
            )
    else:
        parsed = list(metric_names)

    names = []
    for item in parsed:
        if item is None or isinstance(item, (list, dict)):
            raise ParseError(f"failed to parse metric names: invalid entry {item!r}")
        names.append(str(item))

    if not names:
        raise ConfigError("no metric names provided")

    return names


class ConfigurationManager(ABC):
    """Abstract base class for configuration management."""

    @abstractmethod
    def get_prometheus_url(self) -> str:
        """Get the Prometheus base URL, or an empty string when unset."""
        pass

    @abstractmethod
    def get_metric_names_raw(self) -> str:
        """Get the serialized metric-name list, or an empty string when unset."""
        pass

    @abstractmethod
    def get_metrics_endpoint(self) -> str:
        """Get the path the merged metrics are served on."""
        pass

    @abstractmethod
    def get_request_timeout(self) -> Optional[float]:
        """Get the backend request timeout in seconds, None for the client default."""
        pass

    def get_metric_names(self) -> List[str]:
        """Get the parsed metric-name list.

        Raises:
            ConfigError: If the list is missing or empty
            ParseError: If the list cannot be parsed
        """
        return parse_metric_names(self.get_metric_names_raw())

    def is_complete(self) -> bool:
        """Check that both required values are present."""
        return bool(self.get_prometheus_url()) and bool(self.get_metric_names_raw())


class EnvironmentConfigurationManager(ConfigurationManager):
    """Configuration manager that snapshots environment variables when constructed.

    Build one per request to pick up environment changes without a restart.
    """

    DEFAULT_METRICS_ENDPOINT = DEFAULT_METRICS_ENDPOINT

    def __init__(self):
        """Initialize configuration manager and load values."""
        self._prometheus_url = os.getenv(PROMETHEUS_URL_ENV, "")
        self._metric_names_raw = os.getenv(METRIC_NAMES_ENV, "")
        self._metrics_endpoint = self._load_metrics_endpoint()
        self._request_timeout = self._load_request_timeout()

    def get_prometheus_url(self) -> str:
        return self._prometheus_url

    def get_metric_names_raw(self) -> str:
        return self._metric_names_raw

    def get_metrics_endpoint(self) -> str:
        return self._metrics_endpoint

    def get_request_timeout(self) -> Optional[float]:
        return self._request_timeout

    def _load_metrics_endpoint(self) -> str:
        """Load the serving path, falling back to /metrics."""
        endpoint = os.getenv(METRICS_ENDPOINT_ENV, "")
        if not endpoint:
            return self.DEFAULT_METRICS_ENDPOINT

        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return endpoint

    def _load_request_timeout(self) -> Optional[float]:
        """Load the optional backend timeout from environment variable."""
        env_value = os.getenv(PROMETHEUS_TIMEOUT_ENV)

        if env_value is None or env_value.strip() == "":
            return None

        try:
            timeout = float(env_value)
            if timeout <= 0:
                logger.error(
                    f"Invalid {PROMETHEUS_TIMEOUT_ENV}: {timeout}. Must be positive. "
                    f"Using client default timeout"
                )
                return None

            return timeout

        except ValueError:
            logger.error(
                f"Invalid {PROMETHEUS_TIMEOUT_ENV} format: '{env_value}'. "
                f"Using client default timeout"
            )
            return None


class StaticConfigurationManager(ConfigurationManager):
    """Configuration manager holding fixed values, for tests and embedding."""

    def __init__(self,
                 prometheus_url: str = "",
                 metric_names: str = "",
                 metrics_endpoint: str = DEFAULT_METRICS_ENDPOINT,
                 request_timeout: Optional[float] = None):
        self._prometheus_url = prometheus_url
        self._metric_names_raw = metric_names
        self._metrics_endpoint = metrics_endpoint or DEFAULT_METRICS_ENDPOINT
        self._request_timeout = request_timeout

    def get_prometheus_url(self) -> str:
        return self._prometheus_url

    def get_metric_names_raw(self) -> str:
        return self._metric_names_raw

    def get_metrics_endpoint(self) -> str:
        return self._metrics_endpoint

    def get_request_timeout(self) -> Optional[float]:
        return self._request_timeout
