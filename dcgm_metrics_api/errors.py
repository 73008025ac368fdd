"""Exception hierarchy for the DCGM metrics relay."""

from typing import Optional


class MetricsRelayError(Exception):
    """Base class for every error that aborts a metrics request."""
    pass


class ConfigError(MetricsRelayError):
    """Raised when required configuration is missing or empty."""
    pass


class ParseError(ConfigError):
    """Raised when the metric-name list cannot be parsed."""
    pass


class TransportError(MetricsRelayError):
    """Raised when a backend request fails or returns a non-200 status.

    ``status`` holds the HTTP status when the backend answered, None when the
    request never completed.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class DecodeError(MetricsRelayError):
    """Raised when a backend response or sample value is malformed."""
    pass


class UnknownMetricError(DecodeError):
    """Raised when an observation carries a metric name outside the whitelist."""

    def __init__(self, metric_name: Optional[str]):
        self.metric_name = metric_name
        super().__init__(f"invalid metric name: {metric_name or ''}")


class BackendError(MetricsRelayError):
    """Raised when the backend reports a non-success status."""
    pass


class EmptyResultError(MetricsRelayError):
    """Raised when no observations were returned for any metric."""
    pass


class EmptyInputError(MetricsRelayError):
    """Raised when the merger is handed no observations."""
    pass


class NoValidIdentityError(MetricsRelayError):
    """Raised when no observation carries a device identity."""
    pass
