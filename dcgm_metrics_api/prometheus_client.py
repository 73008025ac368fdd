"""Prometheus instant-query client that fetches DCGM series."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Sequence, Union

import aiohttp

from .config import parse_metric_names
from .errors import BackendError, ConfigError, DecodeError, EmptyResultError, TransportError
from .models import Observation, create_observations_from_json

logger = logging.getLogger(__name__)

QUERY_PATH = "/api/v1/query"
READINESS_QUERY = "up"


def decode_query_response(body: str, metric: str) -> List[Observation]:
    """Decode an instant-query response body into observations.

    Args:
        body: Raw response text
        metric: Name of the queried series, used in error messages

    Raises:
        DecodeError: If the body is not a well-formed query envelope
        BackendError: If the envelope status is not "success"
    """
    try:
        envelope = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"failed to decode response for metric {metric}: {e}") from e

    if not isinstance(envelope, dict):
        raise DecodeError(
            f"failed to decode response for metric {metric}: expected an object, got {type(envelope).__name__}"
        )

    status = envelope.get("status", "")
    if not isinstance(status, str):
        raise DecodeError(f"failed to decode response for metric {metric}: status must be a string")

    if status != "success":
        message = f"prometheus returned non-success status for metric {metric}: {status}"
        if envelope.get("error"):
            message += f" ({envelope.get('errorType', 'error')}: {envelope['error']})"
        raise BackendError(message)

    return create_observations_from_json(envelope.get("data"), metric)


class PrometheusClient(ABC):
    """Abstract base class for Prometheus query clients."""

    @abstractmethod
    async def query(self, metric: str) -> List[Observation]:
        """Run one instant query for a series name."""
        pass

    @abstractmethod
    async def check_ready(self) -> None:
        """Check the backend, raising TransportError when it is not reachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the client and cleanup resources."""
        pass

    async def fetch_metrics(self, metric_names: Union[str, Sequence[str]]) -> List[Observation]:
        """Query every series in order and concatenate the observations.

        The first failing query aborts the whole fetch.

        Args:
            metric_names: YAML metric-name list or an already-parsed sequence

        Raises:
            ConfigError: If no metric names are given
            ParseError: If the metric-name list cannot be parsed
            TransportError: If a query fails or returns a non-200 status
            DecodeError: If a response is malformed
            BackendError: If the backend reports a non-success status
            EmptyResultError: If no query returned any observation
        """
        names = parse_metric_names(metric_names)

        observations: List[Observation] = []
        for metric in names:
            results = await self.query(metric)
            logger.debug(f"Metric {metric} returned {len(results)} observations")
            observations.extend(results)

        if not observations:
            raise EmptyResultError("no results returned from Prometheus")

        return observations

    async def __aenter__(self) -> "PrometheusClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class AsyncPrometheusHTTPClient(PrometheusClient):
    """aiohttp client for the Prometheus /api/v1/query endpoint."""

    def __init__(self, prometheus_url: str, timeout: Optional[float] = None):
        """Initialize the HTTP client.

        Args:
            prometheus_url: Base URL of the Prometheus server
            timeout: Total request timeout in seconds, None for the aiohttp default
        """
        if not prometheus_url:
            raise ConfigError("prometheus URL is empty")

        self.endpoint = prometheus_url.rstrip('/')
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            if self.timeout is not None:
                self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            else:
                self._session = aiohttp.ClientSession()
        return self._session

    async def _get(self, query: str, read_body: bool = True):
        """Issue one GET for ``query`` and return (status, body).

        With ``read_body`` false the body is left unread and returned as None.
        """
        url = f"{self.endpoint}{QUERY_PATH}"
        session = await self._get_session()
        async with session.get(url, params={"query": query}) as response:
            body = await response.text() if read_body else None
            return response.status, body

    async def query(self, metric: str) -> List[Observation]:
        """Run one instant query for a series name.

        Raises:
            TransportError: If the request fails or returns a non-200 status
            DecodeError: If the response is malformed
            BackendError: If the backend reports a non-success status
        """
        logger.debug(f"Querying {self.endpoint}{QUERY_PATH} for {metric}")

        try:
            status, body = await self._get(metric)
        except asyncio.TimeoutError as e:
            raise TransportError(f"failed to fetch metric {metric}: request timeout") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"failed to fetch metric {metric}: {e}") from e
        except UnicodeDecodeError as e:
            raise DecodeError(f"failed to decode response for metric {metric}: {e}") from e

        if status != 200:
            raise TransportError(
                f"failed to fetch metric {metric}: status {status}, body: {body}",
                status=status
            )

        return decode_query_response(body, metric)

    async def check_ready(self) -> None:
        """Check the backend with an ``up`` query.

        Raises:
            TransportError: If the backend cannot be reached or answers non-200
        """
        try:
            status, _ = await self._get(READINESS_QUERY, read_body=False)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"cannot connect to Prometheus at {self.endpoint}: {e}") from e

        if status != 200:
            raise TransportError(f"Prometheus readiness query returned status {status}", status=status)

    def get_client_status(self) -> Dict[str, Any]:
        """Get current client status for diagnostics."""
        return {
            "endpoint": self.endpoint,
            "timeout": self.timeout,
            "session_open": self._session is not None and not self._session.closed
        }

    async def close(self) -> None:
        """Close the HTTP session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Prometheus client session closed")


class MockPrometheusClient(PrometheusClient):
    """Mock Prometheus client for testing purposes."""

    def __init__(self,
                 responses: Optional[Dict[str, Any]] = None,
                 status: int = 200,
                 ready: bool = True,
                 failure_exception: Optional[Exception] = None):
        """Initialize mock client.

        Args:
            responses: Response envelope (dict) or raw body (str) per metric name
            status: HTTP status to simulate for every query
            ready: Whether check_ready succeeds
            failure_exception: Exception to raise from every query
        """
        self.responses = responses or {}
        self.status = status
        self.ready = ready
        self.failure_exception = failure_exception
        self.queried: List[str] = []
        self.closed = False

    async def query(self, metric: str) -> List[Observation]:
        """Mock instant query."""
        self.queried.append(metric)

        if self.failure_exception is not None:
            raise self.failure_exception

        response = self.responses.get(metric, {"status": "success", "data": {"resultType": "vector", "result": []}})
        body = response if isinstance(response, str) else json.dumps(response)

        if self.status != 200:
            raise TransportError(
                f"failed to fetch metric {metric}: status {self.status}, body: {body}",
                status=self.status
            )

        return decode_query_response(body, metric)

    async def check_ready(self) -> None:
        """Mock readiness check."""
        if not self.ready:
            raise TransportError("cannot connect to Prometheus")
        if self.status != 200:
            raise TransportError(f"Prometheus readiness query returned status {self.status}", status=self.status)

    async def close(self) -> None:
        """Mock close method."""
        self.closed = True


async def fetch_prometheus_metrics(prometheus_url: str,
                                   metric_names: Union[str, Sequence[str]],
                                   timeout: Optional[float] = None) -> List[Observation]:
    """Fetch every configured series from Prometheus.

    Configuration problems are reported before any request is made.

    Args:
        prometheus_url: Base URL of the Prometheus server
        metric_names: YAML metric-name list or an already-parsed sequence
        timeout: Total request timeout in seconds, None for the aiohttp default

    Returns:
        Observations of all series, in metric-name order
    """
    if not prometheus_url:
        raise ConfigError("prometheus URL is empty")

    names = parse_metric_names(metric_names)

    async with AsyncPrometheusHTTPClient(prometheus_url, timeout=timeout) as client:
        return await client.fetch_metrics(names)
