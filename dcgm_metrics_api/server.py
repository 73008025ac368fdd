#!/usr/bin/env python3
"""
DCGM Metrics API Server

A FastAPI server that relays DCGM GPU telemetry from Prometheus:
- Merged per-GPU status (memory, utilization, temperature) on the metrics endpoint
- Readiness check that confirms Prometheus is reachable
- Health check that validates the required configuration
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
import logging
import json
import os
from typing import Any, Callable, Dict, List, Optional
from dotenv import load_dotenv

from . import __version__
from .config import (
    ConfigurationManager,
    EnvironmentConfigurationManager,
    METRIC_NAMES_ENV,
    PROMETHEUS_URL_ENV,
)
from .errors import ConfigError, MetricsRelayError, ParseError, TransportError
from .merger import merge_gpu_metrics
from .models import GpuStatus
from .prometheus_client import AsyncPrometheusHTTPClient, PrometheusClient

# Load environment variables from .env file
load_dotenv()

# Helper function to parse boolean environment variables
def get_bool_env(key: str, default: bool = False) -> bool:
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on')

# Helper function to parse int environment variables
def get_int_env(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default

# Load server settings from environment variables
HOST = os.getenv("HOST", "0.0.0.0")
PORT = get_int_env("PORT", 8080)
RELOAD = get_bool_env("RELOAD", False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
ACCESS_LOG = get_bool_env("ACCESS_LOG", True)
WORKERS = get_int_env("WORKERS", 1)
TITLE = os.getenv("TITLE", "DCGM Metrics API")
DESCRIPTION = os.getenv("DESCRIPTION", "Relays DCGM GPU metrics from Prometheus as merged per-GPU status")
DOCS_URL = os.getenv("DOCS_URL", "/docs")
REDOC_URL = os.getenv("REDOC_URL", "/redoc")
ENABLE_CORS = get_bool_env("ENABLE_CORS", False)
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Configure logging using environment values
logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO), format=LOG_FORMAT)
logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Optional[float]], PrometheusClient]
ConfigFactory = Callable[[], ConfigurationManager]


# Pydantic models for API documentation
class GpuStatusModel(BaseModel):
    Hostname: str
    gpu: str
    uuid: str
    timestamp: Optional[str]
    modelName: str
    memory_free: float
    memory_used: float
    memory_total: float
    gpu_utilization: float
    gpu_memory_utilization: float
    gpu_temp: float


class ErrorResponse(BaseModel):
    error: str


def default_client_factory(prometheus_url: str, timeout: Optional[float]) -> PrometheusClient:
    return AsyncPrometheusHTTPClient(prometheus_url, timeout=timeout)


async def collect_gpu_statuses(config: ConfigurationManager,
                               client_factory: ClientFactory = default_client_factory) -> List[GpuStatus]:
    """Fetch the configured series and merge them into per-GPU status records.

    Raises:
        MetricsRelayError: On the first configuration, fetch or merge failure
    """
    prometheus_url = config.get_prometheus_url()
    if not prometheus_url:
        raise ConfigError(f"{PROMETHEUS_URL_ENV} environment variable is not set")

    if not config.get_metric_names_raw():
        raise ConfigError(f"{METRIC_NAMES_ENV} environment variable is not set")

    metric_names = config.get_metric_names()

    async with client_factory(prometheus_url, config.get_request_timeout()) as client:
        observations = await client.fetch_metrics(metric_names)

    statuses = merge_gpu_metrics(observations)
    logger.debug(f"Merged {len(observations)} observations into {len(statuses)} GPU statuses")
    return statuses


def error_response(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(config_factory: ConfigFactory = EnvironmentConfigurationManager,
               client_factory: ClientFactory = default_client_factory) -> FastAPI:
    """Build the FastAPI application.

    The metrics route path is taken from the configuration when the app is
    built. Everything else is read from a fresh configuration on each request.

    Args:
        config_factory: Callable returning a configuration snapshot
        client_factory: Callable building a Prometheus client for a URL and timeout
    """
    metrics_endpoint = config_factory().get_metrics_endpoint()

    app = FastAPI(
        title=TITLE,
        description=DESCRIPTION,
        version=__version__,
        docs_url=DOCS_URL,
        redoc_url=REDOC_URL
    )

    # Add CORS middleware if enabled
    if ENABLE_CORS:
        from fastapi.middleware.cors import CORSMiddleware
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET"],
            allow_headers=["*"],
        )

    async def gpu_metrics() -> Response:
        """Get merged status for every GPU reported by Prometheus"""
        try:
            statuses = await collect_gpu_statuses(config_factory(), client_factory)
        except MetricsRelayError as e:
            logger.warning(f"Metrics request failed: {e}")
            return error_response(str(e))

        try:
            content = json.dumps([status.to_dict() for status in statuses], allow_nan=False)
        except ValueError as e:
            logger.error(f"Failed to encode GPU statuses: {e}")
            return error_response("Failed to encode response")

        return Response(content=content, media_type="application/json")

    app.add_api_route(
        metrics_endpoint,
        gpu_metrics,
        methods=["GET"],
        tags=["GPU"],
        response_model=List[GpuStatusModel],
        responses={500: {"model": ErrorResponse}}
    )

    @app.get("/", tags=["Info"])
    async def home() -> Dict[str, Any]:
        """Home endpoint with API information"""
        return {
            "message": TITLE,
            "version": __version__,
            "endpoints": {
                "/": "This help message",
                metrics_endpoint: "Merged GPU status from Prometheus",
                "/ready": "Readiness check (Prometheus reachable)",
                "/health": "Health check (configuration present)",
                DOCS_URL: "Swagger API documentation",
                REDOC_URL: "ReDoc API documentation"
            }
        }

    @app.get("/ready", tags=["Health"], response_class=PlainTextResponse)
    async def ready() -> PlainTextResponse:
        """Readiness check endpoint"""
        config = config_factory()
        prometheus_url = config.get_prometheus_url()
        if not prometheus_url:
            return PlainTextResponse(f"{PROMETHEUS_URL_ENV} not set", status_code=503)

        try:
            async with client_factory(prometheus_url, config.get_request_timeout()) as client:
                await client.check_ready()
        except TransportError as e:
            logger.warning(f"Readiness check failed: {e}")
            if e.status is not None:
                return PlainTextResponse("Prometheus returned non-200 status", status_code=503)
            return PlainTextResponse("Cannot connect to Prometheus", status_code=503)

        return PlainTextResponse("OK")

    @app.get("/health", tags=["Health"], response_class=PlainTextResponse)
    async def health() -> PlainTextResponse:
        """Health check endpoint"""
        config = config_factory()
        if not config.is_complete():
            return PlainTextResponse("Required environment variables not set", status_code=503)

        try:
            config.get_metric_names()
        except ParseError as e:
            logger.warning(f"Health check failed: {e}")
            return PlainTextResponse(f"Invalid {METRIC_NAMES_ENV} format", status_code=503)
        except ConfigError:
            # An empty list still parses
            pass

        return PlainTextResponse("OK")

    return app


app = create_app()


def run_server(host: str = HOST, port: int = PORT) -> None:
    """Run the API server with Uvicorn."""
    import uvicorn

    config = EnvironmentConfigurationManager()

    logger.info("=" * 60)
    logger.info(f"Starting {TITLE} {__version__}...")
    logger.info("=" * 60)
    logger.info(f"  Host: {host}")
    logger.info(f"  Port: {port}")
    logger.info(f"  Metrics endpoint: {config.get_metrics_endpoint()}")
    logger.info(f"  Prometheus URL: {config.get_prometheus_url() or 'NOT SET'}")
    logger.info(f"  Log Level: {LOG_LEVEL}")
    logger.info("-" * 40)

    if not config.is_complete():
        logger.warning(
            f"{PROMETHEUS_URL_ENV} and {METRIC_NAMES_ENV} must both be set; "
            f"the metrics endpoint will return errors until they are"
        )

    uvicorn.run(
        "dcgm_metrics_api.server:app",
        host=host,
        port=port,
        reload=RELOAD,
        log_level=LOG_LEVEL.lower(),
        access_log=ACCESS_LOG,
        workers=1 if RELOAD else WORKERS  # Use 1 worker in reload mode
    )


if __name__ == '__main__':
    run_server()
