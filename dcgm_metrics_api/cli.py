"""Command-line interface for the DCGM metrics relay."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config import EnvironmentConfigurationManager
from .errors import MetricsRelayError


async def snapshot_command() -> int:
    """Fetch and merge the configured series once and print the result."""
    from .server import collect_gpu_statuses

    try:
        statuses = await collect_gpu_statuses(EnvironmentConfigurationManager())
    except MetricsRelayError as e:
        print(f"Error collecting GPU metrics: {e}", file=sys.stderr)
        return 1

    print(json.dumps([status.to_dict() for status in statuses], indent=2))
    return 0


def serve_command(host: Optional[str], port: Optional[int]) -> int:
    """Run the API server."""
    from .server import HOST, PORT, run_server

    run_server(host=host or HOST, port=port or PORT)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dcgm-metrics-api",
        description="Relay DCGM GPU metrics from Prometheus as merged per-GPU status"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", help="Bind address (default: $HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Listen port (default: $PORT or 8080)")

    subparsers.add_parser("snapshot", help="Print the merged GPU status once as JSON")
    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        sys.exit(serve_command(args.host, args.port))
    sys.exit(asyncio.run(snapshot_command()))


if __name__ == "__main__":
    main()
