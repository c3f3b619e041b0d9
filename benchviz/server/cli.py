"""Command-line interface to start the benchmark dashboard server.

Builds the FastAPI app from environment settings and serves it with uvicorn.
Command-line flags override the matching ``BENCHVIZ_*`` variables.

Usage
-----
    benchviz-server --port 3001 --data-dir ./data
"""

from __future__ import annotations

import argparse
import importlib
import os
from typing import List, Optional

from ..observability import setup_logging
from .http import create_app


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for :func:`main`."""
    parser = argparse.ArgumentParser(description="Benchmark dashboard server")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
        ],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=3001, help="HTTP port")
    parser.add_argument(
        "--data-dir",
        dest="data_dir",
        help="Directory for session files (overrides BENCHVIZ_DATA_DIR)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint for running the HTTP server."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Determine effective log level
    env_level = os.environ.get("BENCHVIZ_LOG_LEVEL", "INFO").upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    if args.data_dir:
        os.environ["BENCHVIZ_DATA_DIR"] = args.data_dir

    uvicorn = importlib.import_module("uvicorn")
    app = create_app()
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=effective_level.lower(),
    )


if __name__ == "__main__":
    main()
