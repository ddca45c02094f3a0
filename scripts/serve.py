#!/usr/bin/env python3
"""Run the face identity HTTP API.

The identity store is opened at startup; the embedding model loads on the
first enrollment or recognition request.

Usage:
    python scripts/serve.py
    python scripts/serve.py --host 0.0.0.0 --port 8080 --threshold 0.7
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from faceid.api import create_app
from faceid.config import Config
from faceid.logging_config import get_logger, setup_logging
from faceid.services import create_identity_service

logger = get_logger(__name__)


def parse_args(config: Config) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Serve the face identity HTTP API",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--host", type=str, default=config.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=config.api_port, help="Bind port")

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match threshold, squared L2 distance (overrides .env THRESH value)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )

    return parser.parse_args()


def main() -> None:
    """Main function."""
    config = Config.from_env()
    args = parse_args(config)

    setup_logging(config.log_level, log_file=args.log_file, force=True)
    logger.info(f"Loaded config: {config!r}")

    service = create_identity_service(config)
    if args.threshold is not None:
        service.set_threshold(args.threshold)

    app = create_app(service)

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
