#!/usr/bin/env python3
"""
Dumpy Server CLI
Command-line interface for launching the connection API server.

Usage:
    dumpy-server
    dumpy-server --port 3001 --config config/dumpy.yaml
    dumpy-server --log-level DEBUG --reaper-interval 30
"""

import argparse
import sys
from pathlib import Path

import uvicorn

from .core.config import load_config
from .core.logging_config import setup_logging
from .core.models import EngineKind
from .servers.api_server import create_app


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Dumpy Server - HTTP API for testing and pooling database connections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Launch with the default config file (config/dumpy.yaml)
    dumpy-server

    # Launch on a custom port with an explicit config file
    dumpy-server --port 8080 --config /etc/dumpy/dumpy.yaml

    # Close idle pools more aggressively
    dumpy-server --reaper-interval 15

Supported database types:
    mysql       - MySQL / MariaDB
    postgresql  - PostgreSQL
    mongodb     - MongoDB
    sqlserver   - Microsoft SQL Server
    oracle      - Oracle Database
        """
    )

    parser.add_argument(
        "--host",
        help="Interface to bind (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        help="HTTP port (default: $PORT or 3001)"
    )

    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to YAML configuration file"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--reaper-interval",
        type=float,
        help="Seconds between idle connection sweeps (default: 60)"
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Path to .env file (default: .env)"
    )

    return parser


def main() -> None:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    config = load_config(
        config_path=args.config,
        env_file=args.env_file if args.env_file.exists() else None,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reaper_interval_seconds=args.reaper_interval,
    )

    logger = setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        console_logging=config.console_logging
    )

    print("=" * 60)
    print("Dumpy Connection Server")
    print("=" * 60)
    print(f"Listening: http://{config.host}:{config.port}")
    print(f"Engines: {', '.join(EngineKind.values())}")
    print(f"Log Level: {config.log_level}")
    print(f"Idle Reaper: every {config.reaper_interval_seconds}s")
    print("=" * 60)

    try:
        uvicorn.run(
            create_app(config),
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
        )
    except KeyboardInterrupt:
        print("\nShutdown requested...")
    except Exception as e:
        logger.exception("Server failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
