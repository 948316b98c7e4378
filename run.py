"""
Run script for starting the speech relay server.

This script configures and starts the FastAPI server that bridges chunked HTTP
caller audio to the speech-to-speech backend.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL]
"""

import argparse
import os
import sys

import uvicorn

from speech_relay.config.logging_config import configure_logging
from speech_relay.config.settings import Settings, load_env_file

# Load environment variables from .env file if it exists
load_env_file()

# Configure logging
logger = configure_logging()


def parse_args(settings: Settings, argv=None):
    """Parse command line arguments, defaulting to the environment settings."""
    parser = argparse.ArgumentParser(
        description="Start the speech relay server"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to run the server on (default: {settings.port}, PORT env var)",
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Host to bind the server to (default: {settings.host}, HOST env var)",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Logging level (default: {settings.log_level}, LOG_LEVEL env var)",
    )
    return parser.parse_args(argv)


def main():
    """Main entry point for starting the server."""
    try:
        settings = Settings.from_env()
        settings.require_backend()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"Error: {e}")
        sys.exit(1)

    args = parse_args(settings)
    configure_logging(args.log_level)

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    logger.info(f"Log level: {args.log_level}")
    logger.info(f"Backend API key configured: {bool(settings.ultravox_api_key)}")

    uvicorn.run(
        "speech_relay.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        # Use HTTP/1.1 for chunked request and response bodies
        http="h11",
        # Disable access logs, we have our own logging
        access_log=False,
        # Reload on code changes during development
        reload=os.getenv("ENV", "production").lower() == "development",
    )


if __name__ == "__main__":
    main()
