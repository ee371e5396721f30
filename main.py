# main.py

import argparse
import logging
import sqlite3
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI

from config import ConfigError, get_config_path, load_settings
from logging_config import setup_logging
from notifications import Notifications
from registry import Registry

# Routers
from routers.webhook import router as webhook_router

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

logger = logging.getLogger(__name__)


def create_app(registry: Registry, notifier: Optional[Notifications] = None) -> FastAPI:
    app = FastAPI(
        title="gitup",
        description="Pulls the latest commits into local working copies on GitHub push webhooks",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.registry = registry
    app.state.notifier = notifier

    app.include_router(webhook_router)
    return app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gitup",
        description="Listen for GitHub push webhooks and pull the pushed repositories."
    )
    parser.add_argument(
        "config", nargs="?", default=None,
        help="Path to the YAML configuration file (default: $CONFIG_PATH or ./config.yaml)"
    )
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Address to listen on")
    args = parser.parse_args(argv)
    args.config = get_config_path(args.config)
    return args


def fail(message: str):
    logger.error(message)
    print(message, file=sys.stderr)
    sys.exit(1)


def main(argv=None):
    args = parse_args(argv)

    # Initialize logging once with defaults; the config file may raise the level to DEBUG.
    setup_logging()
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        fail(f"Cannot start: {e}")
    try:
        setup_logging(settings.debug, settings.log_db_path)
    except (sqlite3.Error, OSError) as e:
        fail(f"Cannot open log database '{settings.log_db_path}': {e}")

    notifier = Notifications(settings.notifications)
    app = create_app(settings.registry, notifier if notifier.enabled else None)

    logger.info(f"Starting gitup on {args.host}:{args.port} with {len(settings.registry)} repositories...")
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
