"""
Main application factory for sdweb
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import DEFAULT_CONFIG_PATH, load_config
from .metrics import MetricsManager
from .middleware import setup_middleware
from .models import Config
from .router import FileRouter
from .storage import LocalStorage


logger = logging.getLogger(__name__)


def setup_logging(config: Config):
    """Setup logging configuration"""
    log_config = config.logging

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_config.level.upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Create formatter
    if log_config.json:
        formatter = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","msg":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler if configured
    if log_config.file:
        log_file = Path(log_config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def check_root(config: Config):
    """Report on the exposed root without creating it"""
    root = Path(config.web.root_path)
    if not root.exists():
        # Removable media may simply not be inserted yet
        logger.warning(f"Root path does not exist (yet): {root}")
    elif not root.is_dir():
        logger.warning(f"Root path is not a directory: {root}")


def create_app(config: Optional[Config] = None, config_path: Optional[str] = None) -> FastAPI:
    """
    Create FastAPI application

    Args:
        config: Ready configuration; when omitted it is loaded from
            ``config_path``, ``$SDWEB_CONFIG`` or ``sdweb.yaml``
        config_path: Configuration file to load
    """

    if config is None:
        if not config_path:
            config_path = os.getenv("SDWEB_CONFIG", DEFAULT_CONFIG_PATH)
        config = load_config(config_path)
        setup_logging(config)

    check_root(config)

    app = FastAPI(
        title="sdweb",
        description="Filesystem subtree over HTTP",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )

    metrics = MetricsManager()

    # Store config in app state
    app.state.config = config
    app.state.metrics = metrics

    setup_middleware(app, metrics)

    # Health check endpoint
    @app.get("/healthz")
    async def health_check():
        return {"ok": True, "version": __version__}

    # Metrics endpoint
    @app.get("/metrics")
    async def get_metrics():
        return metrics.get_metrics()

    # Registered last so an empty prefix cannot shadow the endpoints above
    file_router = FileRouter(config.web, LocalStorage(), metrics)
    file_router.register(app)
    app.state.file_router = file_router

    web = config.web
    logger.info(f"sdweb serving {web.root_path} at {web.url_prefix or '/'}")
    logger.info(
        f"Capabilities: download={web.download_enabled} "
        f"upload={web.upload_enabled} delete={web.deletion_enabled}"
    )

    return app


def main():
    """Main entry point for running the server"""
    import argparse

    parser = argparse.ArgumentParser(description="sdweb file server")
    parser.add_argument("--config", "-c", default=None, help="Configuration file path")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    config_path = args.config or os.getenv("SDWEB_CONFIG", DEFAULT_CONFIG_PATH)
    # The factory re-reads the file in the server process
    os.environ["SDWEB_CONFIG"] = config_path

    # Load config to get server settings
    try:
        config = load_config(config_path)
    except ValueError as e:
        parser.error(str(e))

    host = args.host or config.server.addr
    port = args.port or config.server.port

    uvicorn.run(
        "sdweb.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        access_log=False,  # We handle access logging ourselves
        server_header=False,
    )


if __name__ == "__main__":
    main()
