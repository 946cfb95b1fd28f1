"""
Entry point: ``getsticky-server`` runs the board server under uvicorn.
"""

import logging

import uvicorn

from .config import configure_logging, settings
from .web.app import create_app

logger = logging.getLogger(__name__)


def main():
    """Main entry point for the board server."""
    configure_logging(settings.logging)

    host = settings.server.host
    port = settings.server.port
    logger.info(f"Starting GetSticky board server on {host}:{port}")
    logger.info(f"Database: {settings.database.path}")

    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.logging.level.lower())


if __name__ == "__main__":
    main()
