"""Main entry point - runs the relay API."""

import logging

import uvicorn

from solrelay.api.app import create_app
from solrelay.config import get_settings

logger = logging.getLogger(__name__)


def main():
    """Configure logging and serve the API until uvicorn receives a shutdown signal.

    Database init and the stale wallet sweep run in the app lifespan.
    """
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting solrelay ({settings.environment}) on {settings.api_host}:{settings.api_port}")
    if settings.dry_run:
        logger.warning("DRY_RUN is enabled - no real transactions will be sent")
    if not settings.master_key:
        logger.warning("MASTER_KEY not set - wallet secrets are stored unencrypted")

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )
    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
