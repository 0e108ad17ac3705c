"""Aggregator factory."""

import logging
from typing import Optional

from solrelay.config import Settings, get_settings
from solrelay.routing.base import AggregatorClient

logger = logging.getLogger(__name__)


def create_aggregator(settings: Optional[Settings] = None) -> AggregatorClient:
    """Create the aggregator for the configured mode."""
    settings = settings or get_settings()

    if settings.dry_run:
        from solrelay.routing.dry_run import DryRunAggregator

        logger.warning("DRY_RUN enabled - using simulated aggregator")
        return DryRunAggregator()

    from solrelay.routing.jupiter import JupiterProvider

    return JupiterProvider(
        base_url=settings.jupiter_api_url,
        api_key=settings.jupiter_api_key or None,
    )
