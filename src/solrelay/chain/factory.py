"""Chain client factory."""

import logging
from typing import Optional

from solrelay.chain.base import ChainClient
from solrelay.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_chain_client(settings: Optional[Settings] = None) -> ChainClient:
    """Create the chain client for the configured mode.

    Dry-run mode gets the in-memory ledger, otherwise the Solana RPC client.
    """
    settings = settings or get_settings()

    if settings.dry_run:
        from solrelay.chain.simulated import SimulatedChainClient

        logger.warning("DRY_RUN enabled - using simulated chain client")
        return SimulatedChainClient()

    from solrelay.chain.solana import SolanaChainClient

    return SolanaChainClient(settings.sol_rpc_url, timeout=settings.rpc_timeout_seconds)
