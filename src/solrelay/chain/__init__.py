"""Chain clients: the relay's only view of the Solana ledger."""

from solrelay.chain.base import ChainClient, TokenAccount
from solrelay.chain.factory import create_chain_client

__all__ = ["ChainClient", "TokenAccount", "create_chain_client"]
