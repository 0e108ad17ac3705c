"""Base interface for chain clients.

The orchestrator depends on this exact contract:

1. Balance queries (native and token, token absence is ``None`` not an error)
2. Transaction submission (signed transaction in, signature out)
3. Confirmation polling bounded by a timeout
4. Account existence checks (receiving token accounts)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from solders.hash import Hash
from solders.transaction import VersionedTransaction

logger = logging.getLogger(__name__)


@dataclass
class TokenAccount:
    """A token account owned by a wallet."""

    address: str
    mint: str
    amount: int


class ChainClient(ABC):
    """Abstract base class for ledger access."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Get native balance in lamports."""
        pass

    @abstractmethod
    async def get_token_balance(self, owner: str, mint: str) -> Optional[int]:
        """Get balance of the owner's associated token account for ``mint``.

        Returns:
            Raw token amount, or None when the account does not exist yet
        """
        pass

    @abstractmethod
    async def get_token_accounts(self, owner: str) -> list[TokenAccount]:
        """List all token accounts owned by ``owner``."""
        pass

    @abstractmethod
    async def account_exists(self, address: str) -> bool:
        """Check whether an account is initialized on-chain."""
        pass

    @abstractmethod
    async def get_latest_blockhash(self) -> Hash:
        """Get a recent blockhash for building transactions."""
        pass

    @abstractmethod
    async def submit_transaction(self, transaction: VersionedTransaction) -> str:
        """Submit a signed transaction.

        Returns:
            Transaction signature

        Raises:
            ChainError: If the network rejected the transaction
        """
        pass

    @abstractmethod
    async def confirm_transaction(self, signature: str, timeout: float) -> None:
        """Wait until ``signature`` is confirmed.

        Raises:
            ChainError: If the transaction executed with an error
            asyncio.TimeoutError: If no confirmation arrived within ``timeout``
        """
        pass

    @abstractmethod
    async def get_recent_prioritization_fees(self, accounts: list[str]) -> list[int]:
        """Get recent per-slot prioritization fees touching ``accounts``."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
