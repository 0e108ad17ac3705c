"""Deposit detection by bounded balance polling."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from solrelay.chain.base import ChainClient
from solrelay.config import SOL_MINT, Settings, get_settings
from solrelay.errors import ChainError, DepositTimeout

logger = logging.getLogger(__name__)


@dataclass
class BalanceSnapshot:
    """Last observation of a watched address."""

    address: str
    asset: str
    balance: int
    expected: int
    polls: int = 0
    observed_at: float = field(default_factory=time.time)

    @property
    def satisfied(self) -> bool:
        return self.balance >= self.expected


class DepositWatcher:
    """Polls a wallet until the expected deposit shows up or time runs out."""

    def __init__(
        self,
        chain: ChainClient,
        settings: Optional[Settings] = None,
        poll_interval: Optional[float] = None,
    ):
        self.chain = chain
        self.settings = settings or get_settings()
        self.poll_interval = (
            poll_interval if poll_interval is not None else self.settings.deposit_poll_interval
        )

    async def get_balance(self, address: str, asset: str) -> int:
        """Native balance for SOL, associated-account balance otherwise (absent is 0)."""
        if asset == SOL_MINT:
            return await self.chain.get_balance(address)
        balance = await self.chain.get_token_balance(address, asset)
        return balance or 0

    async def wait_for_deposit(
        self,
        address: str,
        asset: str,
        expected_amount: int,
        timeout: Optional[float] = None,
    ) -> BalanceSnapshot:
        """Wait until ``address`` holds at least ``expected_amount`` of ``asset``.

        Raises:
            DepositTimeout: If the deadline passes first; carries the highest
                balance observed
        """
        timeout = self.settings.deposit_timeout_seconds if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        snapshot = BalanceSnapshot(address=address, asset=asset, balance=0, expected=expected_amount)

        logger.info(
            f"Waiting for deposit of {expected_amount} {asset[:8]}... to {address} "
            f"(timeout {timeout:.0f}s)"
        )

        while True:
            snapshot.polls += 1
            try:
                balance = await asyncio.wait_for(
                    self.get_balance(address, asset),
                    timeout=max(deadline - loop.time(), 0.001),
                )
            except (ChainError, asyncio.TimeoutError) as e:
                logger.warning(f"Balance check {snapshot.polls} for {address} failed: {e}")
            else:
                # Report the highest balance seen so diagnostics never go backwards
                if balance > snapshot.balance:
                    snapshot.balance = balance
                snapshot.observed_at = time.time()
                logger.debug(
                    f"Poll {snapshot.polls}: {address} holds {balance}, expecting {expected_amount}"
                )
                if balance >= expected_amount:
                    logger.info(f"Deposit confirmed for {address}: {balance}")
                    return snapshot

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        logger.warning(
            f"Deposit timeout for {address}: expected {expected_amount}, "
            f"last observed {snapshot.balance} after {snapshot.polls} polls"
        )
        raise DepositTimeout(
            address=address,
            asset=asset,
            expected_amount=expected_amount,
            last_balance=snapshot.balance,
            timeout_seconds=timeout,
        )
