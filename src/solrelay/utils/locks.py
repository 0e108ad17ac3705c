"""Concurrency control for relay operations.

Provides per-wallet locking so two confirm calls for the same ephemeral
wallet never run the deposit/swap/forward sequence concurrently. A lock's
registry entry lives only while some task holds or waits for it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: wallet address -> asyncio.Lock
_wallet_locks: dict[str, asyncio.Lock] = {}
# Tasks holding or waiting on each lock
_lock_users: dict[str, int] = {}
_registry_lock = asyncio.Lock()


async def get_wallet_lock(address: str) -> asyncio.Lock:
    """Get or create the lock for a wallet address."""
    async with _registry_lock:
        if address not in _wallet_locks:
            _wallet_locks[address] = asyncio.Lock()
        return _wallet_locks[address]


async def _check_out(address: str) -> asyncio.Lock:
    async with _registry_lock:
        lock = _wallet_locks.setdefault(address, asyncio.Lock())
        _lock_users[address] = _lock_users.get(address, 0) + 1
        return lock


def _check_in(address: str) -> None:
    remaining = _lock_users.get(address, 0) - 1
    if remaining > 0:
        _lock_users[address] = remaining
        return
    _lock_users.pop(address, None)
    lock = _wallet_locks.get(address)
    if lock is not None and not lock.locked():
        del _wallet_locks[address]


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


@asynccontextmanager
async def wallet_lock(
    address: str,
    timeout: Optional[float] = 30.0,
    operation: str = "relay",
):
    """Hold the exclusive lock of one wallet.

    Args:
        address: Ephemeral wallet address
        timeout: Maximum time to wait for the lock (None = wait forever)
        operation: Description for logging

    Example:
        async with wallet_lock(address, operation="confirm"):
            ...
    """
    lock = await _check_out(address)
    try:
        try:
            if timeout:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for wallet {address}: {operation}")
            raise LockTimeoutError(
                f"Could not acquire lock for wallet {address} within {timeout}s"
            )

        logger.debug(f"Lock acquired for wallet {address}: {operation}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Lock released for wallet {address}: {operation}")
    finally:
        _check_in(address)


def wallet_lock_count() -> int:
    """Number of wallets with a live lock entry."""
    return len(_wallet_locks)


def clear_wallet_locks() -> None:
    """Clear all wallet locks (useful for testing)."""
    _wallet_locks.clear()
    _lock_users.clear()
