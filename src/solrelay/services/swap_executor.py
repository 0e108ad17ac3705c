"""Swap execution: build, sign, submit with bounded retries, confirm.

The aggregator builds the transaction once. Only submission is retried and
the same signed transaction is resubmitted each time; the quote is never
refreshed mid-relay.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from solders.transaction import VersionedTransaction

from solrelay.chain.base import ChainClient
from solrelay.config import Settings, get_settings
from solrelay.errors import AggregatorError, ChainError, QuoteInvalid, SwapFailed
from solrelay.routing.base import AggregatorClient, ProtectionOptions, Quote
from solrelay.services.fees import PriorityFeeEstimator
from solrelay.wallets.manager import EphemeralWallet

logger = logging.getLogger(__name__)

MIN_RETRIES = 1
MAX_RETRIES = 10


@dataclass
class SwapResult:
    """Outcome of a confirmed swap."""

    signature: str
    attempts: int
    priority_fee_lamports: Optional[int]
    protection: ProtectionOptions

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "attempts": self.attempts,
            "priority_fee_lamports": self.priority_fee_lamports,
            "protection_enabled": self.protection.enable,
            "bundling_requested": self.protection.use_bundling,
        }


class SwapExecutor:
    """Executes a quoted swap from an ephemeral wallet."""

    def __init__(
        self,
        chain: ChainClient,
        aggregator: AggregatorClient,
        settings: Optional[Settings] = None,
        fee_estimator: Optional[PriorityFeeEstimator] = None,
    ):
        self.chain = chain
        self.aggregator = aggregator
        self.settings = settings or get_settings()
        self.fee_estimator = fee_estimator or PriorityFeeEstimator(chain, self.settings)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.settings.backoff_base_seconds * (2 ** attempt)

    async def build_transaction(
        self,
        wallet: EphemeralWallet,
        quote: Quote,
        options: ProtectionOptions,
    ) -> tuple[VersionedTransaction, Optional[int]]:
        """Fetch the swap transaction from the aggregator and sign it."""
        priority_fee: Optional[int] = None
        if options.enable:
            priority_fee = await self.fee_estimator.estimate()
            logger.info(f"Using priority fee: {priority_fee} lamports")

        try:
            raw = await self.aggregator.get_swap_transaction(
                quote, wallet.address, options, priority_fee_lamports=priority_fee
            )
        except AggregatorError as e:
            raise SwapFailed(
                f"Aggregator could not build the swap transaction: {e}",
                chain_error=e.body,
            ) from e
        except QuoteInvalid as e:
            raise SwapFailed(f"Quote rejected by aggregator: {e.message}", chain_error=e.details) from e

        keypair = wallet.keypair()
        try:
            unsigned = VersionedTransaction.from_bytes(raw)
            signed = VersionedTransaction(unsigned.message, [keypair])
        except Exception as e:
            # solders raises its own error types for malformed bytes and signer mismatch
            raise SwapFailed(f"Failed to sign swap transaction: {e}") from e

        return signed, priority_fee

    async def execute_swap(
        self,
        wallet: EphemeralWallet,
        quote: Quote,
        options: Optional[ProtectionOptions] = None,
    ) -> SwapResult:
        """Execute ``quote`` from ``wallet`` and wait for confirmation.

        Raises:
            SwapFailed: Build, signing, submission after all retries, on-chain
                failure or confirmation timeout
        """
        options = options or ProtectionOptions(max_retries=self.settings.swap_max_retries)
        max_attempts = min(max(options.max_retries, MIN_RETRIES), MAX_RETRIES)

        transaction, priority_fee = await self.build_transaction(wallet, quote, options)

        signature: Optional[str] = None
        last_error: Optional[ChainError] = None
        attempts = 0
        for attempt in range(1, max_attempts + 1):
            attempts = attempt
            try:
                signature = await self.chain.submit_transaction(transaction)
                logger.info(f"Swap submitted (attempt {attempt}/{max_attempts}): {signature}")
                break
            except ChainError as e:
                last_error = e
                logger.warning(f"Swap attempt {attempt}/{max_attempts} failed: {e}")
                if attempt < max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.info(f"Retrying in {delay:.1f}s...")
                    await asyncio.sleep(delay)

        if signature is None:
            raise SwapFailed(
                f"Swap submission failed after {attempts} attempts: {last_error}",
                chain_error=last_error.payload if last_error else None,
                attempts=attempts,
            )

        timeout = self.settings.confirm_timeout_seconds
        try:
            await self.chain.confirm_transaction(signature, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SwapFailed(
                f"Swap not confirmed within {timeout:.0f}s",
                chain_error="confirmation timeout",
                signature=signature,
                attempts=attempts,
            ) from e
        except ChainError as e:
            raise SwapFailed(
                f"Swap failed on-chain: {e}",
                chain_error=e.payload,
                signature=signature,
                attempts=attempts,
            ) from e

        logger.info(f"Swap confirmed: {signature}")
        return SwapResult(
            signature=signature,
            attempts=attempts,
            priority_fee_lamports=priority_fee,
            protection=options,
        )
