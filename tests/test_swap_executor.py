"""Tests for swap execution and priority fee sizing."""

from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from solrelay.config import SOL_MINT
from solrelay.errors import AggregatorError, ChainError, SwapFailed
from solrelay.routing.base import ProtectionOptions
from solrelay.services.fees import PriorityFeeEstimator
from solrelay.services.swap_executor import SwapExecutor
from solrelay.wallets.manager import EphemeralWallet

from conftest import USDC_MINT, make_settings


@pytest.fixture
def executor(chain, aggregator, settings) -> SwapExecutor:
    return SwapExecutor(chain, aggregator, settings)


async def funded_wallet(wallet_manager, chain, lamports: int = 2_000_000):
    wallet = await wallet_manager.create_wallet()
    chain.airdrop(wallet.address, lamports)
    return wallet


class TestPriorityFeeEstimator:
    """Tests for fee estimation from recent network fees."""

    @pytest.mark.asyncio
    async def test_percentile_with_multiplier(self, chain, settings):
        chain.prioritization_fees = [3_000_000, 1_000_000, 4_000_000, 2_000_000]

        fee = await PriorityFeeEstimator(chain, settings).estimate()

        assert fee == 6_000_000

    @pytest.mark.asyncio
    async def test_floor_applied(self, chain, settings):
        chain.prioritization_fees = [10, 20, 30]

        assert await PriorityFeeEstimator(chain, settings).estimate() == 1_000_000

    @pytest.mark.asyncio
    async def test_cap_applied(self, chain, settings):
        chain.prioritization_fees = [50_000_000] * 10

        assert await PriorityFeeEstimator(chain, settings).estimate() == 10_000_000

    @pytest.mark.asyncio
    async def test_default_when_no_data(self, chain, settings):
        assert await PriorityFeeEstimator(chain, settings).estimate() == 2_000_000

    @pytest.mark.asyncio
    async def test_default_on_rpc_error(self, settings):
        chain = AsyncMock()
        chain.get_recent_prioritization_fees.side_effect = ChainError("rpc down")

        assert await PriorityFeeEstimator(chain, settings).estimate() == 2_000_000

    def test_compute_unit_price(self):
        assert PriorityFeeEstimator.compute_unit_price(2_000_000, 200_000) == 10
        assert PriorityFeeEstimator.compute_unit_price(100, 300_000) == 0


class TestSwapExecutor:
    """Tests for build, submit and confirm."""

    @pytest.mark.asyncio
    async def test_successful_swap(self, executor, aggregator, chain, wallet_manager):
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)

        result = await executor.execute_swap(wallet, quote, ProtectionOptions(enable=False))

        assert result.attempts == 1
        assert result.signature in chain.landed
        assert chain.token_balance_of(wallet.address, USDC_MINT) == 137_850
        assert chain.lamports[wallet.address] == 2_000_000 - 1_000_000 - 5000

    @pytest.mark.asyncio
    async def test_retries_resubmit_same_transaction(self, executor, aggregator, chain, wallet_manager):
        """Transient submission failures are retried with the same signature."""
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.fail_next_submissions = 2

        result = await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=3))

        assert result.attempts == 3
        assert chain.submitted == [result.signature] * 3
        assert len(aggregator.swap_requests) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, executor, aggregator, chain, wallet_manager):
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.fail_next_submissions = 5

        with pytest.raises(SwapFailed) as exc_info:
            await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=2))

        assert exc_info.value.attempts == 2
        assert exc_info.value.chain_error == "Blockhash not found"
        assert len(chain.submitted) == 2

    @pytest.mark.asyncio
    async def test_retry_count_is_clamped(self, executor, aggregator, chain, wallet_manager):
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.fail_next_submissions = 50

        with pytest.raises(SwapFailed):
            await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=25))
        assert len(chain.submitted) == 10

        chain.submitted.clear()
        with pytest.raises(SwapFailed):
            await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=0))
        assert len(chain.submitted) == 1

    @pytest.mark.asyncio
    async def test_on_chain_error_carried_verbatim(self, executor, aggregator, chain, wallet_manager):
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.confirm_error = {"InstructionError": [2, {"Custom": 6001}]}

        with pytest.raises(SwapFailed) as exc_info:
            await executor.execute_swap(wallet, quote)

        assert exc_info.value.chain_error == {"InstructionError": [2, {"Custom": 6001}]}
        assert exc_info.value.signature is not None

    @pytest.mark.asyncio
    async def test_insufficient_balance_fails(self, executor, aggregator, chain, wallet_manager):
        wallet = await funded_wallet(wallet_manager, chain, lamports=1_000_000)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)

        with pytest.raises(SwapFailed) as exc_info:
            await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=1))

        assert "InsufficientFundsForRent" in exc_info.value.chain_error

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, chain, aggregator, wallet_manager):
        executor = SwapExecutor(chain, aggregator, make_settings(confirm_timeout_seconds=0.05))
        wallet = await funded_wallet(wallet_manager, chain)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.confirm_hang = True

        with pytest.raises(SwapFailed) as exc_info:
            await executor.execute_swap(wallet, quote)

        assert exc_info.value.chain_error == "confirmation timeout"

    @pytest.mark.asyncio
    async def test_aggregator_refusal(self, chain, settings, wallet_manager):
        aggregator = AsyncMock()
        aggregator.get_swap_transaction.side_effect = AggregatorError(
            "Jupiter swap error: 400", status_code=400, body='{"error":"stale quote"}'
        )
        executor = SwapExecutor(chain, aggregator, settings)
        wallet = await funded_wallet(wallet_manager, chain)
        quote = AsyncMock()

        with pytest.raises(SwapFailed) as exc_info:
            await executor.execute_swap(wallet, quote)

        assert exc_info.value.chain_error == '{"error":"stale quote"}'
        assert chain.submitted == []

    @pytest.mark.asyncio
    async def test_priority_fee_only_with_protection(self, executor, aggregator, chain, wallet_manager):
        chain.prioritization_fees = [2_000_000]
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 100_000)

        protected = await funded_wallet(wallet_manager, chain)
        result = await executor.execute_swap(protected, quote, ProtectionOptions(enable=True))
        assert result.priority_fee_lamports == 3_000_000

        plain = await funded_wallet(wallet_manager, chain)
        result = await executor.execute_swap(plain, quote, ProtectionOptions(enable=False))
        assert result.priority_fee_lamports is None

        assert [r["priority_fee_lamports"] for r in aggregator.swap_requests] == [3_000_000, None]

    def test_backoff_doubles(self, chain, aggregator):
        executor = SwapExecutor(chain, aggregator, make_settings(backoff_base_seconds=1.0))

        assert executor.backoff_delay(1) == 2.0
        assert executor.backoff_delay(2) == 4.0
        assert executor.backoff_delay(3) == 8.0

    @pytest.mark.asyncio
    async def test_resubmissions_wait_with_growing_delays(self, chain, aggregator, monkeypatch):
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        keypair = Keypair()
        wallet = EphemeralWallet(
            address=str(keypair.pubkey()),
            secret_key=bytearray(bytes(keypair)),
            created_at=0.0,
            expires_at=0.0,
        )
        chain.airdrop(wallet.address, 2_000_000)
        executor = SwapExecutor(chain, aggregator, make_settings(backoff_base_seconds=1.0))
        monkeypatch.setattr("solrelay.services.swap_executor.asyncio.sleep", record_sleep)
        quote = await aggregator.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        chain.fail_next_submissions = 5

        with pytest.raises(SwapFailed):
            await executor.execute_swap(wallet, quote, ProtectionOptions(max_retries=4))

        assert len(chain.submitted) == 4
        assert delays == [2.0, 4.0, 8.0]
        assert delays == sorted(delays)
