"""Two-phase swap relay: quote, then confirm.

Quote creates an ephemeral wallet and hands the caller a resumption token.
Confirm decodes the token and runs deposit detection, the swap and the
forward in strict sequence under a per-wallet lock and one deadline.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from solrelay.chain.base import ChainClient
from solrelay.config import Settings, get_settings
from solrelay.errors import (
    AggregatorError,
    DepositTimeout,
    ForwardFailed,
    QuoteInvalid,
    RelayError,
    RelayInProgress,
    RelayTimeout,
    SwapFailed,
    TokenInvalid,
    WalletAlreadyUsed,
)
from solrelay.routing.base import AggregatorClient, ProtectionOptions, Quote
from solrelay.services.asset_forwarder import AssetForwarder
from solrelay.services.deposit_watcher import DepositWatcher
from solrelay.services.fees import PriorityFeeEstimator
from solrelay.services.swap_executor import SwapExecutor, SwapResult
from solrelay.services.validation import (
    ConfirmRequest,
    SwapRequest,
    build_instructions,
    quote_warnings,
    validate_confirm_request,
    validate_swap_request,
)
from solrelay.utils.locks import LockTimeoutError, wallet_lock
from solrelay.wallets.manager import EphemeralWallet, WalletManager

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    """Where one quote+confirm pair stands."""

    QUOTED = "quoted"
    AWAITING_DEPOSIT = "awaiting_deposit"
    DEPOSIT_CONFIRMED = "deposit_confirmed"
    SWAP_SUBMITTED = "swap_submitted"
    SWAP_CONFIRMED = "swap_confirmed"
    FORWARDING = "forwarding"
    COMPLETED = "completed"
    # Terminal failures
    CANCELLED = "cancelled"
    DEPOSIT_TIMEOUT = "deposit_timeout"
    SWAP_FAILED = "swap_failed"
    FORWARD_FAILED = "forward_failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        RelayState.COMPLETED,
        RelayState.CANCELLED,
        RelayState.DEPOSIT_TIMEOUT,
        RelayState.SWAP_FAILED,
        RelayState.FORWARD_FAILED,
        RelayState.TIMED_OUT,
    }
)

FAILURE_STATES = TERMINAL_STATES - {RelayState.COMPLETED}

# Allowed forward moves; any state may also fail into a terminal alternate
TRANSITIONS = {
    RelayState.QUOTED: {RelayState.AWAITING_DEPOSIT, RelayState.CANCELLED},
    RelayState.AWAITING_DEPOSIT: {RelayState.DEPOSIT_CONFIRMED, RelayState.DEPOSIT_TIMEOUT},
    RelayState.DEPOSIT_CONFIRMED: {RelayState.SWAP_SUBMITTED, RelayState.SWAP_FAILED},
    RelayState.SWAP_SUBMITTED: {RelayState.SWAP_CONFIRMED, RelayState.SWAP_FAILED},
    RelayState.SWAP_CONFIRMED: {RelayState.FORWARDING},
    RelayState.FORWARDING: {RelayState.COMPLETED, RelayState.FORWARD_FAILED},
}

# States after which output tokens may sit in the wallet
FUNDS_AT_RISK_STATES = frozenset(
    {RelayState.SWAP_SUBMITTED, RelayState.SWAP_CONFIRMED, RelayState.FORWARDING}
)


@dataclass
class RelayRun:
    """In-memory record of one relay's progress. Not persisted."""

    wallet_address: str
    state: RelayState = RelayState.QUOTED
    history: list[dict] = field(default_factory=list)
    error: Optional[RelayError] = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append({"state": self.state.value, "at": time.time()})

    def transition(self, state: RelayState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Relay for {self.wallet_address} already ended in {self.state.value}")
        if state not in FAILURE_STATES and state not in TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal relay transition {self.state.value} -> {state.value}")
        logger.info(f"Relay {self.wallet_address}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append({"state": state.value, "at": time.time()})

    def fail(self, state: RelayState, error: RelayError) -> RelayError:
        """Move to a terminal failure state and tag ``error`` with it."""
        self.transition(state)
        self.error = error
        error.state = state.value
        return error


@dataclass
class QuoteResult:
    wallet_address: str
    resumption_token: str
    quote: Quote
    warnings: list[str]
    instructions: list[str]
    expires_at: float
    destination_address: str
    enable_mev_protection: bool
    run: RelayRun


@dataclass
class ConfirmResult:
    status: RelayState
    run: RelayRun
    wallet_address: str
    destination_address: Optional[str] = None
    swap: Optional[SwapResult] = None
    forward_signature: Optional[str] = None
    quote: Optional[Quote] = None
    protection: Optional[ProtectionOptions] = None

    @property
    def swap_signature(self) -> Optional[str]:
        return self.swap.signature if self.swap else None


class RelayOrchestrator:
    """Composes the wallet manager, watcher, executor and forwarder."""

    def __init__(
        self,
        chain: ChainClient,
        aggregator: AggregatorClient,
        wallets: WalletManager,
        settings: Optional[Settings] = None,
        watcher: Optional[DepositWatcher] = None,
        executor: Optional[SwapExecutor] = None,
        forwarder: Optional[AssetForwarder] = None,
        lock_timeout: float = 5.0,
    ):
        self.settings = settings or get_settings()
        self.chain = chain
        self.aggregator = aggregator
        self.wallets = wallets
        fees = PriorityFeeEstimator(chain, self.settings)
        self.watcher = watcher or DepositWatcher(chain, self.settings)
        self.executor = executor or SwapExecutor(chain, aggregator, self.settings, fees)
        self.forwarder = forwarder or AssetForwarder(chain, self.settings, fees)
        self.lock_timeout = lock_timeout

    # ---- quote phase ----

    async def quote(self, request: SwapRequest) -> QuoteResult:
        """Validate, create a wallet, fetch a quote and mint the resumption token.

        Raises:
            ValidationError: Before any wallet is created
            QuoteInvalid: Aggregator failure or unusable quote (wallet destroyed)
        """
        warnings = validate_swap_request(request, self.settings)

        wallet = await self.wallets.create_wallet()
        try:
            quote = await self.aggregator.get_quote(
                request.input_asset,
                request.output_asset,
                int(request.amount),
                slippage_bps=int(request.slippage_bps),
                restrict_intermediate=request.enable_mev_protection,
            )
            quote.validate()
        except AggregatorError as e:
            await self.wallets.destroy_wallet(wallet.address, reason="quote failed")
            raise QuoteInvalid(
                f"Failed to get swap quote: {e}",
                details={"provider": self.aggregator.name, "status_code": e.status_code, "error": e.body},
            ) from e
        except QuoteInvalid:
            await self.wallets.destroy_wallet(wallet.address, reason="quote invalid")
            raise
        except Exception as e:
            logger.error(f"Unexpected quote failure for {wallet.address}: {e}", exc_info=True)
            await self.wallets.destroy_wallet(wallet.address, reason="quote failed")
            raise QuoteInvalid(
                f"Failed to get swap quote: {e}",
                details={"provider": self.aggregator.name, "error": type(e).__name__},
            ) from e

        expires_at = self.wallets.token_expires_at(wallet)
        quote.expires_at = expires_at
        token = self.wallets.mint_token(wallet)
        warnings.extend(quote_warnings(quote, self.settings))

        logger.info(
            f"Quote issued for {wallet.address}: {quote.in_amount} -> {quote.out_amount} "
            f"{quote.output_asset[:8]}..."
        )
        return QuoteResult(
            wallet_address=wallet.address,
            resumption_token=token,
            quote=quote,
            warnings=warnings,
            instructions=build_instructions(request, quote, wallet.address),
            expires_at=expires_at,
            destination_address=request.destination_address,
            enable_mev_protection=request.enable_mev_protection,
            run=RelayRun(wallet_address=wallet.address),
        )

    # ---- confirm phase ----

    async def confirm(self, request: ConfirmRequest, deadline: Optional[float] = None) -> ConfirmResult:
        """Run the relay for a previously quoted wallet.

        Args:
            request: Confirm payload
            deadline: End-to-end ceiling in seconds (defaults to settings)

        Raises:
            ValidationError, TokenInvalid, TokenExpired: Before touching the chain
            RelayInProgress: Another confirm or cancel holds this wallet
            DepositTimeout, SwapFailed, ForwardFailed, RelayTimeout: Tagged with the
                terminal state
        """
        validate_confirm_request(request)
        payload = self.wallets.decode_token(request.resumption_token)
        if payload.address != request.wallet_address:
            raise TokenInvalid(
                "Resumption token does not belong to this wallet",
                details={"wallet_address": request.wallet_address},
            )

        run = RelayRun(wallet_address=payload.address)
        cancel = request.confirmed is False

        if not cancel:
            quote = Quote.from_dict(request.quote, provider=self.aggregator.name)
            options = request.protection or ProtectionOptions(max_retries=self.settings.swap_max_retries)
            timeout = self.settings.confirm_deadline_seconds if deadline is None else deadline

        try:
            async with wallet_lock(
                payload.address,
                timeout=self.lock_timeout,
                operation="cancel" if cancel else "confirm",
            ):
                if cancel:
                    run.transition(RelayState.CANCELLED)
                    await self.wallets.destroy_wallet(payload.address, reason="cancelled")
                    return ConfirmResult(status=RelayState.CANCELLED, run=run, wallet_address=payload.address)

                wallet = await self.wallets.restore(payload)
                if wallet.used:
                    raise WalletAlreadyUsed(wallet.address)
                return await self._run_with_deadline(run, wallet, quote, request, options, timeout)
        except LockTimeoutError as e:
            raise RelayInProgress(
                f"Another confirmation is already running for {payload.address}",
                details={"wallet_address": payload.address},
            ) from e

    async def _run_with_deadline(
        self,
        run: RelayRun,
        wallet: EphemeralWallet,
        quote: Quote,
        request: ConfirmRequest,
        options: ProtectionOptions,
        timeout: float,
    ) -> ConfirmResult:
        try:
            result = await asyncio.wait_for(
                self._run(run, wallet, quote, request, options), timeout=timeout
            )
        except asyncio.TimeoutError:
            reached = run.state
            error = run.fail(
                RelayState.TIMED_OUT,
                RelayTimeout(
                    f"Relay did not finish within {timeout:.0f}s",
                    details={"wallet_address": wallet.address, "reached_state": reached.value},
                ),
            )
            if reached in FUNDS_AT_RISK_STATES:
                logger.error(
                    f"Relay for {wallet.address} timed out in {reached.value}; "
                    "funds may remain, recover them with the resumption token"
                )
            await self.wallets.destroy_wallet(wallet.address, reason="timed out")
            raise error
        except ForwardFailed:
            logger.error(
                f"Forward failed for {wallet.address}; funds remain in the wallet for manual recovery"
            )
            raise
        except RelayError:
            await self.wallets.destroy_wallet(wallet.address, reason=run.state.value)
            raise
        except Exception as e:
            reached = run.state
            logger.error(f"Unexpected relay failure for {wallet.address} in {reached.value}: {e}", exc_info=True)
            if reached in (RelayState.SWAP_CONFIRMED, RelayState.FORWARDING):
                # Output tokens are in the wallet; keep it for the sweep script
                raise run.fail(
                    RelayState.FORWARD_FAILED,
                    ForwardFailed(
                        f"Forward failed: {e}",
                        details={"wallet_address": wallet.address, "reached_state": reached.value},
                    ),
                ) from e
            error = run.fail(
                RelayState.SWAP_FAILED,
                SwapFailed(f"Relay failed in {reached.value}: {e}", chain_error=type(e).__name__),
            )
            await self.wallets.destroy_wallet(wallet.address, reason=RelayState.SWAP_FAILED.value)
            raise error from e

        await self.wallets.destroy_wallet(wallet.address, reason="completed")
        return result

    async def _run(
        self,
        run: RelayRun,
        wallet: EphemeralWallet,
        quote: Quote,
        request: ConfirmRequest,
        options: ProtectionOptions,
    ) -> ConfirmResult:
        run.transition(RelayState.AWAITING_DEPOSIT)
        try:
            await self.watcher.wait_for_deposit(
                wallet.address,
                quote.input_asset,
                quote.in_amount,
                timeout=self.settings.deposit_timeout_seconds,
            )
        except DepositTimeout as e:
            raise run.fail(RelayState.DEPOSIT_TIMEOUT, e)
        run.transition(RelayState.DEPOSIT_CONFIRMED)

        signer = await self.wallets.resolve_wallet(wallet.address, for_signing=True)
        run.transition(RelayState.SWAP_SUBMITTED)
        try:
            swap = await self.executor.execute_swap(signer, quote, options)
        except SwapFailed as e:
            raise run.fail(RelayState.SWAP_FAILED, e)
        run.transition(RelayState.SWAP_CONFIRMED)

        run.transition(RelayState.FORWARDING)
        try:
            forward_signature = await self.forwarder.forward_assets(
                signer,
                request.destination_address,
                quote.output_asset,
                protection=options.enable,
            )
        except ForwardFailed as e:
            raise run.fail(RelayState.FORWARD_FAILED, e)
        run.transition(RelayState.COMPLETED)

        logger.info(f"Relay completed for {wallet.address}: swap {swap.signature}, forward {forward_signature}")
        return ConfirmResult(
            status=RelayState.COMPLETED,
            run=run,
            wallet_address=wallet.address,
            destination_address=request.destination_address,
            swap=swap,
            forward_signature=forward_signature,
            quote=quote,
            protection=options,
        )
