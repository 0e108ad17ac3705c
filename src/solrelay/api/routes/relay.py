"""Swap relay endpoints: quote and confirm."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from solrelay.config import get_settings
from solrelay.services.relay import ConfirmResult, QuoteResult, RelayOrchestrator, RelayState
from solrelay.services.validation import ConfirmRequest, SwapRequest
from solrelay.web.contracts import (
    ConfirmSwapRequest,
    ConfirmSwapResponse,
    ErrorResponse,
    ExplorerLinks,
    ProtectionReport,
    QuoteDetails,
    SwapDetails,
    SwapQuoteRequest,
    SwapQuoteResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    408: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def get_relay(request: Request) -> RelayOrchestrator:
    """Relay orchestrator attached to the application."""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay is not initialized")
    return relay


def _quote_response(result: QuoteResult) -> SwapQuoteResponse:
    return SwapQuoteResponse(
        temp_wallet_address=result.wallet_address,
        resumption_token=result.resumption_token,
        expires_at=result.expires_at,
        destination_address=result.destination_address,
        mev_protection_enabled=result.enable_mev_protection,
        quote=QuoteDetails(**result.quote.to_dict()),
        quote_response=result.quote.raw,
        warnings=result.warnings,
        instructions=result.instructions,
    )


def _confirm_response(result: ConfirmResult) -> ConfirmSwapResponse:
    if result.status == RelayState.CANCELLED:
        return ConfirmSwapResponse(
            success=False,
            status=result.status.value,
            message="Swap was cancelled by user",
            wallet_address=result.wallet_address,
            history=result.run.history,
        )

    settings = get_settings()
    quote = result.quote
    swap = result.swap
    return ConfirmSwapResponse(
        success=True,
        status=result.status.value,
        message="Swap and transfer completed successfully",
        wallet_address=result.wallet_address,
        destination_address=result.destination_address,
        swap_transaction=result.swap_signature,
        transfer_transaction=result.forward_signature,
        swap_details=SwapDetails(
            input_mint=quote.input_asset,
            output_mint=quote.output_asset,
            input_amount=str(quote.in_amount),
            output_amount=str(quote.out_amount),
        ),
        explorer_links=ExplorerLinks(
            swap=settings.explorer_link(result.swap_signature),
            transfer=settings.explorer_link(result.forward_signature),
        ),
        mev_protection=ProtectionReport(
            enabled=swap.protection.enable,
            bundling_requested=swap.protection.use_bundling,
            attempts=swap.attempts,
            priority_fee_lamports=swap.priority_fee_lamports,
        ),
        history=result.run.history,
    )


@router.post("/swap", response_model=SwapQuoteResponse, responses=ERROR_RESPONSES)
async def create_swap_quote(
    body: SwapQuoteRequest,
    relay: RelayOrchestrator = Depends(get_relay),
) -> SwapQuoteResponse:
    """Create an ephemeral wallet and quote a SOL -> token swap.

    Send the quoted amount of SOL to ``temp_wallet_address``, then call
    ``/api/confirm`` with the resumption token to execute the swap.
    """
    logger.info(f"Swap quote request: {body.amount} -> {body.output_asset}")
    result = await relay.quote(
        SwapRequest(
            input_asset=body.input_asset,
            output_asset=body.output_asset,
            amount=body.amount,
            destination_address=body.destination_address,
            slippage_bps=body.slippage_bps,
            enable_mev_protection=body.enable_mev_protection,
        )
    )
    return _quote_response(result)


@router.post("/confirm", response_model=ConfirmSwapResponse, responses=ERROR_RESPONSES)
async def confirm_swap(
    body: ConfirmSwapRequest,
    relay: RelayOrchestrator = Depends(get_relay),
) -> ConfirmSwapResponse:
    """Wait for the deposit, execute the swap and forward the proceeds.

    Pass ``confirmed: false`` to cancel without touching the chain.
    """
    logger.info(f"Confirm request for wallet {body.wallet_address} (confirmed={body.confirmed})")
    result = await relay.confirm(
        ConfirmRequest(
            wallet_address=body.wallet_address,
            resumption_token=body.resumption_token,
            destination_address=body.destination_address,
            quote=body.quote,
            confirmed=body.confirmed,
            protection=body.protection_options.to_options() if body.protection_options else None,
        )
    )
    return _confirm_response(result)
