"""Request validation and user-facing warnings.

Errors are collected and raised together as one ``ValidationError`` so a
caller sees every problem with a request at once. Warnings never reject.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from solders.pubkey import Pubkey

from solrelay.config import SOL_MINT, Settings, get_settings
from solrelay.errors import ValidationError
from solrelay.routing.base import ProtectionOptions, Quote

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
MAX_SLIPPAGE_BPS = 10_000
MIN_RETRIES = 1
MAX_RETRIES = 10

REQUIRED_QUOTE_FIELDS = ("inputMint", "outputMint", "inAmount", "outAmount")


@dataclass
class SwapRequest:
    """Quote-phase input."""

    input_asset: str
    output_asset: str
    amount: Any
    destination_address: str
    slippage_bps: Any = 50
    enable_mev_protection: Any = False


@dataclass
class ConfirmRequest:
    """Confirm-phase input."""

    wallet_address: str
    resumption_token: str
    destination_address: str
    quote: Any
    confirmed: Any = True
    protection: Optional[ProtectionOptions] = None


def is_valid_pubkey(value: Any) -> bool:
    """Check ``value`` is a base58 encoded 32-byte public key."""
    if not isinstance(value, str) or not value:
        return False
    try:
        Pubkey.from_string(value)
    except ValueError:
        return False
    return True


def _as_int(value: Any) -> Optional[int]:
    """Integer value of an int or a digit string, None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if digits.isascii() and digits.isdigit():
            return int(text)
    return None


def format_sol(lamports: int, places: int = 9) -> str:
    return f"{Decimal(lamports) / LAMPORTS_PER_SOL:.{places}f} SOL"


def validate_swap_request(request: SwapRequest, settings: Optional[Settings] = None) -> list[str]:
    """Validate a quote request.

    Returns:
        Warnings for amounts below the recommended size

    Raises:
        ValidationError: With every violated rule
    """
    settings = settings or get_settings()
    errors: list[str] = []
    warnings: list[str] = []

    if request.input_asset != SOL_MINT:
        errors.append(
            f"Input asset must be SOL ({SOL_MINT}). This relay only accepts SOL as input."
        )

    if not isinstance(request.output_asset, str) or not request.output_asset:
        errors.append("Output asset is required and must be a string")
    elif request.output_asset == request.input_asset:
        errors.append("Input and output assets must be different. Cannot swap SOL to SOL.")
    elif not is_valid_pubkey(request.output_asset):
        errors.append(f"Output asset is not a valid mint address: {request.output_asset}")

    amount = _as_int(request.amount)
    if amount is None or amount <= 0:
        errors.append("Amount is required and must be a positive integer (in lamports)")
    elif amount < settings.warn_amount_lamports:
        warnings.append(
            f"Very small amount detected! For better rates consider using "
            f"{format_sol(settings.warn_amount_lamports, 4)} or more. "
            f"Current amount: {format_sol(amount)}"
        )
    elif amount < settings.recommended_amount_lamports:
        warnings.append(
            f"Small amount. For optimal rates and reliability consider using "
            f"{format_sol(settings.recommended_amount_lamports, 3)} or more."
        )

    if not is_valid_pubkey(request.destination_address):
        errors.append("Destination address is required and must be a valid Solana address")

    slippage = _as_int(request.slippage_bps)
    if slippage is None or not 0 <= slippage <= MAX_SLIPPAGE_BPS:
        errors.append(f"Slippage must be an integer between 0 and {MAX_SLIPPAGE_BPS} bps")

    if not isinstance(request.enable_mev_protection, bool):
        errors.append("MEV protection flag must be a boolean when provided")

    if errors:
        logger.info(f"Rejected swap request: {errors}")
        raise ValidationError(errors)

    return warnings


def validate_protection_options(options: ProtectionOptions) -> list[str]:
    errors = []
    if not isinstance(options.enable, bool):
        errors.append("Protection option 'enable' must be a boolean")
    if not isinstance(options.use_bundling, bool):
        errors.append("Protection option 'use_bundling' must be a boolean")
    if (
        isinstance(options.max_retries, bool)
        or not isinstance(options.max_retries, int)
        or not MIN_RETRIES <= options.max_retries <= MAX_RETRIES
    ):
        errors.append(
            f"Protection option 'max_retries' must be an integer between "
            f"{MIN_RETRIES} and {MAX_RETRIES}"
        )
    return errors


def validate_confirm_request(request: ConfirmRequest) -> None:
    """Structural checks of a confirm payload. Quote numbers are trusted.

    Raises:
        ValidationError: With every violated rule
    """
    errors: list[str] = []

    if not is_valid_pubkey(request.wallet_address):
        errors.append("Wallet address is required and must be a valid Solana address")

    if not isinstance(request.resumption_token, str) or not request.resumption_token:
        errors.append("Resumption token is required")

    if not is_valid_pubkey(request.destination_address):
        errors.append("Destination address is required and must be a valid Solana address")

    if not isinstance(request.quote, dict):
        errors.append("Quote is required and must be an object")
    else:
        missing = [name for name in REQUIRED_QUOTE_FIELDS if name not in request.quote]
        if missing:
            errors.append(f"Quote is missing fields: {', '.join(missing)}")

    if request.confirmed is not None and not isinstance(request.confirmed, bool):
        errors.append("Confirmed must be a boolean when provided")

    if request.protection is not None:
        errors.extend(validate_protection_options(request.protection))

    if errors:
        logger.info(f"Rejected confirm request: {errors}")
        raise ValidationError(errors)


def quote_warnings(quote: Quote, settings: Optional[Settings] = None) -> list[str]:
    """Price impact warnings for a validated quote."""
    settings = settings or get_settings()
    impact = quote.price_impact_percent
    if impact > Decimal(str(settings.high_price_impact_percent)):
        return [f"High price impact: {impact:.2f}%. Consider using a smaller amount."]
    if impact > Decimal(str(settings.moderate_price_impact_percent)):
        return [f"Moderate price impact: {impact:.2f}%. Larger amounts may get better rates."]
    return []


def build_instructions(
    request: SwapRequest,
    quote: Quote,
    wallet_address: str,
) -> list[str]:
    """Step-by-step guidance returned with a quote."""
    amount = int(request.amount)
    protection = (
        "MEV protection: ENABLED - the swap uses restricted routing and an elevated priority fee"
        if request.enable_mev_protection
        else "MEV protection: DISABLED - consider enabling it for large swaps"
    )
    return [
        f"STEP 1: Send exactly {amount} lamports ({format_sol(amount)}) to the temporary wallet: "
        f"{wallet_address}",
        f"STEP 2: Expected swap output: {quote.out_amount} units of {quote.output_asset}",
        f"Price impact: {quote.price_impact_percent:.2f}%",
        f"Final destination: {request.destination_address}",
        protection,
        "STEP 3: Call /api/confirm with the resumption token to execute the swap",
        "The relay waits for the SOL deposit before executing the swap",
    ]
