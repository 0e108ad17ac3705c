"""Request and response contracts for the relay endpoints.

Field types are deliberately loose where the relay's own validation
collects errors, so a caller gets every problem in one response.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from solrelay.config import SOL_MINT
from solrelay.routing.base import ProtectionOptions


class SwapQuoteRequest(BaseModel):
    """Quote request: SOL in, any token out."""

    input_asset: str = Field(default=SOL_MINT, description="Input mint, must be SOL")
    output_asset: str = Field(..., description="Output token mint")
    amount: Union[int, str] = Field(..., description="Input amount in lamports")
    destination_address: str = Field(..., description="Wallet receiving the swapped tokens")
    slippage_bps: Union[int, str] = Field(default=50, description="Slippage tolerance in bps")
    enable_mev_protection: bool = Field(default=False, description="Restricted routing and priority fee")


class QuoteDetails(BaseModel):
    """Summary of the aggregator quote."""

    provider: str
    input_asset: str
    output_asset: str
    in_amount: str
    out_amount: str
    minimum_out_amount: str
    price_impact_percent: str
    slippage_bps: int
    route: list[str] = Field(default_factory=list)
    expires_at: Optional[float] = None
    is_simulated: bool = False


class SwapQuoteResponse(BaseModel):
    """Quote phase result."""

    success: bool = True
    temp_wallet_address: str = Field(..., description="Ephemeral wallet to fund")
    resumption_token: str = Field(..., description="Opaque token required by /api/confirm")
    expires_at: float = Field(..., description="Unix time after which the token is rejected")
    destination_address: str
    mev_protection_enabled: bool = False
    quote: QuoteDetails
    quote_response: dict = Field(..., description="Raw aggregator quote, echo it back on confirm")
    warnings: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)


class ProtectionOptionsModel(BaseModel):
    """MEV protection options for confirm."""

    enable: bool = True
    use_bundling: bool = False
    max_retries: int = 3

    def to_options(self) -> ProtectionOptions:
        return ProtectionOptions(
            enable=self.enable,
            use_bundling=self.use_bundling,
            max_retries=self.max_retries,
        )


class ConfirmSwapRequest(BaseModel):
    """Confirm (or cancel) a quoted swap."""

    wallet_address: str = Field(..., description="Ephemeral wallet from the quote")
    resumption_token: str = Field(..., description="Token from the quote")
    destination_address: str
    quote: Any = Field(..., description="quote_response from the quote call")
    confirmed: Optional[bool] = Field(default=True, description="False cancels the swap")
    protection_options: Optional[ProtectionOptionsModel] = None


class SwapDetails(BaseModel):
    input_mint: str
    output_mint: str
    input_amount: str
    output_amount: str


class ExplorerLinks(BaseModel):
    swap: Optional[str] = None
    transfer: Optional[str] = None


class ProtectionReport(BaseModel):
    enabled: bool
    bundling_requested: bool
    attempts: int
    priority_fee_lamports: Optional[int] = None


class ConfirmSwapResponse(BaseModel):
    """Confirm phase result, completed or cancelled."""

    success: bool
    status: str
    message: str
    wallet_address: str
    destination_address: Optional[str] = None
    swap_transaction: Optional[str] = None
    transfer_transaction: Optional[str] = None
    swap_details: Optional[SwapDetails] = None
    explorer_links: Optional[ExplorerLinks] = None
    mev_protection: Optional[ProtectionReport] = None
    history: list[dict] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body of every failed request."""

    success: bool = False
    error: str
    message: str
    details: Optional[Any] = None
    status: Optional[str] = None
