"""Request and response contracts for the HTTP layer."""

from solrelay.web.contracts.relay import (
    ConfirmSwapRequest,
    ConfirmSwapResponse,
    ErrorResponse,
    ExplorerLinks,
    ProtectionOptionsModel,
    ProtectionReport,
    QuoteDetails,
    SwapDetails,
    SwapQuoteRequest,
    SwapQuoteResponse,
)

__all__ = [
    # Quote contracts
    "SwapQuoteRequest",
    "SwapQuoteResponse",
    "QuoteDetails",
    # Confirm contracts
    "ConfirmSwapRequest",
    "ConfirmSwapResponse",
    "ProtectionOptionsModel",
    "SwapDetails",
    "ExplorerLinks",
    "ProtectionReport",
    # Errors
    "ErrorResponse",
]
