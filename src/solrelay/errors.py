"""Error taxonomy of the relay.

Every failure a caller can observe maps to exactly one ``RelayError``
subclass. The ``code`` travels to API clients verbatim, ``details`` carries
the diagnostic payload (expected vs. observed amounts, provider error text).
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for all relay failures."""

    code = "RELAY_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        # Relay state the failure ended in, set by the orchestrator
        self.state: Optional[str] = None
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        data = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.state is not None:
            data["status"] = self.state
        return data


class ValidationError(RelayError):
    """Malformed request. Never retried."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Validation failed", details=self.errors)


class TokenInvalid(RelayError):
    """Resumption token is malformed, forged or tampered with."""

    code = "TOKEN_INVALID"
    http_status = 400


class TokenExpired(RelayError):
    """Resumption token is past its embedded deadline."""

    code = "TOKEN_EXPIRED"
    http_status = 410


class WalletNotFound(RelayError):
    """Ephemeral wallet is neither in memory nor in durable storage."""

    code = "WALLET_NOT_FOUND"
    http_status = 404

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Wallet not found: {address}", details={"address": address})


class WalletAlreadyUsed(RelayError):
    """Ephemeral wallet was already resolved for signing once."""

    code = "WALLET_ALREADY_USED"
    http_status = 409

    def __init__(self, address: str):
        self.address = address
        super().__init__(
            f"Wallet {address} was already used to sign a swap", details={"address": address}
        )


class RelayInProgress(RelayError):
    """Another confirm call holds the wallet."""

    code = "RELAY_IN_PROGRESS"
    http_status = 409


class DepositTimeout(RelayError):
    """Expected deposit was not observed before the deadline."""

    code = "DEPOSIT_TIMEOUT"
    http_status = 408

    def __init__(
        self,
        address: str,
        asset: str,
        expected_amount: int,
        last_balance: int,
        timeout_seconds: float,
    ):
        self.address = address
        self.asset = asset
        self.expected_amount = expected_amount
        self.last_balance = last_balance
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Deposit not received within {timeout_seconds:.0f}s: "
            f"expected {expected_amount}, last observed {last_balance}",
            details={
                "address": address,
                "asset": asset,
                "expected_amount": str(expected_amount),
                "last_balance": str(last_balance),
                "timeout_seconds": timeout_seconds,
            },
        )


class QuoteInvalid(RelayError):
    """Aggregator returned a non-positive or malformed quote, or no quote."""

    code = "QUOTE_INVALID"
    http_status = 502


class SwapFailed(RelayError):
    """Submission or confirmation failed after exhausting retries."""

    code = "SWAP_FAILED"
    http_status = 502

    def __init__(
        self,
        message: str,
        chain_error: Optional[Any] = None,
        signature: Optional[str] = None,
        attempts: int = 0,
    ):
        self.chain_error = chain_error
        self.signature = signature
        self.attempts = attempts
        super().__init__(
            message,
            details={
                "chain_error": chain_error,
                "signature": signature,
                "attempts": attempts,
            },
        )


class ForwardFailed(RelayError):
    """Post-swap transfer failed. Funds remain in the ephemeral wallet."""

    code = "FORWARD_FAILED"
    http_status = 502

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, details=details)


class InsufficientReserve(ForwardFailed):
    """Native balance does not exceed the fee reserve."""

    code = "INSUFFICIENT_RESERVE"


class NoTokensToTransfer(ForwardFailed):
    """Token balance of the ephemeral wallet is zero."""

    code = "NO_TOKENS_TO_TRANSFER"


class RelayTimeout(RelayError):
    """The caller's end-to-end deadline elapsed mid-relay."""

    code = "RELAY_TIMEOUT"
    http_status = 408


class ChainError(Exception):
    """Transport or RPC failure raised by a chain client.

    Not part of the caller-facing taxonomy: components translate it into
    ``SwapFailed`` / ``ForwardFailed`` or absorb it while polling.
    """

    def __init__(self, message: str, payload: Optional[Any] = None):
        self.payload = payload if payload is not None else message
        super().__init__(message)


class AggregatorError(Exception):
    """Transport or API failure raised by an aggregator client."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[Any] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)
