"""Abstract aggregator interface and the quote model."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from solrelay.errors import QuoteInvalid

logger = logging.getLogger(__name__)


@dataclass
class ProtectionOptions:
    """MEV-resistance options for swap execution.

    ``use_bundling`` is recorded and reported but transactions are always
    submitted through the configured RPC endpoint.
    """

    enable: bool = True
    use_bundling: bool = False
    max_retries: int = 3


@dataclass
class Quote:
    """A swap quote from the aggregator.

    ``raw`` is the verbatim aggregator response; it is required again when
    asking for the swap transaction, so it round-trips through the client.
    """

    input_asset: str
    output_asset: str
    in_amount: int
    out_amount: int
    price_impact_percent: Decimal
    slippage_bps: int
    route: list[dict] = field(default_factory=list)
    raw: dict = field(default_factory=dict)
    provider: str = "Jupiter"
    is_simulated: bool = False
    timestamp: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    @property
    def route_labels(self) -> list[str]:
        """DEX labels along the route."""
        return [step.get("swapInfo", {}).get("label", "Unknown") for step in self.route]

    @property
    def minimum_out_amount(self) -> int:
        """Output amount after the full slippage tolerance."""
        threshold = self.raw.get("otherAmountThreshold")
        if threshold is not None:
            return int(threshold)
        return self.out_amount * (10_000 - self.slippage_bps) // 10_000

    def validate(self) -> None:
        """Check the quote is usable.

        Raises:
            QuoteInvalid: If amounts are missing or non-positive
        """
        if self.out_amount <= 0:
            raise QuoteInvalid(
                "Invalid output amount in quote",
                details={"out_amount": str(self.out_amount)},
            )
        if self.in_amount <= 0:
            raise QuoteInvalid(
                "Invalid input amount in quote",
                details={"in_amount": str(self.in_amount)},
            )

    @classmethod
    def from_response(cls, data: Any, provider: str = "Jupiter", is_simulated: bool = False) -> "Quote":
        """Build a quote from an aggregator quote response.

        Raises:
            QuoteInvalid: If the payload is not a well-formed quote
        """
        if not isinstance(data, dict):
            raise QuoteInvalid("Quote response must be an object")

        try:
            quote = cls(
                input_asset=str(data["inputMint"]),
                output_asset=str(data["outputMint"]),
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                price_impact_percent=Decimal(str(data.get("priceImpactPct") or "0")),
                slippage_bps=int(data.get("slippageBps", 50)),
                route=list(data.get("routePlan") or []),
                raw=data,
                provider=provider,
                is_simulated=is_simulated,
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise QuoteInvalid(
                f"Malformed quote response: {type(e).__name__}: {e}",
                details={"response": data},
            ) from e

        return quote

    @classmethod
    def from_dict(cls, data: Any, provider: str = "Jupiter") -> "Quote":
        """Rebuild a quote a caller echoed back at confirm time.

        Only structure is checked here, the numbers were validated when the
        quote was issued.
        """
        quote = cls.from_response(data, provider=provider)
        expires_at = data.get("expiresAt") if isinstance(data, dict) else None
        if expires_at is not None:
            try:
                quote.expires_at = float(expires_at)
            except (TypeError, ValueError):
                pass
        return quote

    def to_dict(self) -> dict:
        """Summary for API responses."""
        return {
            "provider": self.provider,
            "input_asset": self.input_asset,
            "output_asset": self.output_asset,
            "in_amount": str(self.in_amount),
            "out_amount": str(self.out_amount),
            "minimum_out_amount": str(self.minimum_out_amount),
            "price_impact_percent": str(self.price_impact_percent),
            "slippage_bps": self.slippage_bps,
            "route": self.route_labels,
            "expires_at": self.expires_at,
            "is_simulated": self.is_simulated,
        }


class AggregatorClient(ABC):
    """Abstract base class for liquidity aggregators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @abstractmethod
    async def get_quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        slippage_bps: int = 50,
        restrict_intermediate: bool = False,
    ) -> Quote:
        """Get a swap quote.

        Args:
            input_asset: Input mint
            output_asset: Output mint
            amount: Input amount in smallest units
            slippage_bps: Slippage tolerance in basis points
            restrict_intermediate: Only route through high-liquidity tokens

        Raises:
            AggregatorError: If the aggregator could not produce a quote
        """
        pass

    @abstractmethod
    async def get_swap_transaction(
        self,
        quote: Quote,
        signer_address: str,
        options: ProtectionOptions,
        priority_fee_lamports: Optional[int] = None,
    ) -> bytes:
        """Get the unsigned, serialized swap transaction for ``quote``.

        Raises:
            AggregatorError: If the aggregator refused to build it
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
