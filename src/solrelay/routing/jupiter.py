"""Jupiter DEX aggregator integration for Solana.

Uses Jupiter Aggregator API v6 for quotes and swap transactions.
API docs: https://station.jup.ag/docs/apis/swap-api
"""

import base64
import binascii
import logging
from typing import Optional

import httpx

from solrelay.errors import AggregatorError
from solrelay.routing.base import AggregatorClient, ProtectionOptions, Quote

logger = logging.getLogger(__name__)

JUPITER_API_V6 = "https://quote-api.jup.ag/v6"

# Jupiter v6 program, the write-locked account used for fee statistics
JUPITER_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

# DEXes skipped when protection is requested
MEV_EXCLUDED_DEXES = "Aldrin,Crema"

# Bounds handed to Jupiter's dynamic slippage
DYNAMIC_SLIPPAGE_MIN_BPS = 10
DYNAMIC_SLIPPAGE_MAX_BPS = 300


class JupiterProvider(AggregatorClient):
    """Jupiter DEX aggregator provider for Solana.

    Jupiter aggregates liquidity from Raydium, Orca, Meteora and other
    Solana DEXes to find the best swap rates.
    """

    def __init__(
        self,
        base_url: str = JUPITER_API_V6,
        api_key: Optional[str] = None,
        quote_timeout: float = 10.0,
        swap_timeout: float = 15.0,
    ):
        """Initialize Jupiter provider.

        Args:
            base_url: Jupiter API base URL
            api_key: Optional API key for higher rate limits
            quote_timeout: Timeout for quote requests in seconds
            swap_timeout: Timeout for swap-transaction requests in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.quote_timeout = quote_timeout
        self.swap_timeout = swap_timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "Jupiter"

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(headers=self._get_headers())
        return self._http_client

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json", "User-Agent": "solrelay/0.1"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict):
            return str(data.get("error") or data.get("message") or data)
        return str(data)

    @staticmethod
    def _json_body(response: httpx.Response, what: str) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise AggregatorError(
                f"Jupiter {what} response is not JSON", status_code=response.status_code, body=response.text
            ) from e
        if not isinstance(data, dict):
            raise AggregatorError(
                f"Jupiter {what} response is not an object", status_code=response.status_code, body=data
            )
        return data

    async def get_quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        slippage_bps: int = 50,
        restrict_intermediate: bool = False,
    ) -> Quote:
        params = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": "ExactIn",
            "onlyDirectRoutes": "false",
            "asLegacyTransaction": "false",
            "restrictIntermediateTokens": "true" if restrict_intermediate else "false",
            "maxAccounts": "64",
        }
        if restrict_intermediate:
            params["excludeDexes"] = MEV_EXCLUDED_DEXES

        try:
            response = await self._get_client().get(
                f"{self.base_url}/quote", params=params, timeout=self.quote_timeout
            )
        except httpx.HTTPError as e:
            raise AggregatorError(f"Jupiter quote request failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            error = self._error_text(response)
            logger.warning(f"Jupiter API error: {response.status_code} - {error}")
            raise AggregatorError(
                f"Failed to get swap quote: {error}",
                status_code=response.status_code,
                body=error,
            )

        quote = Quote.from_response(self._json_body(response, "quote"), provider=self.name)
        logger.info(
            f"Jupiter quote: {quote.in_amount} {input_asset[:8]}... -> "
            f"{quote.out_amount} {output_asset[:8]}... "
            f"(impact {quote.price_impact_percent}%, route {' -> '.join(quote.route_labels) or 'direct'})"
        )
        return quote

    async def get_swap_transaction(
        self,
        quote: Quote,
        signer_address: str,
        options: ProtectionOptions,
        priority_fee_lamports: Optional[int] = None,
    ) -> bytes:
        payload: dict = {
            "quoteResponse": quote.raw,
            "userPublicKey": signer_address,
            "wrapAndUnwrapSol": True,
            "useSharedAccounts": True,
            "dynamicComputeUnitLimit": options.enable,
            "prioritizationFeeLamports": (
                priority_fee_lamports if priority_fee_lamports is not None else "auto"
            ),
        }
        if options.enable:
            payload["dynamicSlippage"] = {
                "minBps": DYNAMIC_SLIPPAGE_MIN_BPS,
                "maxBps": DYNAMIC_SLIPPAGE_MAX_BPS,
            }

        try:
            response = await self._get_client().post(
                f"{self.base_url}/swap", json=payload, timeout=self.swap_timeout
            )
        except httpx.HTTPError as e:
            raise AggregatorError(f"Jupiter swap request failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            error = self._error_text(response)
            raise AggregatorError(
                f"Failed to get swap transaction: {error}",
                status_code=response.status_code,
                body=error,
            )

        data = self._json_body(response, "swap")
        swap_transaction = data.get("swapTransaction")
        if not swap_transaction:
            raise AggregatorError("No swap transaction received from Jupiter", body=data)

        if data.get("dynamicSlippageReport"):
            logger.info(
                f"Dynamic slippage applied: {data['dynamicSlippageReport'].get('slippageBps')} bps"
            )
        if data.get("computeUnitLimit"):
            logger.debug(f"Compute unit limit: {data['computeUnitLimit']}")

        try:
            return base64.b64decode(swap_transaction)
        except (binascii.Error, ValueError) as e:
            raise AggregatorError(f"Swap transaction is not valid base64: {e}") from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
