"""Tests for the Jupiter aggregator client."""

import base64
import json

import httpx
import pytest

from solrelay.config import SOL_MINT
from solrelay.errors import AggregatorError, QuoteInvalid
from solrelay.routing.base import ProtectionOptions, Quote
from solrelay.routing.jupiter import MEV_EXCLUDED_DEXES, JupiterProvider

from conftest import USDC_MINT

QUOTE_RESPONSE = {
    "inputMint": SOL_MINT,
    "inAmount": "1000000",
    "outputMint": USDC_MINT,
    "outAmount": "137850",
    "otherAmountThreshold": "137160",
    "swapMode": "ExactIn",
    "slippageBps": 50,
    "priceImpactPct": "0.0012",
    "routePlan": [
        {"swapInfo": {"label": "Raydium", "inAmount": "1000000", "outAmount": "137850"}, "percent": 100}
    ],
}


def make_provider(handler) -> JupiterProvider:
    provider = JupiterProvider(base_url="https://jup.test/v6", api_key="secret")
    provider._http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), headers=provider._get_headers()
    )
    return provider


class TestJupiterQuote:
    """Tests for quote requests."""

    @pytest.mark.asyncio
    async def test_quote_request_and_parse(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["headers"] = request.headers
            return httpx.Response(200, json=QUOTE_RESPONSE)

        provider = make_provider(handler)
        try:
            quote = await provider.get_quote(SOL_MINT, USDC_MINT, 1_000_000, slippage_bps=50)
        finally:
            await provider.close()

        params = seen["url"].params
        assert seen["url"].path == "/v6/quote"
        assert params["amount"] == "1000000"
        assert params["slippageBps"] == "50"
        assert params["restrictIntermediateTokens"] == "false"
        assert "excludeDexes" not in params
        assert seen["headers"]["x-api-key"] == "secret"

        assert quote.out_amount == 137_850
        assert quote.minimum_out_amount == 137_160
        assert quote.route_labels == ["Raydium"]
        assert quote.raw == QUOTE_RESPONSE

    @pytest.mark.asyncio
    async def test_protected_quote_restricts_routing(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = request.url.params
            return httpx.Response(200, json=QUOTE_RESPONSE)

        provider = make_provider(handler)
        try:
            await provider.get_quote(SOL_MINT, USDC_MINT, 1_000_000, restrict_intermediate=True)
        finally:
            await provider.close()

        assert seen["params"]["restrictIntermediateTokens"] == "true"
        assert seen["params"]["excludeDexes"] == MEV_EXCLUDED_DEXES

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Could not find any route"})

        provider = make_provider(handler)
        try:
            with pytest.raises(AggregatorError) as exc_info:
                await provider.get_quote(SOL_MINT, USDC_MINT, 1)
        finally:
            await provider.close()

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "Could not find any route"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        provider = make_provider(handler)
        try:
            with pytest.raises(AggregatorError):
                await provider.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_malformed_quote(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"inputMint": SOL_MINT})

        provider = make_provider(handler)
        try:
            with pytest.raises(QuoteInvalid):
                await provider.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_non_json_quote_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>upstream gateway</html>")

        provider = make_provider(handler)
        try:
            with pytest.raises(AggregatorError) as exc_info:
                await provider.get_quote(SOL_MINT, USDC_MINT, 1_000_000)
        finally:
            await provider.close()

        assert exc_info.value.status_code == 200
        assert "upstream gateway" in exc_info.value.body


class TestJupiterSwap:
    """Tests for swap transaction requests."""

    @pytest.mark.asyncio
    async def test_protected_swap_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"swapTransaction": base64.b64encode(b"tx-bytes").decode()}
            )

        provider = make_provider(handler)
        quote = Quote.from_response(QUOTE_RESPONSE)
        try:
            raw = await provider.get_swap_transaction(
                quote, "signer", ProtectionOptions(enable=True), priority_fee_lamports=3_000_000
            )
        finally:
            await provider.close()

        body = seen["body"]
        assert raw == b"tx-bytes"
        assert body["quoteResponse"] == QUOTE_RESPONSE
        assert body["userPublicKey"] == "signer"
        assert body["wrapAndUnwrapSol"] is True
        assert body["dynamicComputeUnitLimit"] is True
        assert body["prioritizationFeeLamports"] == 3_000_000
        assert body["dynamicSlippage"] == {"minBps": 10, "maxBps": 300}

    @pytest.mark.asyncio
    async def test_unprotected_swap_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"swapTransaction": base64.b64encode(b"tx-bytes").decode()}
            )

        provider = make_provider(handler)
        try:
            await provider.get_swap_transaction(
                Quote.from_response(QUOTE_RESPONSE), "signer", ProtectionOptions(enable=False)
            )
        finally:
            await provider.close()

        assert seen["body"]["prioritizationFeeLamports"] == "auto"
        assert seen["body"]["dynamicComputeUnitLimit"] is False
        assert "dynamicSlippage" not in seen["body"]

    @pytest.mark.asyncio
    async def test_missing_transaction(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": None})

        provider = make_provider(handler)
        try:
            with pytest.raises(AggregatorError):
                await provider.get_swap_transaction(
                    Quote.from_response(QUOTE_RESPONSE), "signer", ProtectionOptions()
                )
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_non_object_swap_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["swapTransaction"])

        provider = make_provider(handler)
        try:
            with pytest.raises(AggregatorError):
                await provider.get_swap_transaction(
                    Quote.from_response(QUOTE_RESPONSE), "signer", ProtectionOptions()
                )
        finally:
            await provider.close()


class TestQuoteModel:
    """Tests for the quote model."""

    def test_validate_rejects_zero_output(self):
        quote = Quote.from_response({**QUOTE_RESPONSE, "outAmount": "0"})

        with pytest.raises(QuoteInvalid):
            quote.validate()

    def test_from_dict_keeps_expiry(self):
        quote = Quote.from_dict({**QUOTE_RESPONSE, "expiresAt": 1700000000})

        assert quote.expires_at == 1700000000.0

    def test_not_an_object(self):
        with pytest.raises(QuoteInvalid):
            Quote.from_dict(["not", "a", "quote"])
