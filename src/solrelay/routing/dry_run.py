"""Simulated aggregator for dry-run mode.

Produces Jupiter-shaped quotes at a fixed rate and swap transactions that
``SimulatedChainClient`` knows how to execute.
"""

import logging
import struct
import time
from decimal import Decimal
from typing import Optional

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from solrelay.chain.simulated import SIMULATED_SWAP_PROGRAM_ID
from solrelay.errors import AggregatorError
from solrelay.routing.base import AggregatorClient, ProtectionOptions, Quote

logger = logging.getLogger(__name__)

# Output units per lamport of input, per output mint. Unknown mints use the default.
DEFAULT_RATE = Decimal("0.13785")


class DryRunAggregator(AggregatorClient):
    """Deterministic aggregator returning simulated quotes."""

    def __init__(
        self,
        rates: Optional[dict[str, Decimal]] = None,
        price_impact_percent: Decimal = Decimal("0.1"),
    ):
        self.rates = rates or {}
        self.price_impact_percent = price_impact_percent
        self.swap_requests: list[dict] = []

    @property
    def name(self) -> str:
        return "dry_run"

    async def get_quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        slippage_bps: int = 50,
        restrict_intermediate: bool = False,
    ) -> Quote:
        if amount <= 0:
            raise AggregatorError("Could not find any route")

        rate = self.rates.get(output_asset, DEFAULT_RATE)
        out_amount = int(Decimal(amount) * rate)
        response = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "inAmount": str(amount),
            "outAmount": str(out_amount),
            "otherAmountThreshold": str(out_amount * (10_000 - slippage_bps) // 10_000),
            "swapMode": "ExactIn",
            "slippageBps": slippage_bps,
            "priceImpactPct": str(self.price_impact_percent),
            "routePlan": [
                {
                    "swapInfo": {
                        "label": "Simulated",
                        "inputMint": input_asset,
                        "outputMint": output_asset,
                        "inAmount": str(amount),
                        "outAmount": str(out_amount),
                    },
                    "percent": 100,
                }
            ],
            "contextSlot": 0,
            "timeTaken": 0.0,
            "simulatedAt": time.time(),
        }
        logger.info(f"[SIMULATED] Quote {amount} -> {out_amount} {output_asset[:8]}...")
        return Quote.from_response(response, provider=self.name, is_simulated=True)

    async def get_swap_transaction(
        self,
        quote: Quote,
        signer_address: str,
        options: ProtectionOptions,
        priority_fee_lamports: Optional[int] = None,
    ) -> bytes:
        self.swap_requests.append(
            {
                "signer": signer_address,
                "options": options,
                "priority_fee_lamports": priority_fee_lamports,
            }
        )

        user = Pubkey.from_string(signer_address)
        instruction = Instruction(
            SIMULATED_SWAP_PROGRAM_ID,
            struct.pack("<QQ", quote.in_amount, quote.out_amount),
            [
                AccountMeta(user, is_signer=True, is_writable=True),
                AccountMeta(Pubkey.from_string(quote.input_asset), is_signer=False, is_writable=False),
                AccountMeta(Pubkey.from_string(quote.output_asset), is_signer=False, is_writable=False),
            ],
        )
        message = MessageV0.try_compile(user, [instruction], [], Hash.new_unique())
        unsigned = VersionedTransaction.populate(message, [Signature.default()])
        return bytes(unsigned)
