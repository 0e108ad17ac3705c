"""Priority fee sizing from recent network fee statistics."""

import logging
from typing import Optional

from solrelay.chain.base import ChainClient
from solrelay.config import Settings, get_settings
from solrelay.errors import ChainError
from solrelay.routing.jupiter import JUPITER_PROGRAM_ID

logger = logging.getLogger(__name__)

PERCENTILE = 0.75
MULTIPLIER = 1.5

# Compute units assumed when converting a total fee into a per-unit price
NATIVE_TRANSFER_COMPUTE_UNITS = 200_000
TOKEN_TRANSFER_COMPUTE_UNITS = 300_000


class PriorityFeeEstimator:
    """Derives a priority fee from recent fees paid around the aggregator program."""

    def __init__(self, chain: ChainClient, settings: Optional[Settings] = None):
        self.chain = chain
        self.settings = settings or get_settings()

    async def estimate(self) -> int:
        """Fee in lamports: p75 of recent fees x1.5, floored and capped."""
        try:
            fees = await self.chain.get_recent_prioritization_fees([JUPITER_PROGRAM_ID])
        except ChainError as e:
            logger.warning(f"Failed to get prioritization fees, using default: {e}")
            return self._cap(self.settings.default_priority_fee_lamports)

        if not fees:
            return self._cap(self.settings.default_priority_fee_lamports)

        ordered = sorted(fees)
        p75 = ordered[min(int(len(ordered) * PERCENTILE), len(ordered) - 1)]
        fee = max(int(p75 * MULTIPLIER), self.settings.min_priority_fee_lamports)
        return self._cap(fee)

    def _cap(self, fee: int) -> int:
        return min(fee, self.settings.max_priority_fee_lamports)

    @staticmethod
    def compute_unit_price(fee_lamports: int, compute_units: int) -> int:
        """Micro-lamports per compute unit spreading ``fee_lamports`` over ``compute_units``."""
        return max(fee_lamports // compute_units, 0)
