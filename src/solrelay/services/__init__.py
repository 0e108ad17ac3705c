"""Relay services: deposit watching, swap execution, forwarding, orchestration."""

from solrelay.services.asset_forwarder import AssetForwarder, SweepResult
from solrelay.services.deposit_watcher import BalanceSnapshot, DepositWatcher
from solrelay.services.fees import PriorityFeeEstimator
from solrelay.services.relay import (
    ConfirmResult,
    QuoteResult,
    RelayOrchestrator,
    RelayRun,
    RelayState,
)
from solrelay.services.swap_executor import SwapExecutor, SwapResult
from solrelay.services.validation import ConfirmRequest, SwapRequest

__all__ = [
    "AssetForwarder",
    "SweepResult",
    "BalanceSnapshot",
    "DepositWatcher",
    "PriorityFeeEstimator",
    "SwapExecutor",
    "SwapResult",
    "ConfirmRequest",
    "SwapRequest",
    "RelayOrchestrator",
    "RelayRun",
    "RelayState",
    "QuoteResult",
    "ConfirmResult",
]
