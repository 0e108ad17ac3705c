"""Ephemeral wallet lifecycle and resumption tokens."""

from solrelay.wallets.manager import EphemeralWallet, WalletManager
from solrelay.wallets.token import TokenCodec, TokenPayload

__all__ = ["EphemeralWallet", "WalletManager", "TokenCodec", "TokenPayload"]
