"""Durable wallet store, used for restart recovery only."""

from solrelay.ledger.database import close_db, init_db, session_scope
from solrelay.ledger.models import Base, EphemeralWalletRecord
from solrelay.ledger.repository import WalletRepository

__all__ = [
    # Models
    "Base",
    "EphemeralWalletRecord",
    # Database
    "session_scope",
    "init_db",
    "close_db",
    "WalletRepository",
]
