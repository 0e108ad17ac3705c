"""SQLAlchemy models for the durable wallet store."""

from typing import Optional

from sqlalchemy import Boolean, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EphemeralWalletRecord(Base):
    """Durable copy of an ephemeral wallet.

    Only used to recover wallets after a restart; the in-memory registry is
    authoritative while the process runs. ``secret_key`` holds the Fernet
    ciphertext when a master key is configured, otherwise base58.

    A destroyed wallet leaves a tombstone: the secret is blanked and
    ``retired_until`` is set to the end of its token validity window, so no
    process can revive the address from a replayed token.
    """

    __tablename__ = "ephemeral_wallets"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    secret_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retired_until: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("ix_ephemeral_wallets_created_at", "created_at"),)

    @property
    def is_retired(self) -> bool:
        return self.retired_until is not None

    def __repr__(self) -> str:
        return f"<EphemeralWalletRecord {self.address} used={self.used} retired={self.is_retired}>"
