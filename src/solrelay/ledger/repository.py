"""Repository for the durable wallet store."""

from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from solrelay.ledger.models import EphemeralWalletRecord


class WalletRepository:
    """Database operations on ephemeral wallet records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save_wallet(
        self,
        address: str,
        secret_key: str,
        created_at: float,
        expires_at: float,
        used: bool = False,
    ) -> EphemeralWalletRecord:
        """Insert or replace the record for ``address``."""
        record = await self.get_wallet(address)
        if record is None:
            record = EphemeralWalletRecord(
                address=address,
                secret_key=secret_key,
                created_at=created_at,
                expires_at=expires_at,
                used=used,
            )
            self.session.add(record)
        else:
            record.secret_key = secret_key
            record.created_at = created_at
            record.expires_at = expires_at
            record.used = used
        await self.session.flush()
        return record

    async def get_wallet(self, address: str) -> Optional[EphemeralWalletRecord]:
        stmt = select(EphemeralWalletRecord).where(EphemeralWalletRecord.address == address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_used(self, address: str) -> bool:
        """Flag a wallet as having signed. Returns False if the row is gone."""
        stmt = (
            update(EphemeralWalletRecord)
            .where(EphemeralWalletRecord.address == address)
            .values(used=True)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def retire_wallet(
        self,
        address: str,
        retain_seconds: float,
        created_at: Optional[float] = None,
    ) -> bool:
        """Replace a wallet's record with a tombstone.

        The secret is blanked and the row is kept until ``retain_seconds``
        after the wallet's creation. Without an existing row a tombstone is
        only written when ``created_at`` is known. Returns False if nothing
        was written.
        """
        record = await self.get_wallet(address)
        if record is None:
            if created_at is None:
                return False
            record = EphemeralWalletRecord(
                address=address,
                secret_key="",
                created_at=created_at,
                expires_at=created_at,
                used=True,
                retired_until=created_at + retain_seconds,
            )
            self.session.add(record)
        else:
            record.secret_key = ""
            record.used = True
            record.retired_until = record.created_at + retain_seconds
        await self.session.flush()
        return True

    async def delete_created_before(self, cutoff: float) -> list[str]:
        """Delete every live record created before ``cutoff`` and return their addresses."""
        stmt = select(EphemeralWalletRecord.address).where(
            EphemeralWalletRecord.created_at < cutoff,
            EphemeralWalletRecord.retired_until.is_(None),
        )
        result = await self.session.execute(stmt)
        addresses = list(result.scalars().all())
        if addresses:
            await self.session.execute(
                delete(EphemeralWalletRecord).where(EphemeralWalletRecord.address.in_(addresses))
            )
        return addresses

    async def purge_retired_before(self, cutoff: float) -> int:
        """Drop tombstones whose retention ended before ``cutoff``."""
        stmt = delete(EphemeralWalletRecord).where(EphemeralWalletRecord.retired_until < cutoff)
        result = await self.session.execute(stmt)
        return result.rowcount

    async def list_wallets(self) -> list[EphemeralWalletRecord]:
        """Live records, oldest first. Tombstones are skipped."""
        stmt = (
            select(EphemeralWalletRecord)
            .where(EphemeralWalletRecord.retired_until.is_(None))
            .order_by(EphemeralWalletRecord.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
