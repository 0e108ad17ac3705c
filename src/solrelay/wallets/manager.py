"""Ephemeral wallet lifecycle.

Each quote gets a fresh keypair that lives in an in-memory registry, with a
durable copy in the database for restart recovery. A wallet signs at most
one swap and is destroyed when its relay ends or its TTL elapses.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import base58
from solders.keypair import Keypair
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from solrelay.config import Settings, get_settings
from solrelay.crypto import InvalidToken, SecretEncryptor, get_encryptor
from solrelay.errors import TokenInvalid, WalletAlreadyUsed, WalletNotFound
from solrelay.ledger.database import session_scope
from solrelay.ledger.models import EphemeralWalletRecord
from solrelay.ledger.repository import WalletRepository
from solrelay.wallets.token import TokenCodec, TokenPayload

logger = logging.getLogger(__name__)


@dataclass
class EphemeralWallet:
    """A single-use custodial wallet."""

    address: str
    secret_key: bytearray
    created_at: float
    expires_at: float
    used: bool = False
    destroyed: bool = False

    def keypair(self) -> Keypair:
        if self.destroyed:
            raise WalletNotFound(self.address)
        return Keypair.from_bytes(bytes(self.secret_key))

    def erase(self) -> None:
        """Overwrite the key material in place."""
        for i in range(len(self.secret_key)):
            self.secret_key[i] = 0
        self.destroyed = True

    def __repr__(self) -> str:
        return (
            f"EphemeralWallet(address={self.address!r}, used={self.used}, "
            f"destroyed={self.destroyed})"
        )


class WalletManager:
    """Creates, resolves and destroys ephemeral wallets."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.persist = persist
        self._session_factory = session_factory
        self._clock = clock
        self._codec = TokenCodec(
            self.settings.token_secret,
            validity_seconds=self.settings.quote_validity_seconds,
        )
        self._encryptor: Optional[SecretEncryptor] = get_encryptor(
            self.settings.master_key or ""
        )
        self._wallets: dict[str, EphemeralWallet] = {}
        # Destroyed addresses, kept until their tokens can no longer decode
        self._retired: dict[str, float] = {}
        self._ttl_tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def _session(self):
        return session_scope(self._session_factory)

    # ---- secrets at rest ----

    def _encode_secret(self, secret_key: bytes) -> str:
        encoded = base58.b58encode(bytes(secret_key)).decode()
        if self._encryptor:
            return self._encryptor.encrypt(encoded)
        return encoded

    def _decode_secret(self, stored: str) -> bytes:
        if self._encryptor:
            try:
                stored = self._encryptor.decrypt(stored)
            except InvalidToken:
                logger.warning("Stored wallet secret is not encrypted with the current master key")
                raise
        return base58.b58decode(stored)

    # ---- lifecycle ----

    async def create_wallet(self) -> EphemeralWallet:
        """Generate a fresh keypair and register it."""
        keypair = Keypair()
        now = self._clock()
        wallet = EphemeralWallet(
            address=str(keypair.pubkey()),
            secret_key=bytearray(bytes(keypair)),
            created_at=now,
            expires_at=now + self.settings.wallet_ttl_seconds,
        )

        async with self._lock:
            self._wallets[wallet.address] = wallet

        if self.persist:
            async with self._session() as session:
                await WalletRepository(session).save_wallet(
                    address=wallet.address,
                    secret_key=self._encode_secret(wallet.secret_key),
                    created_at=wallet.created_at,
                    expires_at=wallet.expires_at,
                )

        self._schedule_expiry(wallet.address, self.settings.wallet_ttl_seconds)
        logger.info(f"Created ephemeral wallet {wallet.address}")
        return wallet

    async def resolve_wallet(self, address: str, for_signing: bool = False) -> EphemeralWallet:
        """Look a wallet up in memory, then in durable storage.

        Args:
            address: Wallet address
            for_signing: Mark the wallet used; a second signing resolution fails

        Raises:
            WalletNotFound: If the wallet is unknown or destroyed
            WalletAlreadyUsed: If ``for_signing`` and the wallet already signed
        """
        async with self._lock:
            wallet = self._wallets.get(address)

        if wallet is None:
            wallet = await self._load_from_storage(address)

        if for_signing:
            async with self._lock:
                if wallet.destroyed:
                    raise WalletNotFound(address)
                if wallet.used:
                    raise WalletAlreadyUsed(address)
                wallet.used = True

            if self.persist:
                async with self._session() as session:
                    await WalletRepository(session).mark_used(address)

        return wallet

    async def _load_from_storage(self, address: str) -> EphemeralWallet:
        if not self.persist:
            raise WalletNotFound(address)

        async with self._session() as session:
            record = await WalletRepository(session).get_wallet(address)
        if record is None:
            raise WalletNotFound(address)
        if record.is_retired:
            async with self._lock:
                self._retired[address] = record.retired_until
            raise WalletNotFound(address)

        wallet = self._wallet_from_record(record)
        async with self._lock:
            # Another task may have restored it meanwhile
            existing = self._wallets.get(address)
            if existing is not None:
                return existing
            self._wallets[address] = wallet

        remaining = wallet.expires_at - self._clock()
        self._schedule_expiry(address, max(remaining, 0))
        logger.info(f"Restored wallet {address} from durable storage")
        return wallet

    def _wallet_from_record(self, record: EphemeralWalletRecord) -> EphemeralWallet:
        return EphemeralWallet(
            address=record.address,
            secret_key=bytearray(self._decode_secret(record.secret_key)),
            created_at=record.created_at,
            expires_at=record.expires_at,
            used=record.used,
        )

    async def register_from_token(self, payload: TokenPayload) -> EphemeralWallet:
        """Rebuild a wallet from decoded token contents.

        Used when the registry and durable store have both lost the wallet.
        An address destroyed by this or any other process sharing the store
        is refused until its tombstone lapses.

        Raises:
            TokenInvalid: If the key material does not match the address
            WalletAlreadyUsed: If the wallet already finished a relay
        """
        try:
            keypair = Keypair.from_bytes(payload.secret_key)
        except (ValueError, TypeError) as e:
            raise TokenInvalid("Resumption token key material is invalid") from e
        if str(keypair.pubkey()) != payload.address:
            raise TokenInvalid("Resumption token key material does not match its address")

        if self.persist and payload.address not in self._retired:
            async with self._session() as session:
                record = await WalletRepository(session).get_wallet(payload.address)
            if record is not None and record.is_retired:
                async with self._lock:
                    self._retired[payload.address] = record.retired_until

        async with self._lock:
            if payload.address in self._retired:
                raise WalletAlreadyUsed(payload.address)
            existing = self._wallets.get(payload.address)
            if existing is not None:
                return existing
            wallet = EphemeralWallet(
                address=payload.address,
                secret_key=bytearray(payload.secret_key),
                created_at=payload.created_at,
                expires_at=payload.created_at + self.settings.wallet_ttl_seconds,
            )
            self._wallets[wallet.address] = wallet

        remaining = wallet.expires_at - self._clock()
        self._schedule_expiry(wallet.address, max(remaining, 0))
        logger.info(f"Re-registered wallet {wallet.address} from resumption token")
        return wallet

    async def restore(self, payload: TokenPayload) -> EphemeralWallet:
        """Resolve the wallet named in a token, rebuilding it if it is gone."""
        try:
            return await self.resolve_wallet(payload.address)
        except WalletNotFound:
            return await self.register_from_token(payload)

    async def destroy_wallet(self, address: str, reason: str = "completed") -> bool:
        """Erase a wallet from memory and leave a tombstone in storage.

        Idempotent: destroying an unknown or already destroyed wallet is a
        no-op. Returns True if a wallet was erased from memory.
        """
        async with self._lock:
            wallet = self._wallets.pop(address, None)
            if wallet is not None:
                wallet.erase()
                self._retired[address] = wallet.created_at + self.settings.quote_validity_seconds
            task = self._ttl_tasks.pop(address, None)

        if task is not None and task is not asyncio.current_task():
            task.cancel()

        if self.persist:
            try:
                async with self._session() as session:
                    await WalletRepository(session).retire_wallet(
                        address,
                        self.settings.quote_validity_seconds,
                        created_at=wallet.created_at if wallet is not None else None,
                    )
            except Exception:
                logger.exception(f"Failed to retire durable copy of wallet {address}")

        if wallet is not None:
            logger.info(f"Destroyed wallet {address} ({reason})")
        self._prune_retired()
        return wallet is not None

    def _prune_retired(self) -> None:
        now = self._clock()
        for address, until in list(self._retired.items()):
            if until < now:
                del self._retired[address]

    def _schedule_expiry(self, address: str, delay: float) -> None:
        previous = self._ttl_tasks.pop(address, None)
        if previous is not None:
            previous.cancel()
        self._ttl_tasks[address] = asyncio.create_task(self._expire_after(address, delay))

    async def _expire_after(self, address: str, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.warning(f"Wallet {address} reached its TTL")
        await self.destroy_wallet(address, reason="ttl")

    # ---- tokens ----

    def mint_token(self, wallet: EphemeralWallet) -> str:
        return self._codec.mint(wallet.address, bytes(wallet.secret_key), wallet.created_at)

    def decode_token(self, token: str, verify_expiry: bool = True) -> TokenPayload:
        return self._codec.decode(token, now=self._clock(), verify_expiry=verify_expiry)

    def token_expires_at(self, wallet: EphemeralWallet) -> float:
        return wallet.created_at + self.settings.quote_validity_seconds

    # ---- maintenance ----

    async def sweep_stale(self, max_age_seconds: Optional[float] = None) -> int:
        """Delete wallets older than the ceiling. Returns the count removed."""
        if max_age_seconds is None:
            max_age_seconds = self.settings.stale_wallet_max_age_seconds
        cutoff = self._clock() - max_age_seconds

        removed: set[str] = set()
        if self.persist:
            async with self._session() as session:
                removed.update(await WalletRepository(session).delete_created_before(cutoff))

        async with self._lock:
            stale = [a for a, w in self._wallets.items() if w.created_at < cutoff]
        for address in stale:
            await self.destroy_wallet(address, reason="stale")
            removed.add(address)

        if self.persist:
            async with self._session() as session:
                purged = await WalletRepository(session).purge_retired_before(self._clock())
            if purged:
                logger.info(f"Purged {purged} lapsed wallet tombstone(s)")

        if removed:
            logger.warning(f"Swept {len(removed)} stale wallet(s) older than {max_age_seconds}s")
        return len(removed)

    @property
    def active_count(self) -> int:
        return len(self._wallets)

    async def close(self) -> None:
        """Cancel pending TTL tasks. Wallets are left in place."""
        tasks = list(self._ttl_tasks.values())
        self._ttl_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
