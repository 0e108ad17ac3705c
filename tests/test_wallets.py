"""Tests for ephemeral wallets, resumption tokens and the wallet store."""

import asyncio

import pytest
from cryptography.fernet import Fernet
from solders.keypair import Keypair

from solrelay.crypto import generate_master_key
from solrelay.errors import TokenExpired, TokenInvalid, WalletAlreadyUsed, WalletNotFound
from solrelay.wallets.manager import WalletManager
from solrelay.wallets.token import TokenCodec, TokenPayload

from conftest import make_settings


class TestTokenCodec:
    """Tests for minting and decoding resumption tokens."""

    def setup_method(self):
        self.codec = TokenCodec("a passphrase", validity_seconds=1800)
        self.keypair = Keypair()
        self.address = str(self.keypair.pubkey())

    def test_decodes_to_original_identity(self):
        """A fresh token reconstructs address and key material."""
        token = self.codec.mint(self.address, bytes(self.keypair), created_at=1000.0)

        payload = self.codec.decode(token, now=1500.0)

        assert payload.address == self.address
        assert payload.secret_key == bytes(self.keypair)
        assert payload.created_at == 1000.0
        assert payload.expires_at == 2800.0

    def test_expired_token_rejected(self):
        """Decoding after the embedded expiry fails with TokenExpired."""
        token = self.codec.mint(self.address, bytes(self.keypair), created_at=1000.0)

        with pytest.raises(TokenExpired):
            self.codec.decode(token, now=2800.1)

    def test_expiry_can_be_skipped_for_recovery(self):
        token = self.codec.mint(self.address, bytes(self.keypair), created_at=1000.0)

        payload = self.codec.decode(token, now=99999.0, verify_expiry=False)

        assert payload.address == self.address

    def test_tampered_token_rejected(self):
        """Changing any character breaks the authentication tag."""
        token = self.codec.mint(self.address, bytes(self.keypair), created_at=1000.0)
        middle = len(token) // 2
        replacement = "A" if token[middle] != "A" else "B"
        tampered = token[:middle] + replacement + token[middle + 1:]

        with pytest.raises(TokenInvalid):
            self.codec.decode(tampered, now=1500.0)

    def test_token_from_other_secret_rejected(self):
        """A token minted under another secret is treated as forged."""
        forged = TokenCodec("another passphrase").mint(
            self.address, bytes(self.keypair), created_at=1000.0
        )

        with pytest.raises(TokenInvalid):
            self.codec.decode(forged, now=1500.0)

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "eyJ2IjoxfQ=="])
    def test_malformed_token_rejected(self, garbage):
        with pytest.raises(TokenInvalid):
            self.codec.decode(garbage, now=1500.0)

    def test_accepts_ready_fernet_key(self):
        key = Fernet.generate_key().decode()
        codec = TokenCodec(key)

        token = codec.mint(self.address, bytes(self.keypair), created_at=1000.0)

        assert codec.decode(token, now=1001.0).address == self.address
        # The token really is a Fernet token under that key
        assert Fernet(key.encode()).decrypt(token.encode())


class TestWalletManager:
    """Tests for the wallet lifecycle."""

    @pytest.mark.asyncio
    async def test_create_and_resolve(self, wallet_manager):
        wallet = await wallet_manager.create_wallet()

        resolved = await wallet_manager.resolve_wallet(wallet.address)

        assert resolved is wallet
        assert str(wallet.keypair().pubkey()) == wallet.address
        assert wallet.expires_at - wallet.created_at == 3600

    @pytest.mark.asyncio
    async def test_addresses_are_unique(self, wallet_manager):
        addresses = {(await wallet_manager.create_wallet()).address for _ in range(5)}

        assert len(addresses) == 5

    @pytest.mark.asyncio
    async def test_signing_resolution_is_single_use(self, wallet_manager):
        """The second resolution for signing fails."""
        wallet = await wallet_manager.create_wallet()

        signer = await wallet_manager.resolve_wallet(wallet.address, for_signing=True)
        assert signer.used is True

        with pytest.raises(WalletAlreadyUsed):
            await wallet_manager.resolve_wallet(wallet.address, for_signing=True)

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, wallet_manager):
        with pytest.raises(WalletNotFound):
            await wallet_manager.resolve_wallet(str(Keypair().pubkey()))

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, wallet_manager, wallet_repo):
        """Destroying twice never raises and erases key material."""
        wallet = await wallet_manager.create_wallet()

        assert await wallet_manager.destroy_wallet(wallet.address) is True
        assert await wallet_manager.destroy_wallet(wallet.address) is False
        assert await wallet_manager.destroy_wallet(str(Keypair().pubkey())) is False

        assert wallet.destroyed is True
        assert bytes(wallet.secret_key) == bytes(64)
        record = await wallet_repo.get_wallet(wallet.address)
        assert record.is_retired
        assert record.secret_key == ""
        assert record.retired_until == wallet_manager.token_expires_at(wallet)
        with pytest.raises(WalletNotFound):
            await wallet_manager.resolve_wallet(wallet.address)

    @pytest.mark.asyncio
    async def test_restored_from_durable_storage(self, settings, session_factory, wallet_manager):
        """A new process resolves a wallet through the database."""
        wallet = await wallet_manager.create_wallet()
        await wallet_manager.resolve_wallet(wallet.address, for_signing=True)

        restarted = WalletManager(settings, session_factory=session_factory)
        try:
            restored = await restarted.resolve_wallet(wallet.address)
            assert restored is not wallet
            assert bytes(restored.secret_key) == bytes(wallet.secret_key)
            assert restored.used is True
        finally:
            await restarted.close()

    @pytest.mark.asyncio
    async def test_secret_encrypted_at_rest(self, session_factory, wallet_repo):
        settings = make_settings(master_key=generate_master_key())
        manager = WalletManager(settings, session_factory=session_factory)
        try:
            wallet = await manager.create_wallet()
            record = await wallet_repo.get_wallet(wallet.address)

            assert record is not None
            assert record.secret_key.startswith("gAAAA")
            assert manager._decode_secret(record.secret_key) == bytes(wallet.secret_key)
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_ttl_destroys_wallet(self, session_factory):
        settings = make_settings(wallet_ttl_seconds=0)
        manager = WalletManager(settings, session_factory=session_factory)
        try:
            wallet = await manager.create_wallet()
            await asyncio.sleep(0.2)

            assert wallet.destroyed is True
            with pytest.raises(WalletNotFound):
                await manager.resolve_wallet(wallet.address)
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_token_roundtrip_through_manager(self, wallet_manager):
        wallet = await wallet_manager.create_wallet()

        payload = wallet_manager.decode_token(wallet_manager.mint_token(wallet))

        assert payload.address == wallet.address
        assert payload.expires_at == wallet_manager.token_expires_at(wallet)

    @pytest.mark.asyncio
    async def test_register_from_token_after_loss(self, settings):
        """Without registry or store the token alone rebuilds the wallet."""
        manager = WalletManager(settings, persist=False)
        keypair = Keypair()
        payload = TokenPayload(
            address=str(keypair.pubkey()),
            secret_key=bytes(keypair),
            created_at=1000.0,
            expires_at=2800.0,
        )
        try:
            wallet = await manager.restore(payload)

            assert wallet.address == payload.address
            assert await manager.resolve_wallet(payload.address) is wallet
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_register_from_token_rejects_mismatched_key(self, wallet_manager):
        payload = TokenPayload(
            address=str(Keypair().pubkey()),
            secret_key=bytes(Keypair()),
            created_at=1000.0,
            expires_at=2800.0,
        )

        with pytest.raises(TokenInvalid):
            await wallet_manager.register_from_token(payload)

    @pytest.mark.asyncio
    async def test_destroyed_wallet_cannot_be_revived(self, wallet_manager):
        wallet = await wallet_manager.create_wallet()
        payload = wallet_manager.decode_token(wallet_manager.mint_token(wallet))
        await wallet_manager.destroy_wallet(wallet.address)

        with pytest.raises(WalletAlreadyUsed):
            await wallet_manager.restore(payload)

    @pytest.mark.asyncio
    async def test_destroyed_wallet_stays_closed_after_restart(self, settings, session_factory, wallet_manager):
        """The tombstone refuses the token in a process that never held the wallet."""
        wallet = await wallet_manager.create_wallet()
        payload = wallet_manager.decode_token(wallet_manager.mint_token(wallet))
        await wallet_manager.destroy_wallet(wallet.address)

        restarted = WalletManager(settings, session_factory=session_factory)
        try:
            with pytest.raises(WalletNotFound):
                await restarted.resolve_wallet(wallet.address)
            with pytest.raises(WalletAlreadyUsed):
                await restarted.register_from_token(payload)
            assert restarted.active_count == 0
        finally:
            await restarted.close()

    @pytest.mark.asyncio
    async def test_sweep_stale_only_removes_old_wallets(self, settings, session_factory, wallet_repo):
        """Startup sweep deletes rows older than the ceiling and keeps the rest."""
        now = [1_000_000.0]
        manager = WalletManager(settings, session_factory=session_factory, clock=lambda: now[0])
        try:
            old = await manager.create_wallet()
            now[0] += 86_000
            fresh = await manager.create_wallet()
            now[0] += 500

            removed = await manager.sweep_stale()

            assert removed == 1
            assert await wallet_repo.get_wallet(old.address) is None
            assert await wallet_repo.get_wallet(fresh.address) is not None
            assert old.destroyed is True
            assert fresh.destroyed is False
        finally:
            await manager.close()


class TestWalletRepository:
    """Tests for the durable wallet store."""

    @pytest.mark.asyncio
    async def test_save_get_retire(self, wallet_repo):
        await wallet_repo.save_wallet("addr1", "secret", created_at=10.0, expires_at=20.0)

        record = await wallet_repo.get_wallet("addr1")
        assert record.secret_key == "secret"
        assert record.used is False

        assert await wallet_repo.mark_used("addr1") is True
        assert await wallet_repo.retire_wallet("addr1", 1800) is True
        record = await wallet_repo.get_wallet("addr1")
        assert record.secret_key == ""
        assert record.retired_until == 1810.0
        assert await wallet_repo.list_wallets() == []

    @pytest.mark.asyncio
    async def test_retire_unknown_wallet(self, wallet_repo):
        assert await wallet_repo.retire_wallet("gone", 1800) is False
        assert await wallet_repo.get_wallet("gone") is None

        assert await wallet_repo.retire_wallet("gone", 1800, created_at=5.0) is True
        record = await wallet_repo.get_wallet("gone")
        assert record.used is True
        assert record.retired_until == 1805.0

    @pytest.mark.asyncio
    async def test_purge_retired_before(self, wallet_repo):
        await wallet_repo.save_wallet("live", "s", created_at=10.0, expires_at=20.0)
        await wallet_repo.retire_wallet("lapsed", 100, created_at=10.0)
        await wallet_repo.retire_wallet("recent", 100, created_at=500.0)

        assert await wallet_repo.purge_retired_before(400.0) == 1
        assert await wallet_repo.get_wallet("lapsed") is None
        assert (await wallet_repo.get_wallet("recent")).is_retired
        assert await wallet_repo.delete_created_before(1000.0) == ["live"]

    @pytest.mark.asyncio
    async def test_delete_created_before(self, wallet_repo):
        await wallet_repo.save_wallet("old", "s", created_at=10.0, expires_at=20.0)
        await wallet_repo.save_wallet("new", "s", created_at=100.0, expires_at=200.0)

        removed = await wallet_repo.delete_created_before(50.0)

        assert removed == ["old"]
        assert [r.address for r in await wallet_repo.list_wallets()] == ["new"]
