"""Post-swap forwarding of wallet balances to the user's destination.

Forwarding submits exactly once. A failure leaves the funds in the
ephemeral wallet for manual recovery (see ``scripts/sweep_wallet.py``).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from solders.compute_budget import set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferParams as TokenTransferParams
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
)
from spl.token.instructions import transfer as token_transfer

from solrelay.chain.base import ChainClient
from solrelay.config import SOL_MINT, Settings, get_settings
from solrelay.errors import (
    ChainError,
    ForwardFailed,
    InsufficientReserve,
    NoTokensToTransfer,
)
from solrelay.services.fees import (
    NATIVE_TRANSFER_COMPUTE_UNITS,
    TOKEN_TRANSFER_COMPUTE_UNITS,
    PriorityFeeEstimator,
)
from solrelay.wallets.manager import EphemeralWallet

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Per-asset outcome of sweeping a whole wallet."""

    transfers: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class AssetForwarder:
    """Moves balances out of an ephemeral wallet."""

    def __init__(
        self,
        chain: ChainClient,
        settings: Optional[Settings] = None,
        fee_estimator: Optional[PriorityFeeEstimator] = None,
    ):
        self.chain = chain
        self.settings = settings or get_settings()
        self.fee_estimator = fee_estimator or PriorityFeeEstimator(chain, self.settings)

    async def forward_assets(
        self,
        wallet: EphemeralWallet,
        destination: str,
        asset: str,
        protection: bool = False,
    ) -> str:
        """Transfer the wallet's whole balance of ``asset`` to ``destination``.

        Returns:
            Signature of the confirmed transfer

        Raises:
            InsufficientReserve: Native balance does not exceed the fee reserve
            NoTokensToTransfer: Token balance is zero or the account is missing
            ForwardFailed: Submission or confirmation failed
        """
        try:
            destination_key = Pubkey.from_string(destination)
        except ValueError as e:
            raise ForwardFailed(f"Invalid destination address: {destination}") from e

        keypair = wallet.keypair()
        if asset == SOL_MINT:
            instructions = await self._native_instructions(keypair, destination_key, protection)
        else:
            instructions = await self._token_instructions(
                keypair, destination_key, Pubkey.from_string(asset), protection
            )

        return await self._submit(keypair, instructions, asset, destination)

    async def _priority_instructions(self, compute_units: int) -> list[Instruction]:
        fee = await self.fee_estimator.estimate()
        price = PriorityFeeEstimator.compute_unit_price(fee, compute_units)
        return [set_compute_unit_price(price)]

    async def _native_instructions(
        self, keypair: Keypair, destination: Pubkey, protection: bool
    ) -> list[Instruction]:
        owner = keypair.pubkey()
        try:
            balance = await self.chain.get_balance(str(owner))
        except ChainError as e:
            raise ForwardFailed(f"Failed to read SOL balance: {e}", details=e.payload) from e

        reserve = (
            self.settings.protected_fee_reserve_lamports
            if protection
            else self.settings.native_fee_reserve_lamports
        )
        amount = balance - reserve
        if amount <= 0:
            raise InsufficientReserve(
                "Insufficient SOL balance for transfer",
                details={"balance": str(balance), "reserve": str(reserve)},
            )

        instructions = []
        if protection:
            instructions.extend(await self._priority_instructions(NATIVE_TRANSFER_COMPUTE_UNITS))
        instructions.append(
            system_transfer(
                SystemTransferParams(from_pubkey=owner, to_pubkey=destination, lamports=amount)
            )
        )
        logger.info(f"Forwarding {amount} lamports from {owner} to {destination}")
        return instructions

    async def _token_instructions(
        self,
        keypair: Keypair,
        destination: Pubkey,
        mint: Pubkey,
        protection: bool,
    ) -> list[Instruction]:
        owner = keypair.pubkey()
        source = get_associated_token_address(owner, mint)
        destination_account = get_associated_token_address(destination, mint)

        try:
            balance = await self.chain.get_token_balance(str(owner), str(mint))
            needs_account = not await self.chain.account_exists(str(destination_account))
        except ChainError as e:
            raise ForwardFailed(f"Failed to read token accounts: {e}", details=e.payload) from e

        if not balance:
            raise NoTokensToTransfer(
                "No tokens to transfer", details={"mint": str(mint), "owner": str(owner)}
            )

        instructions = []
        if protection:
            instructions.extend(await self._priority_instructions(TOKEN_TRANSFER_COMPUTE_UNITS))
        if needs_account:
            logger.info(f"Creating token account {destination_account} for {destination}")
            instructions.append(create_associated_token_account(owner, destination, mint))
        instructions.append(
            token_transfer(
                TokenTransferParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source,
                    dest=destination_account,
                    owner=owner,
                    amount=balance,
                    signers=[],
                )
            )
        )
        logger.info(f"Forwarding {balance} of {mint} from {owner} to {destination}")
        return instructions

    async def _submit(
        self, keypair: Keypair, instructions: list[Instruction], asset: str, destination: str
    ) -> str:
        try:
            blockhash = await self.chain.get_latest_blockhash()
            message = MessageV0.try_compile(keypair.pubkey(), instructions, [], blockhash)
            transaction = VersionedTransaction(message, [keypair])
            signature = await self.chain.submit_transaction(transaction)
            await self.chain.confirm_transaction(
                signature, timeout=self.settings.confirm_timeout_seconds
            )
        except ChainError as e:
            logger.error(f"Forward of {asset} to {destination} failed: {e}")
            raise ForwardFailed(
                f"Transfer to destination failed: {e}",
                details={"asset": asset, "chain_error": e.payload},
            ) from e
        except asyncio.TimeoutError as e:
            raise ForwardFailed(
                "Transfer to destination was not confirmed in time",
                details={"asset": asset},
            ) from e

        logger.info(f"Forward confirmed: {signature}")
        return signature

    async def sweep_all(self, wallet: EphemeralWallet, destination: str) -> SweepResult:
        """Forward every token balance, then the remaining SOL.

        Per-asset failures are collected rather than raised so one stuck
        token does not block the others.
        """
        result = SweepResult()
        try:
            accounts = await self.chain.get_token_accounts(wallet.address)
        except ChainError as e:
            result.errors.append({"asset": "tokens", "error": str(e)})
            accounts = []

        for account in accounts:
            if account.amount <= 0:
                continue
            try:
                signature = await self.forward_assets(wallet, destination, account.mint)
            except ForwardFailed as e:
                result.errors.append({"asset": account.mint, "error": e.message})
                continue
            result.transfers.append(
                {"asset": account.mint, "amount": str(account.amount), "signature": signature}
            )

        try:
            signature = await self.forward_assets(wallet, destination, SOL_MINT)
        except ForwardFailed as e:
            result.errors.append({"asset": SOL_MINT, "error": e.message})
        else:
            result.transfers.append({"asset": SOL_MINT, "signature": signature})

        logger.info(
            f"Sweep of {wallet.address}: {len(result.transfers)} transfer(s), "
            f"{len(result.errors)} error(s)"
        )
        return result
