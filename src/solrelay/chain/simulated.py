"""Simulated chain client for dry-run mode and tests.

Keeps an in-memory ledger of lamport balances and token accounts and
executes the subset of instructions the relay produces: system transfers,
SPL token transfers, associated-account creation and the simulated swap
instruction emitted by ``solrelay.routing.dry_run``.
"""

import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from solrelay.chain.base import ChainClient, TokenAccount
from solrelay.errors import ChainError

logger = logging.getLogger(__name__)

# Program consumed by the simulated aggregator's swap instruction
SIMULATED_SWAP_PROGRAM_ID = Pubkey(b"solrelay-simulated-swap".ljust(32, b"\x00"))

SIGNATURE_FEE_LAMPORTS = 5000
TOKEN_ACCOUNT_RENT_LAMPORTS = 2_039_280

_SYSTEM_TRANSFER = 2
_TOKEN_TRANSFER = 3


@dataclass
class _PendingDeposit:
    address: str
    lamports: int
    after_queries: int


class SimulatedChainClient(ChainClient):
    """In-memory ledger implementing the chain client contract."""

    def __init__(
        self,
        signature_fee: int = SIGNATURE_FEE_LAMPORTS,
        prioritization_fees: Optional[list[int]] = None,
    ):
        self.signature_fee = signature_fee
        self.prioritization_fees: list[int] = list(prioritization_fees or [])
        self.lamports: dict[str, int] = {}
        self.token_accounts: dict[str, TokenAccount] = {}
        self.token_owners: dict[str, str] = {}
        self.landed: dict[str, Optional[str]] = {}
        self.submitted: list[str] = []

        # Failure injection
        self.fail_next_submissions = 0
        self.submission_error = "Blockhash not found"
        self.confirm_error: Optional[str] = None
        self.confirm_hang = False
        self.balance_failures = 0

        self._balance_queries: dict[str, int] = {}
        self._pending: list[_PendingDeposit] = []

    # ---- test / dry-run helpers ----

    def airdrop(self, address: str, lamports: int, after_queries: int = 0) -> None:
        """Credit lamports now, or after ``address`` was queried N times."""
        if after_queries <= 0:
            self.lamports[address] = self.lamports.get(address, 0) + lamports
        else:
            self._pending.append(_PendingDeposit(address, lamports, after_queries))

    def mint_to(self, owner: str, mint: str, amount: int) -> str:
        """Credit tokens to the owner's associated account, creating it if needed."""
        account = self._ensure_token_account(owner, mint)
        account.amount += amount
        return account.address

    def token_balance_of(self, owner: str, mint: str) -> int:
        ata = str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))
        account = self.token_accounts.get(ata)
        return account.amount if account else 0

    # ---- ChainClient ----

    async def get_balance(self, address: str) -> int:
        if self.balance_failures > 0:
            self.balance_failures -= 1
            raise ChainError("simulated RPC outage")

        queries = self._balance_queries.get(address, 0) + 1
        self._balance_queries[address] = queries
        for pending in list(self._pending):
            if pending.address == address and queries >= pending.after_queries:
                self._pending.remove(pending)
                self.lamports[address] = self.lamports.get(address, 0) + pending.lamports

        return self.lamports.get(address, 0)

    async def get_token_balance(self, owner: str, mint: str) -> Optional[int]:
        ata = str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))
        account = self.token_accounts.get(ata)
        return account.amount if account else None

    async def get_token_accounts(self, owner: str) -> list[TokenAccount]:
        return [
            TokenAccount(address=acc.address, mint=acc.mint, amount=acc.amount)
            for address, acc in self.token_accounts.items()
            if self.token_owners.get(address) == owner
        ]

    async def account_exists(self, address: str) -> bool:
        return address in self.token_accounts or self.lamports.get(address, 0) > 0

    async def get_latest_blockhash(self) -> Hash:
        return Hash.new_unique()

    async def submit_transaction(self, transaction: VersionedTransaction) -> str:
        if not transaction.signatures or transaction.signatures[0] == Signature.default():
            raise ChainError("Transaction signature verification failure")

        signature = str(transaction.signatures[0])
        self.submitted.append(signature)

        if self.fail_next_submissions > 0:
            self.fail_next_submissions -= 1
            raise ChainError(f"sendTransaction failed: {self.submission_error}",
                             payload=self.submission_error)

        if signature in self.landed:
            # Same signed transaction resubmitted, the network deduplicates it
            return signature

        self._execute(transaction)
        self.landed[signature] = self.confirm_error
        logger.info(f"[SIMULATED] Transaction landed: {signature}")
        return signature

    async def confirm_transaction(self, signature: str, timeout: float) -> None:
        await asyncio.wait_for(self._wait_landed(signature), timeout=timeout)

    async def _wait_landed(self, signature: str) -> None:
        while self.confirm_hang or signature not in self.landed:
            await asyncio.sleep(0.01)
        error = self.landed[signature]
        if error is not None:
            raise ChainError(f"Transaction {signature} failed on-chain", payload=error)

    async def get_recent_prioritization_fees(self, accounts: list[str]) -> list[int]:
        return list(self.prioritization_fees)

    # ---- execution ----

    def _ensure_token_account(self, owner: str, mint: str) -> TokenAccount:
        ata = str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))
        if ata not in self.token_accounts:
            self.token_accounts[ata] = TokenAccount(address=ata, mint=mint, amount=0)
            self.token_owners[ata] = owner
        return self.token_accounts[ata]

    def _debit(self, lamports: dict[str, int], address: str, amount: int) -> None:
        balance = lamports.get(address, 0)
        if balance < amount:
            raise ChainError(
                "Transaction simulation failed: insufficient lamports",
                payload={"InsufficientFundsForRent": {"account": address, "needed": amount,
                                                      "available": balance}},
            )
        lamports[address] = balance - amount

    def _execute(self, transaction: VersionedTransaction) -> None:
        """Apply all instructions atomically or raise ChainError."""
        message = transaction.message
        keys = [str(key) for key in message.account_keys]
        lamports = dict(self.lamports)
        tokens = {addr: TokenAccount(acc.address, acc.mint, acc.amount)
                  for addr, acc in self.token_accounts.items()}
        owners = dict(self.token_owners)

        self._debit(lamports, keys[0], self.signature_fee * len(transaction.signatures))

        for ix in message.instructions:
            program = keys[ix.program_id_index]
            accounts = [keys[i] for i in bytes(ix.accounts)]
            data = bytes(ix.data)

            if program == str(SYSTEM_PROGRAM_ID) and data[:4] == struct.pack("<I", _SYSTEM_TRANSFER):
                (amount,) = struct.unpack("<Q", data[4:12])
                self._debit(lamports, accounts[0], amount)
                lamports[accounts[1]] = lamports.get(accounts[1], 0) + amount

            elif program == str(ASSOCIATED_TOKEN_PROGRAM_ID):
                payer, ata, owner, mint = accounts[0], accounts[1], accounts[2], accounts[3]
                if ata in tokens:
                    raise ChainError("Transaction simulation failed: account already in use",
                                     payload={"AccountAlreadyInUse": ata})
                self._debit(lamports, payer, TOKEN_ACCOUNT_RENT_LAMPORTS)
                tokens[ata] = TokenAccount(address=ata, mint=mint, amount=0)
                owners[ata] = owner

            elif program == str(TOKEN_PROGRAM_ID) and data[:1] == bytes([_TOKEN_TRANSFER]):
                (amount,) = struct.unpack("<Q", data[1:9])
                source, dest, owner = accounts[0], accounts[1], accounts[2]
                if source not in tokens or dest not in tokens:
                    raise ChainError("Transaction simulation failed: invalid account data",
                                     payload={"InvalidAccountData": [source, dest]})
                if owners.get(source) != owner or tokens[source].amount < amount:
                    raise ChainError("Transaction simulation failed: insufficient funds",
                                     payload={"InsufficientFunds": source})
                tokens[source].amount -= amount
                tokens[dest].amount += amount

            elif program == str(SIMULATED_SWAP_PROGRAM_ID):
                in_amount, out_amount = struct.unpack("<QQ", data[:16])
                user, output_mint = accounts[0], accounts[2]
                self._debit(lamports, user, in_amount)
                ata = str(get_associated_token_address(Pubkey.from_string(user),
                                                       Pubkey.from_string(output_mint)))
                if ata not in tokens:
                    tokens[ata] = TokenAccount(address=ata, mint=output_mint, amount=0)
                    owners[ata] = user
                tokens[ata].amount += out_amount

            else:
                # Compute budget and other instructions have no ledger effect here
                continue

        self.lamports = lamports
        self.token_accounts = tokens
        self.token_owners = owners
