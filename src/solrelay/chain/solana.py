"""Solana RPC chain client.

Balance, account and submission calls go through solana-py's ``AsyncClient``;
prioritization fees are read with a raw JSON-RPC request because the typed
client does not expose them uniformly across versions.
"""

import asyncio
import logging
from typing import Optional

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from solrelay.chain.base import ChainClient, TokenAccount
from solrelay.errors import ChainError

logger = logging.getLogger(__name__)

CONFIRMED_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


class SolanaChainClient(ChainClient):
    """Chain client backed by a Solana JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        status_poll_interval: float = 1.0,
    ):
        """Initialize client.

        Args:
            rpc_url: Solana RPC endpoint
            timeout: Per-request timeout in seconds
            status_poll_interval: Delay between signature status checks
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.status_poll_interval = status_poll_interval
        self._client: Optional[AsyncClient] = None
        self._http_client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> AsyncClient:
        """Get or create RPC client."""
        if self._client is None:
            self._client = AsyncClient(self.rpc_url, commitment=Confirmed, timeout=self.timeout)
        return self._client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create raw JSON-RPC HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def get_balance(self, address: str) -> int:
        try:
            resp = await self._get_client().get_balance(Pubkey.from_string(address))
        except Exception as e:
            raise ChainError(f"get_balance failed for {address}: {e}") from e
        return int(resp.value)

    async def get_token_balance(self, owner: str, mint: str) -> Optional[int]:
        ata = get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint))
        if not await self.account_exists(str(ata)):
            return None

        try:
            resp = await self._get_client().get_token_account_balance(ata)
        except Exception as e:
            raise ChainError(f"get_token_account_balance failed for {ata}: {e}") from e
        return int(resp.value.amount)

    async def get_token_accounts(self, owner: str) -> list[TokenAccount]:
        try:
            resp = await self._get_client().get_token_accounts_by_owner_json_parsed(
                Pubkey.from_string(owner),
                TokenAccountOpts(program_id=TOKEN_PROGRAM_ID),
            )
        except Exception as e:
            raise ChainError(f"get_token_accounts failed for {owner}: {e}") from e

        accounts = []
        for keyed in resp.value:
            info = keyed.account.data.parsed.get("info", {})
            amount = int(info.get("tokenAmount", {}).get("amount", "0"))
            accounts.append(
                TokenAccount(address=str(keyed.pubkey), mint=info.get("mint", ""), amount=amount)
            )
        return accounts

    async def account_exists(self, address: str) -> bool:
        try:
            resp = await self._get_client().get_account_info(Pubkey.from_string(address))
        except Exception as e:
            raise ChainError(f"get_account_info failed for {address}: {e}") from e
        return resp.value is not None

    async def get_latest_blockhash(self) -> Hash:
        try:
            resp = await self._get_client().get_latest_blockhash()
        except Exception as e:
            raise ChainError(f"get_latest_blockhash failed: {e}") from e
        return resp.value.blockhash

    async def submit_transaction(self, transaction: VersionedTransaction) -> str:
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=0)
        try:
            resp = await self._get_client().send_raw_transaction(bytes(transaction), opts=opts)
        except Exception as e:
            raise ChainError(f"sendTransaction failed: {e}", payload=str(e)) from e

        signature = str(resp.value)
        logger.info(f"Transaction submitted: {signature}")
        return signature

    async def confirm_transaction(self, signature: str, timeout: float) -> None:
        await asyncio.wait_for(self._poll_signature(signature), timeout=timeout)

    async def _poll_signature(self, signature: str) -> None:
        """Poll signature status until it is confirmed or failed."""
        sig = Signature.from_string(signature)
        client = self._get_client()

        while True:
            try:
                resp = await client.get_signature_statuses([sig])
                status = resp.value[0] if resp.value else None
            except Exception as e:
                logger.warning(f"Signature status check failed for {signature}: {e}")
                status = None

            if status is not None:
                if status.err is not None:
                    raise ChainError(
                        f"Transaction {signature} failed on-chain", payload=str(status.err)
                    )
                if status.confirmation_status in CONFIRMED_STATUSES:
                    logger.info(f"Transaction confirmed: {signature}")
                    return

            await asyncio.sleep(self.status_poll_interval)

    async def get_recent_prioritization_fees(self, accounts: list[str]) -> list[int]:
        try:
            response = await self._get_http_client().post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "getRecentPrioritizationFees",
                    "params": [accounts],
                },
            )
            data = response.json()
        except Exception as e:
            raise ChainError(f"getRecentPrioritizationFees failed: {e}") from e

        if "error" in data:
            raise ChainError("getRecentPrioritizationFees error", payload=data["error"])
        return [int(item.get("prioritizationFee", 0)) for item in data.get("result", [])]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
