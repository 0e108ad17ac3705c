#!/usr/bin/env python3
"""Stranded Wallet Recovery Script.

Moves every token balance, then the remaining SOL, out of an ephemeral
wallet. Used after a forward failure or a timed-out relay left funds behind.

Usage:
    python scripts/sweep_wallet.py --list
    python scripts/sweep_wallet.py --address <wallet> --destination <dest>
    python scripts/sweep_wallet.py --token <resumption token> --destination <dest>

Options:
    --list       List wallets in durable storage
    --address    Wallet to sweep, loaded from durable storage
    --token      Resumption token to rebuild the wallet from (works after restarts
                 and for already destroyed wallets)
    --show       Print balances without transferring
    --destroy    Erase the wallet after a fully successful sweep
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from solrelay.chain import create_chain_client
from solrelay.config import SOL_MINT, get_settings
from solrelay.errors import RelayError
from solrelay.ledger.database import close_db, init_db, session_scope
from solrelay.ledger.repository import WalletRepository
from solrelay.services.asset_forwarder import AssetForwarder
from solrelay.wallets.manager import EphemeralWallet, WalletManager

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def list_wallets() -> None:
    """Print stored wallets, oldest first."""
    async with session_scope() as session:
        records = await WalletRepository(session).list_wallets()

    if not records:
        print("No wallets in durable storage")
        return

    for record in records:
        created = datetime.fromtimestamp(record.created_at, tz=timezone.utc).isoformat()
        print(f"{record.address}  created={created}  used={record.used}")


async def load_wallet(manager: WalletManager, args) -> EphemeralWallet:
    if args.token:
        # Expiry is ignored: recovery must work long after the quote lapsed
        payload = manager.decode_token(args.token, verify_expiry=False)
        return EphemeralWallet(
            address=payload.address,
            secret_key=bytearray(payload.secret_key),
            created_at=payload.created_at,
            expires_at=payload.expires_at,
        )
    return await manager.resolve_wallet(args.address)


async def show_balances(chain, wallet: EphemeralWallet) -> None:
    lamports = await chain.get_balance(wallet.address)
    print(f"{SOL_MINT}  {lamports} lamports")
    for account in await chain.get_token_accounts(wallet.address):
        print(f"{account.mint}  {account.amount}  (account {account.address})")


async def main():
    parser = argparse.ArgumentParser(description="Sweep a stranded ephemeral wallet")
    parser.add_argument("--list", action="store_true", help="List stored wallets")
    parser.add_argument("--address", help="Wallet address in durable storage")
    parser.add_argument("--token", help="Resumption token of the wallet")
    parser.add_argument("--destination", help="Address receiving the funds")
    parser.add_argument("--show", action="store_true", help="Only print balances")
    parser.add_argument("--destroy", action="store_true",
                        help="Erase the wallet after a successful sweep")
    args = parser.parse_args()

    settings = get_settings()
    await init_db()

    if args.list:
        await list_wallets()
        await close_db()
        return 0

    if not args.address and not args.token:
        parser.error("one of --address or --token is required")
    if not args.show and not args.destination:
        parser.error("--destination is required unless --show is given")

    manager = WalletManager(settings)
    chain = create_chain_client(settings)
    try:
        wallet = await load_wallet(manager, args)
        logger.info(f"Loaded wallet {wallet.address}")

        if args.show:
            await show_balances(chain, wallet)
            return 0

        result = await AssetForwarder(chain, settings).sweep_all(wallet, args.destination)
        print(json.dumps({"transfers": result.transfers, "errors": result.errors}, indent=2))

        if result.success and args.destroy:
            await manager.destroy_wallet(wallet.address, reason="manual sweep")
        return 0 if result.success else 1

    except RelayError as e:
        logger.error(f"{e.code}: {e.message}")
        return 2

    finally:
        await manager.close()
        await chain.close()
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
