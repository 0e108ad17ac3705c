"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from solders.keypair import Keypair
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["DRY_RUN"] = "true"
os.environ["TOKEN_SECRET"] = "test-token-secret"

from solrelay.chain.simulated import SimulatedChainClient
from solrelay.config import Settings
from solrelay.ledger.models import Base
from solrelay.ledger.repository import WalletRepository
from solrelay.routing.dry_run import DryRunAggregator
from solrelay.services.relay import RelayOrchestrator
from solrelay.utils.locks import clear_wallet_locks
from solrelay.wallets.manager import WalletManager

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def make_settings(**overrides) -> Settings:
    """Settings with timings short enough for tests."""
    values = {
        "dry_run": True,
        "token_secret": "test-token-secret",
        "deposit_poll_interval": 0.01,
        "deposit_timeout_seconds": 0.5,
        "confirm_timeout_seconds": 2.0,
        "confirm_deadline_seconds": 10.0,
        "backoff_base_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def reset_locks():
    """Clear wallet locks before each test."""
    clear_wallet_locks()
    yield
    clear_wallet_locks()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def destination() -> str:
    """A fresh destination wallet address."""
    return str(Keypair().pubkey())


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def wallet_repo(db_session: AsyncSession) -> WalletRepository:
    return WalletRepository(db_session)


@pytest.fixture
def chain() -> SimulatedChainClient:
    return SimulatedChainClient()


@pytest.fixture
def aggregator() -> DryRunAggregator:
    return DryRunAggregator()


@pytest_asyncio.fixture
async def wallet_manager(settings, session_factory) -> AsyncGenerator[WalletManager, None]:
    manager = WalletManager(settings, session_factory=session_factory)
    yield manager
    await manager.close()


@pytest.fixture
def relay(chain, aggregator, wallet_manager, settings) -> RelayOrchestrator:
    return RelayOrchestrator(
        chain=chain,
        aggregator=aggregator,
        wallets=wallet_manager,
        settings=settings,
        lock_timeout=0.05,
    )
