"""Application configuration using pydantic-settings.

All timing, fee and threshold knobs of the relay live here so that the
deposit watcher, swap executor and forwarder never hard-code them.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Native SOL mint address (wrapped SOL), the only accepted input asset
SOL_MINT = "So11111111111111111111111111111111111111112"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/solrelay.db",
        description="Durable wallet store (restart recovery only)",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(
        default=True, description="Use the simulated ledger and aggregator (no real transactions)"
    )

    # ======================
    # Solana / Jupiter
    # ======================
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    rpc_timeout_seconds: float = Field(default=30.0, description="Per-request RPC timeout")
    jupiter_api_url: str = Field(
        default="https://quote-api.jup.ag/v6", description="Jupiter aggregator API"
    )
    jupiter_api_key: str = Field(default="", description="Optional Jupiter API key")
    explorer_base_url: str = Field(
        default="https://solscan.io/tx/", description="Transaction explorer link prefix"
    )

    # ======================
    # Secrets
    # ======================
    master_key: Optional[str] = Field(
        default=None, description="Fernet key encrypting wallet secrets at rest"
    )
    token_secret: str = Field(
        default="change-me-in-production",
        description="Fernet key or passphrase authenticating resumption tokens",
    )

    # ======================
    # Wallet lifecycle
    # ======================
    wallet_ttl_seconds: int = Field(default=3600, description="Ephemeral wallet lifetime")
    stale_wallet_max_age_seconds: int = Field(
        default=86400, description="Startup sweep ceiling for leaked wallets"
    )
    quote_validity_seconds: int = Field(
        default=1800, description="Resumption token validity window"
    )

    # ======================
    # Relay timing
    # ======================
    deposit_timeout_seconds: float = Field(default=300.0, description="Deposit wait ceiling")
    deposit_poll_interval: float = Field(default=5.0, description="Balance poll interval")
    confirm_timeout_seconds: float = Field(
        default=60.0, description="Swap confirmation ceiling"
    )
    confirm_deadline_seconds: float = Field(
        default=600.0, description="End-to-end deadline of one confirm call"
    )
    swap_max_retries: int = Field(default=3, description="Default submission attempts")
    backoff_base_seconds: float = Field(
        default=1.0, description="Retry delay is base * 2**attempt"
    )

    # ======================
    # Fees
    # ======================
    min_priority_fee_lamports: int = Field(default=1_000_000)
    default_priority_fee_lamports: int = Field(default=2_000_000)
    max_priority_fee_lamports: int = Field(default=10_000_000)
    native_fee_reserve_lamports: int = Field(default=10_000)
    protected_fee_reserve_lamports: int = Field(default=20_000)

    # ======================
    # UX thresholds
    # ======================
    warn_amount_lamports: int = Field(default=100_000, description="Very small amount warning")
    recommended_amount_lamports: int = Field(
        default=1_000_000, description="Small amount warning"
    )
    moderate_price_impact_percent: float = Field(default=1.0)
    high_price_impact_percent: float = Field(default=5.0)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def explorer_link(self, signature: Optional[str]) -> Optional[str]:
        """Build an explorer URL for a transaction signature."""
        if not signature:
            return None
        return f"{self.explorer_base_url}{signature}"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "sol_rpc_url": self.sol_rpc_url,
            "jupiter_api_url": self.jupiter_api_url,
            "jupiter_api_key": "***" if self.jupiter_api_key else "(not set)",
            "master_key": "***" if self.master_key else "(not set)",
            "wallet_ttl_seconds": self.wallet_ttl_seconds,
            "quote_validity_seconds": self.quote_validity_seconds,
            "relay": {
                "deposit_timeout_seconds": self.deposit_timeout_seconds,
                "deposit_poll_interval": self.deposit_poll_interval,
                "confirm_timeout_seconds": self.confirm_timeout_seconds,
                "confirm_deadline_seconds": self.confirm_deadline_seconds,
                "swap_max_retries": self.swap_max_retries,
            },
            "fees": {
                "max_priority_fee_lamports": self.max_priority_fee_lamports,
                "native_fee_reserve_lamports": self.native_fee_reserve_lamports,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
