"""
Notary Configuration
Environment-driven settings for the API, database and ledger networks.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class NetworkConfig:
    """Endpoints and identifiers for one ledger network."""
    name: str
    horizon_url: str
    network_passphrase: str
    friendbot_url: Optional[str] = None


class Settings(BaseSettings):
    """
    Application settings.

    Every field can be overridden by the upper-case environment variable of
    the same name (e.g. STELLAR_BASE_FEE=200) or a .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Notary"
    app_version: str = "1.0.0"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    # Storage / security
    database_url: str = "sqlite+aiosqlite:///./notary.db"
    secret_key: str = "change-me-in-production"
    request_timeout: float = 30.0
    rate_limit_enabled: bool = True

    # Workflow
    risk_rejection_threshold: float = 70.0

    # Ledger networks
    stellar_default_network: str = "testnet"
    stellar_testnet_horizon_url: str = "https://horizon-testnet.stellar.org"
    stellar_testnet_network_passphrase: str = "Test SDF Network ; September 2015"
    stellar_testnet_friendbot_url: str = "https://friendbot.stellar.org"
    stellar_mainnet_horizon_url: str = "https://horizon.stellar.org"
    stellar_mainnet_network_passphrase: str = "Public Global Stellar Network ; September 2015"

    # Fees (stroops per operation)
    stellar_base_fee: int = 100
    stellar_max_fee: int = 1000

    # Timing (seconds)
    stellar_transaction_timeout: float = 30.0
    stellar_polling_interval: float = 5.0
    stellar_confirmation_timeout: float = 120.0

    # Retries for idempotent ledger reads
    stellar_retry_attempts: int = 3
    stellar_retry_delay: float = 1.0

    @field_validator("stellar_default_network")
    @classmethod
    def _known_network(cls, value: str) -> str:
        value = value.lower()
        if value not in ("testnet", "mainnet"):
            raise ValueError("stellar_default_network must be 'testnet' or 'mainnet'")
        return value

    @field_validator(
        "request_timeout",
        "stellar_transaction_timeout",
        "stellar_polling_interval",
        "stellar_confirmation_timeout",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("stellar_retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @model_validator(mode="after")
    def _fee_bounds(self) -> "Settings":
        if self.stellar_base_fee <= 0:
            raise ValueError("stellar_base_fee must be positive")
        if self.stellar_base_fee > self.stellar_max_fee:
            raise ValueError("stellar_base_fee must not exceed stellar_max_fee")
        return self

    def network_config(self, network: str) -> NetworkConfig:
        """Get the endpoint bundle for a network name."""
        if network == "testnet":
            return NetworkConfig(
                name="testnet",
                horizon_url=self.stellar_testnet_horizon_url,
                network_passphrase=self.stellar_testnet_network_passphrase,
                friendbot_url=self.stellar_testnet_friendbot_url,
            )
        if network == "mainnet":
            return NetworkConfig(
                name="mainnet",
                horizon_url=self.stellar_mainnet_horizon_url,
                network_passphrase=self.stellar_mainnet_network_passphrase,
            )
        raise ValueError(f"Unknown network: {network}")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings accessor.

    Usage:
        @router.get("/info")
        async def info(settings: Settings = Depends(get_settings)):
            return {"version": settings.app_version}
    """
    return Settings()
