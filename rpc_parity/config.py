"""
Configuration settings for the RPC parity monitor.

Uses Pydantic Settings to load environment variables for backend endpoints,
sampling cadence, re-verification timing, record stream locations, and logging.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WATCH_ADDRESSES = (
    "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
    "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",  # USDC
    "0xdAC17F958D2ee523a2206206994597C13D831ec7",  # USDT
)


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    # Backends
    primary_rpc_url: str = Field("http://localhost:8545", alias="PRIMARY_RPC_URL")
    reference_rpc_url: str = Field("https://eth.llamarpc.com", alias="REFERENCE_RPC_URL")
    rpc_timeout_seconds: float = Field(10.0, alias="RPC_TIMEOUT_SECONDS")
    rpc_retry_attempts: int = Field(2, alias="RPC_RETRY_ATTEMPTS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Sampling
    sample_interval_seconds: float = Field(0.5, alias="SAMPLE_INTERVAL_SECONDS")
    error_backoff_seconds: float = Field(5.0, alias="ERROR_BACKOFF_SECONDS")
    memory_sample_every: int = Field(1, alias="MEMORY_SAMPLE_EVERY")
    checks: str = Field("balance,call,logs,batch", alias="CHECKS")
    watch_addresses: str = Field(",".join(DEFAULT_WATCH_ADDRESSES), alias="WATCH_ADDRESSES")
    batch_size: int = Field(10, alias="BATCH_SIZE")
    logs_strict: bool = Field(False, alias="LOGS_STRICT")

    # Re-verification
    recovery_delay_seconds: float = Field(5.0, alias="RECOVERY_DELAY_SECONDS")
    recovery_max_in_flight: int = Field(256, alias="RECOVERY_MAX_IN_FLIGHT")
    drain_on_stop: bool = Field(True, alias="DRAIN_ON_STOP")

    # Output
    data_file: Path = Field(Path("results/parity-data.ndjson"), alias="DATA_FILE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def check_names(self) -> List[str]:
        return _split_csv(self.checks)

    @property
    def watch_address_list(self) -> List[str]:
        return _split_csv(self.watch_addresses)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["DEFAULT_WATCH_ADDRESSES", "Settings", "get_settings"]
