"""
Configuration management for the CKB relayer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Script, script_from_config
from .retry import BackoffRetryPolicy


class Settings(BaseSettings):
    """
    Environment-based settings.

    All settings can be overridden via environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # CKB (source chain)
    ckb_rpc_url: str = Field(default="http://127.0.0.1:8114", description="CKB node JSON-RPC URL")
    ckb_start_height: int = Field(
        default=0, ge=0, description="First CKB height to relay when no cursor is stored"
    )

    # Deposit pattern: lock script of the crosschain cell
    cross_lock_code_hash: str = Field(
        default="0x" + "00" * 32, description="Crosschain lock script code hash"
    )
    cross_lock_hash_type: str = Field(default="type", description="Crosschain lock hash type")
    cross_lock_args: str = Field(default="0x", description="Crosschain lock script args")

    # Muta (destination chain)
    muta_endpoint: str = Field(
        default="http://127.0.0.1:8000/graphql", description="Muta GraphQL endpoint"
    )
    muta_chain_id: str = Field(
        default="0xb6a4d7da21443f5e816e8700eea87610e6d769657d6b8ec73028457bf2ca4036",
        description="Muta chain id (32-byte hex)",
    )
    muta_cycles_limit: int = Field(default=0xFFFFFFFF, description="Cycles limit per transaction")
    muta_cycles_price: int = Field(default=1, description="Cycles price per transaction")
    muta_timeout_gap: int = Field(
        default=20, description="Transaction timeout, in Muta blocks past the current height"
    )
    muta_receipt_timeout_seconds: float = Field(default=60.0)
    muta_receipt_poll_seconds: float = Field(default=1.0)
    handler_service_name: str = Field(default="ckb_handler")

    # Relayer key (signs relay payloads and Muta transactions)
    relayer_private_key: str = ""

    # Database
    database_url: str = "sqlite:///./relayer.db"

    # Loop timing
    rpc_timeout_seconds: float = 30.0
    idle_interval_seconds: float = 1.0
    post_process_interval_seconds: float = 5.0

    # Retry policy
    retry_base_delay_seconds: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay_seconds: float = 60.0
    retry_max_attempts: Optional[int] = Field(
        default=None, description="Consecutive failures at one height before halting (None = never)"
    )

    # Flush headers to update_headers once this many are buffered (0 = manual only)
    header_flush_threshold: int = Field(default=0, ge=0)


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings
    target_lock: Script

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayerConfig":
        target_lock = script_from_config(
            settings.cross_lock_code_hash,
            settings.cross_lock_hash_type,
            settings.cross_lock_args,
        )
        return cls(settings=settings, target_lock=target_lock)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls.from_settings(settings)

    def retry_policy(self) -> BackoffRetryPolicy:
        s = self.settings
        return BackoffRetryPolicy(
            base_delay=s.retry_base_delay_seconds,
            multiplier=s.retry_multiplier,
            max_delay=s.retry_max_delay_seconds,
            max_attempts=s.retry_max_attempts,
        )
