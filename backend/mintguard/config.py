"""Application configuration"""

from dataclasses import dataclass
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass
class RpcEndpointConfig:
    """
    Lightweight description of a Solana JSON-RPC endpoint.
    Used by the endpoint registry to build ranked candidates.
    """

    url: str
    priority: int  # 0 = configured override / first choice
    request_timeout: float = 30.0
    enabled: bool = True


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Solana RPC
    solana_rpc_url: Optional[str] = None  # Override, always tried first
    solana_rpc_urls: List[str] = [
        "https://api.mainnet-beta.solana.com",
        "https://rpc.ankr.com/solana",
        "https://solana.rpc.hyperlane.xyz",
    ]
    solana_rpc_disabled: List[str] = []
    solana_private_key: str = ""  # base58 secret key or JSON byte array
    solana_commitment: str = "confirmed"

    rpc_request_timeout: float = 30.0
    rpc_liveness_timeout: float = 10.0
    rpc_liveness_ttl_seconds: float = 0.0  # 0 = probe on every selection
    rpc_confirm_timeout_seconds: float = 60.0
    rpc_confirm_poll_interval: float = 0.5

    # Transaction status poller
    poll_interval_ms: int = 3000
    poll_max_attempts: int = 60

    # Retry scheduler
    retry_max_attempts: int = 3
    retry_backoff_factor: float = 2.0
    retry_initial_delay_ms: int = 3000
    retry_max_delay_ms: int = 60000

    # Webhook delivery
    webhook_timeout_seconds: float = 5.0
    webhook_workers: int = 4
    webhook_queue_size: int = 1000

    # Metadata accessibility
    metadata_gateways: List[str] = [
        "https://ipfs.io/ipfs/",
        "https://gateway.pinata.cloud/ipfs/",
        "https://cloudflare-ipfs.com/ipfs/",
    ]
    metadata_timeout_seconds: float = 5.0
    metadata_reject_inaccessible: bool = True

    # In-memory monitoring state
    monitoring_retention_seconds: int = 3600

    # Transaction analysis
    transaction_fee_warning_lamports: int = 10000

    # Redis (transaction detail cache)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    cache_ttl_transaction: int = 2592000  # 30 days (transactions are immutable)

    # API
    api_title: str = "MintGuard API"
    api_version: str = "0.1.0"

    # CORS
    cors_origins: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
