"""
Runtime settings for the arcpay backend.

Loads and validates environment variables for chain access, the Circle
custodial wallet and Gateway APIs, swap providers, fees and timeouts.
"""

import os
from decimal import Decimal
from typing import Dict, Optional

from pydantic_settings import BaseSettings

from .networks import NetworkConfig, get_network_config


class Settings(BaseSettings):
    """arcpay configuration."""

    # Network toggle: testnet | mainnet
    network: str = os.getenv("NETWORK", "testnet")

    # RPC overrides (fall back to the network table's public endpoints)
    rpc_url_ethereum_sepolia: Optional[str] = os.getenv("RPC_URL_ETHEREUM_SEPOLIA")
    rpc_url_base_sepolia: Optional[str] = os.getenv("RPC_URL_BASE_SEPOLIA")
    rpc_url_ethereum: Optional[str] = os.getenv("RPC_URL_ETHEREUM")
    rpc_url_base: Optional[str] = os.getenv("RPC_URL_BASE")
    rpc_url_arc: Optional[str] = os.getenv("RPC_URL_ARC")
    rpc_timeout_seconds: int = int(os.getenv("RPC_TIMEOUT_SECONDS", "10"))

    # Circle developer-controlled wallets
    circle_api_url: str = os.getenv("CIRCLE_API_URL", "https://api.circle.com")
    circle_api_key: str = os.getenv("CIRCLE_API_KEY", "")
    circle_entity_secret: str = os.getenv("CIRCLE_ENTITY_SECRET", "")
    circle_wallet_set_id: Optional[str] = os.getenv("CIRCLE_WALLET_SET_ID")

    # Swap providers
    oneinch_api_key: str = os.getenv("ONEINCH_API_KEY", "")
    swap_slippage_bps: int = int(os.getenv("SWAP_SLIPPAGE_BPS", "50"))  # 0.5%
    swap_deadline_seconds: int = int(os.getenv("SWAP_DEADLINE_SECONDS", "1200"))  # 20 minutes

    # Settlement chain contracts and keys
    payment_router_address: str = os.getenv("PAYMENT_ROUTER_ADDRESS", "")
    gas_funder_private_key: Optional[str] = os.getenv("BACKEND_GAS_FUNDER_PRIVATE_KEY")
    session_encryption_key: str = os.getenv("SESSION_ENCRYPTION_KEY", "")

    # Signing secrets
    link_secret: str = os.getenv("LINK_SECRET", "")
    webhook_secret: str = os.getenv("WEBHOOK_SECRET", "")
    public_app_url: str = os.getenv("PUBLIC_APP_URL", "http://localhost:5173")

    # Fee model (USDC)
    gateway_bridge_fee: Decimal = Decimal(os.getenv("GATEWAY_BRIDGE_FEE", "0.005"))
    destination_gas_fee: Decimal = Decimal(os.getenv("DESTINATION_GAS_FEE", "0.01"))
    fee_buffer: Decimal = Decimal(os.getenv("FEE_BUFFER", "1.1"))
    native_gas_reserve: Decimal = Decimal(os.getenv("NATIVE_GAS_RESERVE", "0.0005"))

    # Job lifecycle
    confirmation_ttl_seconds: int = int(os.getenv("CONFIRMATION_TTL_SECONDS", "1800"))
    stuck_job_timeout_seconds: int = int(os.getenv("STUCK_JOB_TIMEOUT_SECONDS", "1800"))
    step_max_attempts: int = int(os.getenv("STEP_MAX_ATTEMPTS", "3"))
    step_retry_base_seconds: float = float(os.getenv("STEP_RETRY_BASE_SECONDS", "2"))
    receipt_timeout_seconds: int = int(os.getenv("RECEIPT_TIMEOUT_SECONDS", "180"))
    attestation_poll_interval: float = float(os.getenv("ATTESTATION_POLL_INTERVAL", "2"))
    custody_poll_interval: float = float(os.getenv("CUSTODY_POLL_INTERVAL", "2"))
    custody_timeout_seconds: int = int(os.getenv("CUSTODY_TIMEOUT_SECONDS", "300"))
    attestation_timeout_seconds: int = int(os.getenv("ATTESTATION_TIMEOUT_SECONDS", "1200"))
    session_ttl_hours: int = int(os.getenv("SESSION_TTL_HOURS", str(24 * 30)))

    # Maintenance
    maintenance_interval_seconds: int = int(os.getenv("MAINTENANCE_INTERVAL_SECONDS", "60"))
    maintenance_enabled: bool = os.getenv("MAINTENANCE_ENABLED", "true").lower() == "true"

    # Webhooks
    webhook_timeout_seconds: float = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5"))
    webhook_max_attempts: int = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        """Pydantic config."""
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @property
    def network_config(self) -> NetworkConfig:
        return get_network_config(self.network)

    @property
    def bridge_fee_per_chain(self) -> Decimal:
        """Gateway fee charged once per contributing chain, with buffer."""
        return self.gateway_bridge_fee * self.fee_buffer

    @property
    def destination_gas(self) -> Decimal:
        """Settlement-chain gas charged once per payment, with buffer."""
        return self.destination_gas_fee * self.fee_buffer

    def rpc_overrides(self) -> Dict[str, str]:
        """Map chain key -> RPC URL for every override that is set."""
        candidates = {
            "ethereum-sepolia": self.rpc_url_ethereum_sepolia,
            "base-sepolia": self.rpc_url_base_sepolia,
            "ethereum": self.rpc_url_ethereum,
            "base": self.rpc_url_base,
            "arc-testnet": self.rpc_url_arc,
            "arc": self.rpc_url_arc,
        }
        return {key: url for key, url in candidates.items() if url}

    def validate(self) -> None:
        """Validate required configuration.

        Raises:
            ValueError: If required configuration is missing or invalid
        """
        if self.network.lower() not in ("testnet", "mainnet"):
            raise ValueError(f"NETWORK must be 'testnet' or 'mainnet', got {self.network}")

        if not self.circle_api_key:
            raise ValueError("CIRCLE_API_KEY environment variable is required")

        if not self.circle_entity_secret:
            raise ValueError("CIRCLE_ENTITY_SECRET environment variable is required")

        if not self.payment_router_address.startswith("0x") or len(self.payment_router_address) != 42:
            raise ValueError(
                f"PAYMENT_ROUTER_ADDRESS must be a valid address: {self.payment_router_address!r}"
            )

        if len(self.session_encryption_key) != 64:
            raise ValueError("SESSION_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")

        if self.network_config.swap_provider == "one_inch" and not self.oneinch_api_key:
            raise ValueError("ONEINCH_API_KEY is required when the 1inch swap provider is active")


# Global settings instance
settings = Settings()
