"""
Configuration - network tables and environment-driven settings.
"""

from .networks import (
    ChainConfig,
    GatewayConfig,
    NetworkConfig,
    SettlementChain,
    MAINNET,
    TESTNET,
    SWAP_PROVIDER_ONE_INCH,
    SWAP_PROVIDER_UNISWAP_V2,
    get_network_config,
)
from .settings import Settings, settings

__all__ = [
    "ChainConfig",
    "GatewayConfig",
    "NetworkConfig",
    "SettlementChain",
    "MAINNET",
    "TESTNET",
    "SWAP_PROVIDER_ONE_INCH",
    "SWAP_PROVIDER_UNISWAP_V2",
    "get_network_config",
    "Settings",
    "settings",
]
