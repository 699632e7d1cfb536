"""
Swap providers - quote and build native -> USDC swaps.

Exactly one provider is active per process; `create_swap_provider` picks it
from the network configuration.
"""

from typing import Optional

import httpx

from ..chain.providers import ProviderManager
from ..config.networks import SWAP_PROVIDER_ONE_INCH, SWAP_PROVIDER_UNISWAP_V2, NetworkConfig
from ..config.settings import Settings
from ..errors import ConfigurationError
from .base import SwapProvider, SwapQuote, SwapTransaction
from .one_inch import OneInchProvider
from .uniswap_v2 import UniswapV2Provider


def create_swap_provider(
    network: NetworkConfig,
    providers: ProviderManager,
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SwapProvider:
    """
    Factory function returning the swap provider the network is configured for.

    Raises:
        ConfigurationError: If the network names an unknown provider
    """
    if network.swap_provider == SWAP_PROVIDER_UNISWAP_V2:
        return UniswapV2Provider(
            network,
            providers,
            slippage_bps=settings.swap_slippage_bps,
            deadline_seconds=settings.swap_deadline_seconds,
        )
    if network.swap_provider == SWAP_PROVIDER_ONE_INCH:
        return OneInchProvider(
            network,
            api_key=settings.oneinch_api_key,
            slippage_bps=settings.swap_slippage_bps,
            client=http_client,
        )
    raise ConfigurationError(f"Unknown swap provider: {network.swap_provider}")


__all__ = [
    "SwapProvider",
    "SwapQuote",
    "SwapTransaction",
    "OneInchProvider",
    "UniswapV2Provider",
    "create_swap_provider",
]
