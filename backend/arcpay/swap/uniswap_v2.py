"""
UniswapV2 router swap provider (testnet).

Swaps native ETH -> WETH -> USDC through a UniswapV2-compatible router with
`swapExactETHForTokens`. Quotes come from `getAmountsOut`; the minimum
output is the live quote minus the slippage tolerance.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal

from web3 import AsyncWeb3

from ..chain.abi import (
    NATIVE_DECIMALS,
    UNISWAP_V2_ROUTER_ABI,
    USDC_DECIMALS,
    encode_call,
    from_base_units,
    quantize_usdc,
    to_base_units,
)
from ..chain.providers import ProviderManager
from ..config.networks import ChainConfig, NetworkConfig
from ..errors import SwapProviderError
from .base import SwapProvider, SwapQuote, SwapTransaction

logger = logging.getLogger(__name__)

# UniswapV2 pool fee (0.3% per hop; ETH -> WETH wrapping is free)
POOL_FEE = Decimal("0.003")

DEFAULT_SLIPPAGE_BPS = 50  # 0.5%
DEFAULT_DEADLINE_SECONDS = 1200  # 20 minutes
SWAP_GAS_ESTIMATE = 150000

# Reference trade used to derive the spot rate for price impact
REFERENCE_DIVISOR = 1000


class UniswapV2Provider(SwapProvider):
    """DEX router provider for chains that configure a UniswapV2 router."""

    name = "uniswap_v2"

    def __init__(
        self,
        network: NetworkConfig,
        providers: ProviderManager,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        deadline_seconds: int = DEFAULT_DEADLINE_SECONDS,
    ) -> None:
        super().__init__(network)
        self.providers = providers
        self.slippage_bps = slippage_bps
        self.deadline_seconds = deadline_seconds

    def _path(self, chain: ChainConfig):
        if not chain.router or not chain.weth:
            raise SwapProviderError(f"No UniswapV2 router configured for {chain.key}")
        return [
            AsyncWeb3.to_checksum_address(chain.weth),
            AsyncWeb3.to_checksum_address(chain.usdc),
        ]

    async def _amounts_out(self, chain: ChainConfig, amount_in_wei: int) -> int:
        path = self._path(chain)
        try:
            w3 = await self.providers.web3(chain.key)
            router = w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(chain.router),
                abi=UNISWAP_V2_ROUTER_ABI,
            )
            amounts = await router.functions.getAmountsOut(amount_in_wei, path).call()
        except SwapProviderError:
            raise
        except Exception as e:
            raise SwapProviderError(f"getAmountsOut failed on {chain.key}: {e}") from e
        return int(amounts[-1])

    async def quote(self, from_asset: str, to_asset: str, amount: Decimal, chain_id: int) -> SwapQuote:
        chain = self._chain(chain_id)
        self._check_pair(chain, from_asset, to_asset)

        amount_in = to_base_units(amount, NATIVE_DECIMALS)
        if amount_in <= 0:
            raise SwapProviderError(f"Swap amount must be positive, got {amount}")

        out_raw = await self._amounts_out(chain, amount_in)
        expected = from_base_units(out_raw, USDC_DECIMALS)

        price_impact = None
        reference_in = amount_in // REFERENCE_DIVISOR
        if reference_in > 0:
            reference_out = await self._amounts_out(chain, reference_in)
            if reference_out > 0:
                spot_out = Decimal(reference_out) * Decimal(amount_in) / Decimal(reference_in)
                price_impact = max(
                    Decimal("0"),
                    ((spot_out - Decimal(out_raw)) / spot_out * 100).quantize(Decimal("0.01")),
                )

        return SwapQuote(
            expected_output=expected,
            fee=quantize_usdc(expected * POOL_FEE),
            price_impact=price_impact,
        )

    async def build_transaction(
        self,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        recipient: str,
        chain_id: int,
    ) -> SwapTransaction:
        chain = self._chain(chain_id)
        self._check_pair(chain, from_asset, to_asset)

        amount_in = to_base_units(amount, NATIVE_DECIMALS)
        expected_out = await self._amounts_out(chain, amount_in)
        amount_out_min = expected_out * (10000 - self.slippage_bps) // 10000
        deadline = int(time.time()) + self.deadline_seconds

        data = encode_call(
            UNISWAP_V2_ROUTER_ABI,
            "swapExactETHForTokens",
            [amount_out_min, self._path(chain), AsyncWeb3.to_checksum_address(recipient), deadline],
        )
        logger.info(
            f"UniswapV2 swap on {chain.key}: in={amount_in} wei, expectedOut={expected_out}, "
            f"minOut={amount_out_min}, deadline={deadline}"
        )
        return SwapTransaction(
            to=AsyncWeb3.to_checksum_address(chain.router),
            data=data,
            value=amount_in,
            gas_estimate=SWAP_GAS_ESTIMATE,
            min_output=from_base_units(amount_out_min, USDC_DECIMALS),
            deadline=deadline,
        )
