"""
Swap provider contract.

A swap provider converts a source-chain asset (the native gas token) into
USDC. Exactly one implementation is active per deployment; it is chosen once
by `create_swap_provider` so every plan in a process uses the same fee and
slippage model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from ..config.networks import ChainConfig, NetworkConfig
from ..errors import SwapProviderError

USDC_SYMBOL = "USDC"


@dataclass
class SwapQuote:
    """Side-effect free swap estimate (amounts in human units)."""

    expected_output: Decimal  # USDC out, already net of the pool/aggregator fee
    fee: Decimal  # USDC value of the swap fee
    price_impact: Optional[Decimal] = None  # percent

    def to_dict(self) -> Dict:
        return {
            "expectedOutput": str(self.expected_output),
            "fee": str(self.fee),
            "priceImpact": str(self.price_impact) if self.price_impact is not None else None,
        }


@dataclass
class SwapTransaction:
    """Unsigned swap transaction descriptor."""

    to: str
    data: str
    value: int  # wei
    gas_estimate: int
    min_output: Optional[Decimal] = None
    deadline: Optional[int] = None


class SwapProvider(ABC):
    """Quote and build native -> USDC swaps on a source chain."""

    name: str = "abstract"

    def __init__(self, network: NetworkConfig) -> None:
        self.network = network

    def _chain(self, chain_id: int) -> ChainConfig:
        return self.network.source_chain_by_id(chain_id)

    def _check_pair(self, chain: ChainConfig, from_asset: str, to_asset: str) -> None:
        if to_asset.upper() != USDC_SYMBOL:
            raise SwapProviderError(f"{self.name} only swaps into USDC, got {to_asset}")
        if from_asset.upper() != chain.native_symbol.upper():
            raise SwapProviderError(
                f"{self.name} only swaps {chain.native_symbol} on {chain.key}, got {from_asset}"
            )

    @abstractmethod
    async def quote(self, from_asset: str, to_asset: str, amount: Decimal, chain_id: int) -> SwapQuote:
        """Estimate the USDC output for swapping `amount` of `from_asset`."""

    @abstractmethod
    async def build_transaction(
        self,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        recipient: str,
        chain_id: int,
    ) -> SwapTransaction:
        """Build an unsigned swap with a minimum-output floor and a deadline."""

    async def close(self) -> None:
        """Release network resources held by the provider."""
        return None
