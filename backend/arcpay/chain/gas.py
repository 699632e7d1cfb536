"""
EIP-1559 gas strategy shared by every chain arcpay sends transactions on.

This module provides:
- Base fee lookup from the latest block (fee history as a fallback)
- Priority fee (tip) estimation with sane bounds
- maxFeePerGas computation with a safety multiplier
- Legacy gasPrice fallback for chains without a base fee
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from web3 import AsyncWeb3
from web3.types import Wei

logger = logging.getLogger(__name__)

# Default gas limit if estimation fails
DEFAULT_GAS_LIMIT = 300000

# Buffer applied on top of eth_estimateGas
GAS_LIMIT_BUFFER = 1.2

# Safety multiplier for base fee (tx stays valid if base fee rises)
BASE_FEE_MULTIPLIER = 2.0

# Default priority fee (tip) in gwei
DEFAULT_PRIORITY_FEE_GWEI = 0.1

MIN_PRIORITY_FEE_GWEI = 0.001

# Safety cap
MAX_PRIORITY_FEE_GWEI = 10.0


@dataclass
class GasParams:
    """Gas parameters for a transaction."""

    gas_limit: int
    max_fee_per_gas: Optional[Wei] = None  # baseFee * multiplier + priorityFee
    max_priority_fee_per_gas: Optional[Wei] = None  # tip
    gas_price: Optional[Wei] = None  # legacy chains only

    def to_tx_fields(self) -> Dict[str, int]:
        fields: Dict[str, int] = {"gas": self.gas_limit}
        if self.max_fee_per_gas is not None:
            fields["maxFeePerGas"] = int(self.max_fee_per_gas)
            fields["maxPriorityFeePerGas"] = int(self.max_priority_fee_per_gas or 0)
        else:
            fields["gasPrice"] = int(self.gas_price or 0)
        return fields


class GasStrategyError(Exception):
    """Base exception for gas strategy errors."""

    pass


class GasStrategy:
    """
    EIP-1559 gas strategy.

    Calculates gas prices from:
    - Current base fee of the latest block
    - Priority fee (tip) for timely inclusion
    - Safety multipliers to absorb base fee spikes
    """

    def __init__(
        self,
        base_fee_multiplier: float = BASE_FEE_MULTIPLIER,
        default_priority_fee_gwei: float = DEFAULT_PRIORITY_FEE_GWEI,
    ) -> None:
        self.base_fee_multiplier = base_fee_multiplier
        self.default_priority_fee_gwei = default_priority_fee_gwei

    async def get_base_fee(self, w3: AsyncWeb3) -> Optional[Wei]:
        """
        Get the current base fee, or None if the chain has no EIP-1559 support.

        Raises:
            GasStrategyError: If the latest block cannot be read
        """
        try:
            block = await w3.eth.get_block("latest")
        except Exception as e:
            raise GasStrategyError(f"Failed to get latest block: {e}") from e

        base_fee = block.get("baseFeePerGas")
        if base_fee is not None:
            return Wei(int(base_fee))

        try:
            fee_history = await w3.eth.fee_history(1, "latest", [])
            base_fees = fee_history.get("baseFeePerGas") or []
            if base_fees:
                return Wei(int(base_fees[-1]))
        except Exception as e:
            logger.debug(f"Fee history API not available: {e}")

        return None

    async def get_priority_fee(self, w3: AsyncWeb3) -> Wei:
        """Get the tip from the node, bounded; falls back to the default."""
        default_priority_wei = Wei(w3.to_wei(self.default_priority_fee_gwei, "gwei"))
        try:
            max_priority_fee = await w3.eth.max_priority_fee
        except Exception as e:
            logger.debug(f"Could not get maxPriorityFeePerGas, using default: {e}")
            return default_priority_wei

        if max_priority_fee:
            gwei = w3.from_wei(max_priority_fee, "gwei")
            if MIN_PRIORITY_FEE_GWEI <= gwei <= MAX_PRIORITY_FEE_GWEI:
                return Wei(int(max_priority_fee))
        return default_priority_wei

    async def calculate_gas_params(self, w3: AsyncWeb3, gas_limit: Optional[int] = None) -> GasParams:
        """
        Calculate gas parameters for a transaction.

        Formula:
            maxFeePerGas = (baseFee * multiplier) + priorityFee
            maxPriorityFeePerGas = priorityFee
        """
        gas_limit = gas_limit or DEFAULT_GAS_LIMIT
        base_fee = await self.get_base_fee(w3)

        if base_fee is None:
            gas_price = await w3.eth.gas_price
            logger.debug(f"No base fee available, using legacy gasPrice={gas_price}")
            return GasParams(gas_limit=gas_limit, gas_price=Wei(int(gas_price)))

        priority_fee = await self.get_priority_fee(w3)
        max_fee_per_gas = Wei(int(base_fee * self.base_fee_multiplier) + priority_fee)

        logger.debug(
            f"Gas params: baseFee={base_fee} wei, priorityFee={priority_fee} wei, "
            f"maxFeePerGas={max_fee_per_gas} wei, gasLimit={gas_limit}"
        )
        return GasParams(
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=priority_fee,
        )

    async def estimate_gas_limit(self, w3: AsyncWeb3, tx: Dict, fallback: int = DEFAULT_GAS_LIMIT) -> int:
        """eth_estimateGas with a 20% buffer; falls back when estimation fails."""
        try:
            estimated = await w3.eth.estimate_gas(tx)
            return int(estimated * GAS_LIMIT_BUFFER)
        except Exception as e:
            logger.warning(f"Gas estimation failed: {e}. Using gas limit {fallback}.")
            return fallback
