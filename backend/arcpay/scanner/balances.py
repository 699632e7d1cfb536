"""
Balance scanner.

Reads the payer's native gas-token and USDC balances on every configured
source chain in parallel. A chain whose RPC fails is reported with zero
balances and an `error` string instead of failing the whole scan.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from web3 import AsyncWeb3, Web3

from ..chain.abi import ERC20_ABI, NATIVE_DECIMALS, USDC_DECIMALS, from_base_units
from ..chain.providers import ProviderManager
from ..config.networks import ChainConfig, NetworkConfig
from ..errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class ChainBalance:
    """Balances of one address on one source chain."""

    chain: str
    chain_id: int
    native: Decimal
    native_symbol: str
    usdc: Decimal
    has_swap: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "chainId": self.chain_id,
            "native": str(self.native),
            "nativeSymbol": self.native_symbol,
            "usdc": str(self.usdc),
            "hasSwap": self.has_swap,
        }
        if self.error:
            data["error"] = self.error
        return data


BalanceSnapshot = Dict[str, ChainBalance]


def validate_address(address: str) -> str:
    """Return the checksummed address or raise InvalidInputError."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidInputError(f"Invalid address format: {address}")
    return Web3.to_checksum_address(address)


def snapshot_to_dict(snapshot: BalanceSnapshot) -> Dict[str, Dict]:
    return {key: balance.to_dict() for key, balance in snapshot.items()}


class BalanceScanner:
    """Concurrent per-chain balance reads for one address."""

    def __init__(self, network: NetworkConfig, providers: ProviderManager) -> None:
        self.network = network
        self.providers = providers

    async def scan(self, address: str) -> BalanceSnapshot:
        """
        Scan every source chain for `address`.

        Args:
            address: Payer address (any case)

        Returns:
            chain key -> ChainBalance, in configuration order

        Raises:
            InvalidInputError: If the address is malformed
        """
        checksum = validate_address(address)
        results = await asyncio.gather(
            *(self._scan_chain(chain, checksum) for chain in self.network.source_chains)
        )
        return {balance.chain: balance for balance in results}

    async def _scan_chain(self, chain: ChainConfig, address: str) -> ChainBalance:
        try:
            w3 = await self.providers.web3(chain.key)
            usdc = w3.eth.contract(address=AsyncWeb3.to_checksum_address(chain.usdc), abi=ERC20_ABI)
            native_raw, usdc_raw = await asyncio.gather(
                w3.eth.get_balance(address),
                usdc.functions.balanceOf(address).call(),
            )
        except Exception as e:
            logger.warning(f"Balance scan failed on {chain.key} for {address}: {e}")
            return ChainBalance(
                chain=chain.key,
                chain_id=chain.chain_id,
                native=Decimal("0"),
                native_symbol=chain.native_symbol,
                usdc=Decimal("0"),
                has_swap=chain.has_swap,
                error=str(e) or e.__class__.__name__,
            )

        return ChainBalance(
            chain=chain.key,
            chain_id=chain.chain_id,
            native=from_base_units(native_raw, NATIVE_DECIMALS),
            native_symbol=chain.native_symbol,
            usdc=from_base_units(usdc_raw, USDC_DECIMALS),
            has_swap=chain.has_swap,
        )
