"""
1inch aggregator swap provider (mainnet).

Uses the 1inch Swap API v6 `/quote` and `/swap` endpoints to price and build
native -> USDC swaps on any configured source chain.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

import httpx

from ..chain.abi import NATIVE_DECIMALS, USDC_DECIMALS, from_base_units, quantize_usdc, to_base_units
from ..config.networks import NetworkConfig
from ..errors import SwapProviderError
from .base import SwapProvider, SwapQuote, SwapTransaction

logger = logging.getLogger(__name__)

ONEINCH_BASE_URL = "https://api.1inch.dev/swap/v6.0"

# Native token pseudo-address used by 1inch
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeeeEeEeeeeEeEeeeeEe"

# Approximate aggregator fee (0.1%)
AGGREGATOR_FEE = Decimal("0.001")

DEFAULT_SLIPPAGE_BPS = 50
DEFAULT_GAS_ESTIMATE = 300000
DEFAULT_TIMEOUT = 15.0


class OneInchProvider(SwapProvider):
    """Aggregator-API provider backed by 1inch."""

    name = "one_inch"

    def __init__(
        self,
        network: NetworkConfig,
        api_key: str,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        base_url: str = ONEINCH_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(network)
        if not api_key:
            logger.warning("ONEINCH_API_KEY not set; 1inch swap quotes will fail")
        self.api_key = api_key
        self.slippage_bps = slippage_bps
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    async def _get(self, chain_id: int, endpoint: str, params: Dict) -> Dict:
        url = f"{self.base_url}/{chain_id}/{endpoint}"
        try:
            response = await self._get_client().get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise SwapProviderError(f"1inch {endpoint} request failed: {e}") from e

        if response.status_code != 200:
            raise SwapProviderError(
                f"1inch {endpoint} returned HTTP {response.status_code}: {response.text[:300]}"
            )
        return response.json()

    async def quote(self, from_asset: str, to_asset: str, amount: Decimal, chain_id: int) -> SwapQuote:
        chain = self._chain(chain_id)
        self._check_pair(chain, from_asset, to_asset)

        data = await self._get(
            chain_id,
            "quote",
            {
                "src": NATIVE_TOKEN_ADDRESS,
                "dst": chain.usdc,
                "amount": str(to_base_units(amount, NATIVE_DECIMALS)),
            },
        )
        try:
            expected = from_base_units(int(data["dstAmount"]), USDC_DECIMALS)
        except (KeyError, TypeError, ValueError) as e:
            raise SwapProviderError(f"Unexpected 1inch quote response: {data}") from e

        return SwapQuote(expected_output=expected, fee=quantize_usdc(expected * AGGREGATOR_FEE))

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

        data = await self._get(
            chain_id,
            "swap",
            {
                "src": NATIVE_TOKEN_ADDRESS,
                "dst": chain.usdc,
                "amount": str(to_base_units(amount, NATIVE_DECIMALS)),
                "from": recipient,
                "receiver": recipient,
                "slippage": str(Decimal(self.slippage_bps) / 100),
                "disableEstimate": "false",
            },
        )
        try:
            tx = data["tx"]
            swap = SwapTransaction(
                to=tx["to"],
                data=tx["data"],
                value=int(tx.get("value") or 0),
                gas_estimate=int(tx.get("gas") or DEFAULT_GAS_ESTIMATE),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SwapProviderError(f"Unexpected 1inch swap response: {data}") from e

        if "dstAmount" in data:
            expected = from_base_units(int(data["dstAmount"]), USDC_DECIMALS)
            swap.min_output = quantize_usdc(expected * (10000 - self.slippage_bps) / 10000)
        logger.info(f"1inch swap built on {chain.key}: to={swap.to}, value={swap.value}")
        return swap

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
