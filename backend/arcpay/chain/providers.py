"""
Per-chain RPC provider pool with failover.

This module provides:
- One AsyncWeb3 instance per configured chain, created lazily
- An ordered list of RPC endpoints per chain with health tracking
- Failover to the next endpoint when a call fails or the chain id is wrong
- Re-checking failed endpoints after a cool-down interval
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3

from ..config.networks import NetworkConfig
from ..errors import RPCProviderError, UnknownChainError

logger = logging.getLogger(__name__)

# Default timeout for RPC calls
DEFAULT_RPC_TIMEOUT = 10  # seconds

# How long a failed endpoint is skipped before it is tried again
DEFAULT_RECHECK_INTERVAL = 60  # seconds


class ChainProvider:
    """
    Manages the RPC endpoints of a single chain.

    Features:
    - Lazy connection with chain id verification
    - Failover on errors
    - Failure bookkeeping per endpoint
    """

    def __init__(
        self,
        chain_key: str,
        chain_id: int,
        rpc_urls: Iterable[str],
        timeout: int = DEFAULT_RPC_TIMEOUT,
        recheck_interval: int = DEFAULT_RECHECK_INTERVAL,
    ) -> None:
        self.chain_key = chain_key
        self.chain_id = chain_id
        self.rpc_urls: List[str] = [url for url in rpc_urls if url]
        if not self.rpc_urls:
            raise RPCProviderError(f"No RPC URLs configured for chain {chain_key}")

        self.timeout = timeout
        self.recheck_interval = recheck_interval

        self._endpoint_status: Dict[str, dict] = {
            url: {"healthy": True, "last_check": 0.0, "failure_count": 0, "last_error": None}
            for url in self.rpc_urls
        }
        self._current_url: Optional[str] = None
        self._web3: Optional[AsyncWeb3] = None

    @property
    def current_url(self) -> Optional[str]:
        return self._current_url

    def _is_candidate(self, url: str) -> bool:
        status = self._endpoint_status[url]
        if status["healthy"]:
            return True
        return time.time() - status["last_check"] >= self.recheck_interval

    def _record_failure(self, url: str, error: str) -> None:
        status = self._endpoint_status[url]
        status["healthy"] = False
        status["last_check"] = time.time()
        status["failure_count"] += 1
        status["last_error"] = error

    def _record_success(self, url: str) -> None:
        status = self._endpoint_status[url]
        status["healthy"] = True
        status["last_check"] = time.time()
        status["failure_count"] = 0
        status["last_error"] = None

    def _build_web3(self, url: str) -> AsyncWeb3:
        return AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": self.timeout}))

    async def get_web3(self, force_refresh: bool = False) -> AsyncWeb3:
        """
        Return an AsyncWeb3 instance bound to a healthy endpoint.

        Raises:
            RPCProviderError: If no endpoint answers with the expected chain id
        """
        if self._web3 is not None and not force_refresh:
            return self._web3

        for url in self.rpc_urls:
            if not self._is_candidate(url):
                continue
            w3 = self._build_web3(url)
            try:
                chain_id = await w3.eth.chain_id
            except Exception as e:
                self._record_failure(url, str(e))
                logger.warning(f"RPC {url} ({self.chain_key}) health check failed: {e}")
                continue

            if chain_id != self.chain_id:
                self._record_failure(url, f"wrong chain_id {chain_id}")
                logger.warning(
                    f"RPC {url} returned wrong chain_id={chain_id} (expected {self.chain_id})"
                )
                continue

            self._record_success(url)
            self._current_url = url
            self._web3 = w3
            logger.info(f"Connected to RPC: {url} (chain={self.chain_key}, chain_id={chain_id})")
            return w3

        raise RPCProviderError(
            f"No healthy RPC endpoints for {self.chain_key}. Last errors: "
            f"{[(url, self._endpoint_status[url]['last_error']) for url in self.rpc_urls]}"
        )

    def mark_failed(self, error: str) -> None:
        """Mark the active endpoint as failed so the next call fails over."""
        if self._current_url is not None:
            self._record_failure(self._current_url, error)
            logger.warning(f"RPC {self._current_url} ({self.chain_key}) marked unhealthy: {error}")
        self._web3 = None
        self._current_url = None

    def get_status(self) -> Dict[str, dict]:
        return {url: dict(status) for url, status in self._endpoint_status.items()}


class ProviderManager:
    """Chain key -> ChainProvider for every source chain and the settlement chain."""

    def __init__(self, providers: Dict[str, ChainProvider]) -> None:
        self._providers = providers

    async def web3(self, chain_key: str) -> AsyncWeb3:
        return await self.provider(chain_key).get_web3()

    def provider(self, chain_key: str) -> ChainProvider:
        try:
            return self._providers[chain_key]
        except KeyError:
            raise UnknownChainError(f"No RPC provider configured for chain: {chain_key}") from None

    def mark_failed(self, chain_key: str, error: str) -> None:
        self.provider(chain_key).mark_failed(error)

    def chain_id(self, chain_key: str) -> int:
        return self.provider(chain_key).chain_id

    def get_status(self) -> Dict[str, Dict[str, dict]]:
        return {key: provider.get_status() for key, provider in self._providers.items()}


def create_provider_manager(
    network: NetworkConfig,
    overrides: Optional[Dict[str, str]] = None,
    timeout: int = DEFAULT_RPC_TIMEOUT,
) -> ProviderManager:
    """
    Build a ProviderManager for every chain of a network.

    Args:
        network: Network table (source chains + settlement chain)
        overrides: chain key -> RPC URL tried before the public endpoints
        timeout: Per-request timeout in seconds

    Returns:
        ProviderManager with one ChainProvider per chain that has an endpoint
    """
    overrides = overrides or {}
    providers: Dict[str, ChainProvider] = {}

    chains = [(c.key, c.chain_id, c.rpc_urls) for c in network.source_chains]
    chains.append((network.destination.key, network.destination.chain_id, network.destination.rpc_urls))

    for key, chain_id, rpc_urls in chains:
        urls = [overrides[key]] if key in overrides else []
        urls.extend(url for url in rpc_urls if url not in urls)
        if not urls:
            logger.warning(f"No RPC endpoint for chain {key}; it will be unavailable")
            continue
        providers[key] = ChainProvider(key, chain_id, urls, timeout=timeout)

    return ProviderManager(providers)
