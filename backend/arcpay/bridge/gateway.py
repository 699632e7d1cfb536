"""
Circle Gateway bridging client.

Moves USDC from source chains to the settlement chain:

1. The custodial wallet approves and deposits USDC into the GatewayWallet
   contract (Circle contract execution, fee level HIGH).
2. One EIP-712 BurnIntent per source chain is signed by the custodial
   wallet and all intents are submitted in a single `POST /v1/transfer`.
3. The attestation is polled from `GET /v1/transfers/{id}`.
4. `gatewayMint(attestation, signature)` is called on the settlement chain.

The approve call is sent as raw calldata while deposit uses the ABI
signature: Circle only records Gateway deposits in its own registry when it
can parse the `deposit` call, and it rejects ABI-signature approves when its
indexed token balance lags the chain.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
from web3 import AsyncWeb3

from ..chain.abi import (
    ERC20_ABI,
    GATEWAY_MINTER_ABI,
    GATEWAY_WALLET_ABI,
    MAX_UINT256,
    ZERO_ADDRESS,
    address_to_bytes32,
    encode_call,
    units_to_usdc,
    usdc_to_units,
)
from ..chain.providers import ProviderManager
from ..chain.transactions import TxRequest
from ..config.networks import ChainConfig, GatewayConfig, NetworkConfig
from ..custody.circle import CircleWalletsClient
from ..errors import BridgeError, ConfigurationError, TransientStepError
from ..polling import wait_until

logger = logging.getLogger(__name__)

GATEWAY_INFO_TTL = 3600  # 1 hour
DEFAULT_TIMEOUT = 30.0

# 2.01 USDC, the Gateway minimum max fee
BURN_INTENT_MAX_FEE = 2_010_000
BURN_INTENT_MAX_BLOCK_HEIGHT = MAX_UINT256
TRANSFER_SPEC_VERSION = 1

DEPOSIT_SIGNATURE = "deposit(address,uint256)"
MINT_GAS_LIMIT = 400000

BURN_INTENT_DOMAIN = {"name": "GatewayWallet", "version": "1"}

BURN_INTENT_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
    ],
    "BurnIntent": [
        {"name": "maxBlockHeight", "type": "uint256"},
        {"name": "maxFee", "type": "uint256"},
        {"name": "spec", "type": "TransferSpec"},
    ],
    "TransferSpec": [
        {"name": "version", "type": "uint32"},
        {"name": "sourceDomain", "type": "uint32"},
        {"name": "destinationDomain", "type": "uint32"},
        {"name": "sourceContract", "type": "bytes32"},
        {"name": "destinationContract", "type": "bytes32"},
        {"name": "sourceToken", "type": "bytes32"},
        {"name": "destinationToken", "type": "bytes32"},
        {"name": "sourceDepositor", "type": "bytes32"},
        {"name": "destinationRecipient", "type": "bytes32"},
        {"name": "sourceSigner", "type": "bytes32"},
        {"name": "destinationCaller", "type": "bytes32"},
        {"name": "value", "type": "uint256"},
        {"name": "salt", "type": "bytes32"},
        {"name": "hookData", "type": "bytes"},
    ],
}

# Gateway answers 400 with these while its indexer has not seen a deposit yet
INDEXER_LAG_MARKERS = ("Insufficient balance", "not authorized")


@dataclass
class GatewayContracts:
    wallet: str
    minter: str


@dataclass
class Attestation:
    """Bridge transfer state as reported by the Gateway API."""

    transfer_id: str
    status: Optional[str] = None
    attestation: Optional[str] = None
    signature: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return bool(self.attestation and self.signature)


def _uint_fields_to_str(intent: Dict[str, Any]) -> Dict[str, Any]:
    """JSON form of a burn intent: uint256 values as decimal strings."""
    spec = dict(intent["spec"])
    spec["value"] = str(spec["value"])
    return {
        "maxBlockHeight": str(intent["maxBlockHeight"]),
        "maxFee": str(intent["maxFee"]),
        "spec": spec,
    }


def burn_intent_typed_data(intent: Dict[str, Any]) -> Dict[str, Any]:
    """Full EIP-712 payload for a burn intent (JSON serializable)."""
    return {
        "types": BURN_INTENT_TYPES,
        "domain": dict(BURN_INTENT_DOMAIN),
        "primaryType": "BurnIntent",
        "message": _uint_fields_to_str(intent),
    }


class GatewayCache:
    """
    Per-domain Gateway contract addresses from `GET /v1/info`.

    Refreshed after `ttl` seconds; when the info endpoint is unreachable the
    configured addresses are used.
    """

    def __init__(
        self,
        gateway: GatewayConfig,
        client: Optional[httpx.AsyncClient] = None,
        ttl: int = GATEWAY_INFO_TTL,
    ) -> None:
        self.gateway = gateway
        self.ttl = ttl
        self._client = client
        self._owns_client = client is None
        self._domains: Dict[int, GatewayContracts] = {}
        self._fetched_at: Optional[float] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._client

    @property
    def is_stale(self) -> bool:
        return self._fetched_at is None or time.time() - self._fetched_at >= self.ttl

    async def refresh(self) -> None:
        try:
            response = await self._get_client().get(f"{self.gateway.api_url}/v1/info")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Gateway /v1/info fetch failed, using configured contracts: {e}")
            # Back off for a full TTL rather than hammering the endpoint
            self._fetched_at = time.time()
            return

        domains: Dict[int, GatewayContracts] = {}
        for entry in data.get("domains") or []:
            wallet = (entry.get("walletContract") or {}).get("address")
            minter = (entry.get("minterContract") or {}).get("address")
            if entry.get("domain") is None:
                continue
            domains[int(entry["domain"])] = GatewayContracts(
                wallet=wallet or self.gateway.wallet_contract,
                minter=minter or self.gateway.minter_contract,
            )
        self._domains = domains
        self._fetched_at = time.time()
        logger.info(f"Gateway info refreshed: {len(domains)} domains")

    async def contracts(self, domain: int) -> GatewayContracts:
        """
        Raises:
            ConfigurationError: If neither the API nor the config knows the contracts
        """
        if self.is_stale:
            await self.refresh()
        contracts = self._domains.get(domain)
        if contracts and contracts.wallet and contracts.minter:
            return contracts
        if not self.gateway.wallet_contract or not self.gateway.minter_contract:
            raise ConfigurationError(f"No Gateway contracts known for domain {domain}")
        return GatewayContracts(wallet=self.gateway.wallet_contract, minter=self.gateway.minter_contract)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class GatewayClient:
    """Deposit, burn-intent, attestation and mint operations against Circle Gateway."""

    def __init__(
        self,
        network: NetworkConfig,
        custody: CircleWalletsClient,
        providers: Optional[ProviderManager] = None,
        cache: Optional[GatewayCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 2.0,
    ) -> None:
        self.network = network
        self.custody = custody
        self.providers = providers
        self.poll_interval = poll_interval
        self._client = client
        self._owns_client = client is None
        self.cache = cache or GatewayCache(network.gateway, client=client)
        self._attestations: Dict[str, Attestation] = {}

    @property
    def api_url(self) -> str:
        return self.network.gateway.api_url.rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._client

    # --- Deposit -----------------------------------------------------------------------

    async def submit_approve(self, wallet_id: str, chain: ChainConfig, amount: Decimal) -> str:
        """Custodial `approve(gatewayWallet, amount)` on USDC as raw calldata; returns the challenge id."""
        contracts = await self.cache.contracts(chain.domain)
        call_data = encode_call(
            ERC20_ABI,
            "approve",
            [AsyncWeb3.to_checksum_address(contracts.wallet), usdc_to_units(amount)],
        )
        return await self.custody.execute_contract_call(wallet_id, chain.usdc, call_data=call_data)

    async def submit_deposit(self, wallet_id: str, chain: ChainConfig, amount: Decimal) -> str:
        """Custodial `deposit(usdc, amount)` on the GatewayWallet; returns the challenge id."""
        contracts = await self.cache.contracts(chain.domain)
        return await self.custody.execute_contract_call(
            wallet_id,
            contracts.wallet,
            abi_function_signature=DEPOSIT_SIGNATURE,
            abi_parameters=[chain.usdc, usdc_to_units(amount)],
        )

    async def deposit(
        self, wallet_id: str, chain: ChainConfig, amount: Decimal, timeout: Optional[float]
    ) -> Tuple[str, str]:
        """
        Approve and deposit `amount` USDC, waiting for both to confirm.

        Returns:
            (approve tx hash, deposit tx hash)
        """
        approve = await self.custody.wait_for_transaction(
            await self.submit_approve(wallet_id, chain, amount), timeout
        )
        logger.info(f"Gateway approve confirmed on {chain.key}: {approve.tx_hash}")
        deposit = await self.custody.wait_for_transaction(
            await self.submit_deposit(wallet_id, chain, amount), timeout
        )
        logger.info(f"Gateway deposit of {amount} USDC confirmed on {chain.key}: {deposit.tx_hash}")
        return approve.tx_hash, deposit.tx_hash

    async def available_balance(self, chain: ChainConfig, depositor: str) -> Decimal:
        """On-chain `availableBalance(usdc, depositor)` of the GatewayWallet."""
        if self.providers is None:
            raise ConfigurationError("GatewayClient has no RPC providers configured")
        contracts = await self.cache.contracts(chain.domain)
        try:
            w3 = await self.providers.web3(chain.key)
            wallet = w3.eth.contract(address=AsyncWeb3.to_checksum_address(contracts.wallet), abi=GATEWAY_WALLET_ABI)
            raw = await wallet.functions.availableBalance(
                AsyncWeb3.to_checksum_address(chain.usdc),
                AsyncWeb3.to_checksum_address(depositor),
            ).call()
        except ConfigurationError:
            raise
        except Exception as e:
            raise TransientStepError(f"availableBalance lookup failed on {chain.key}: {e}") from e
        return units_to_usdc(raw)

    # --- Burn intents ------------------------------------------------------------------

    async def build_burn_intent(
        self,
        chain: ChainConfig,
        depositor: str,
        recipient: str,
        amount: Decimal,
        salt: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build the BurnIntent message for one source chain.

        `depositor` holds the Gateway balance and signs the intent; `recipient`
        receives the minted USDC on the settlement chain.
        """
        destination = self.network.destination
        source_contracts = await self.cache.contracts(chain.domain)
        destination_contracts = await self.cache.contracts(destination.domain)
        return {
            "maxBlockHeight": BURN_INTENT_MAX_BLOCK_HEIGHT,
            "maxFee": BURN_INTENT_MAX_FEE,
            "spec": {
                "version": TRANSFER_SPEC_VERSION,
                "sourceDomain": chain.domain,
                "destinationDomain": destination.domain,
                "sourceContract": address_to_bytes32(source_contracts.wallet),
                "destinationContract": address_to_bytes32(destination_contracts.minter),
                "sourceToken": address_to_bytes32(chain.usdc),
                "destinationToken": address_to_bytes32(destination.usdc),
                "sourceDepositor": address_to_bytes32(depositor),
                "destinationRecipient": address_to_bytes32(recipient),
                "sourceSigner": address_to_bytes32(depositor),
                "destinationCaller": address_to_bytes32(ZERO_ADDRESS),
                "value": usdc_to_units(amount),
                "salt": salt or "0x" + os.urandom(32).hex(),
                "hookData": "0x",
            },
        }

    async def sign_burn_intent(self, wallet_id: str, intent: Dict[str, Any]) -> str:
        return await self.custody.sign_typed_data(wallet_id, burn_intent_typed_data(intent))

    async def submit_burn_intents(self, signed_intents: List[Tuple[Dict[str, Any], str]]) -> Attestation:
        """
        Submit every signed intent in one `POST /v1/transfer`.

        Raises:
            TransientStepError: Network/5xx errors or the Gateway indexer lagging a deposit
            BridgeError: The transfer was rejected
        """
        payload = [
            {"burnIntent": _uint_fields_to_str(intent), "signature": signature}
            for intent, signature in signed_intents
        ]
        try:
            response = await self._get_client().post(f"{self.api_url}/v1/transfer", json=payload)
        except httpx.HTTPError as e:
            raise TransientStepError(f"Gateway /v1/transfer request failed: {e}") from e

        if response.status_code >= 500:
            raise TransientStepError(f"Gateway /v1/transfer returned HTTP {response.status_code}")
        if response.status_code >= 400:
            text = response.text
            if response.status_code == 400 and any(marker in text for marker in INDEXER_LAG_MARKERS):
                raise TransientStepError(f"Gateway has not indexed the deposit yet: {text[:300]}")
            raise BridgeError(f"Gateway /v1/transfer rejected with HTTP {response.status_code}: {text[:300]}")

        data = response.json()
        result = data[0] if isinstance(data, list) else data
        transfer_id = result.get("transferId")
        if not transfer_id:
            raise BridgeError(f"Gateway /v1/transfer returned no transferId: {result}")

        attestation = Attestation(
            transfer_id=transfer_id,
            status=result.get("status"),
            attestation=result.get("attestation"),
            signature=result.get("signature"),
        )
        if attestation.is_ready:
            self._attestations[transfer_id] = attestation
        logger.info(f"Gateway transfer {transfer_id} submitted with {len(payload)} burn intent(s)")
        return attestation

    # --- Attestation -------------------------------------------------------------------

    async def fetch_attestation(self, transfer_id: str) -> Attestation:
        """
        Raises:
            BridgeError: The Gateway reports the transfer FAILED
        """
        cached = self._attestations.get(transfer_id)
        if cached is not None:
            return cached

        try:
            response = await self._get_client().get(f"{self.api_url}/v1/transfers/{transfer_id}")
        except httpx.HTTPError as e:
            raise TransientStepError(f"Gateway transfer lookup failed: {e}") from e

        if response.status_code == 404:
            return Attestation(transfer_id=transfer_id, status="PENDING")
        if response.status_code >= 400:
            raise TransientStepError(f"Gateway transfer lookup returned HTTP {response.status_code}")

        data = response.json()
        status = data.get("status") or data.get("state")
        if status == "FAILED":
            raise BridgeError(f"Gateway transfer {transfer_id} failed: {data}")

        attestation = Attestation(
            transfer_id=transfer_id,
            status=status,
            attestation=data.get("attestation"),
            signature=data.get("signature"),
        )
        if attestation.is_ready:
            self._attestations[transfer_id] = attestation
        return attestation

    async def wait_for_attestation(self, transfer_id: str, timeout: Optional[float]) -> Attestation:
        attestation = await wait_until(
            lambda: self.fetch_attestation(transfer_id),
            lambda result: result.is_ready,
            timeout=timeout,
            interval=self.poll_interval,
            description=f"Gateway attestation for {transfer_id}",
        )
        logger.info(f"Attestation received for Gateway transfer {transfer_id}")
        return attestation

    # --- Mint --------------------------------------------------------------------------

    async def build_mint_transaction(self, attestation: Attestation) -> TxRequest:
        """`gatewayMint(attestation, signature)` on the settlement chain's minter."""
        if not attestation.is_ready:
            raise BridgeError(f"Attestation for {attestation.transfer_id} is not available yet")
        contracts = await self.cache.contracts(self.network.destination.domain)
        data = encode_call(GATEWAY_MINTER_ABI, "gatewayMint", [attestation.attestation, attestation.signature])
        return TxRequest(to=contracts.minter, data=data, gas=MINT_GAS_LIMIT)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        await self.cache.close()
