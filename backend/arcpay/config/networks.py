"""
Static chain, contract and bridge configuration.

Single source of truth for:
- Source chains a payer can be funded from (in planning order)
- The settlement chain (Arc) where merchants are paid
- Circle Gateway endpoints and contract addresses
- Which swap provider the deployment uses

`NETWORK=mainnet` switches every table at once; nothing else should hardcode
a chain id, token address or API URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..errors import UnknownChainError


# Provider identifiers accepted by NetworkConfig.swap_provider
SWAP_PROVIDER_UNISWAP_V2 = "uniswap_v2"
SWAP_PROVIDER_ONE_INCH = "one_inch"


@dataclass(frozen=True)
class ChainConfig:
    """A source chain the payer may hold funds on."""

    key: str
    name: str
    chain_id: int
    domain: int  # Circle Gateway / CCTP domain id
    rpc_urls: Tuple[str, ...]
    usdc: str
    weth: Optional[str] = None
    router: Optional[str] = None  # UniswapV2-compatible router
    has_swap: bool = False
    native_symbol: str = "ETH"
    circle_blockchain: Optional[str] = None  # Blockchain id used by Circle wallets
    block_explorer: Optional[str] = None


@dataclass(frozen=True)
class SettlementChain:
    """Destination chain; USDC is also its gas token."""

    key: str
    name: str
    chain_id: int
    domain: int
    rpc_urls: Tuple[str, ...]
    usdc: str
    gas_is_usdc: bool = True
    block_explorer: Optional[str] = None


@dataclass(frozen=True)
class GatewayConfig:
    """Circle Gateway API and contracts (same address on every chain)."""

    api_url: str
    wallet_contract: Optional[str]
    minter_contract: Optional[str]


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    source_chains: Tuple[ChainConfig, ...]
    destination: SettlementChain
    gateway: GatewayConfig
    swap_provider: str

    def source_chain(self, key: str) -> ChainConfig:
        """Return a source chain by key, raising UnknownChainError if absent."""
        for chain in self.source_chains:
            if chain.key == key:
                return chain
        raise UnknownChainError(f"Unknown source chain: {key}")

    def source_chain_by_id(self, chain_id: int) -> ChainConfig:
        for chain in self.source_chains:
            if chain.chain_id == chain_id:
                return chain
        raise UnknownChainError(f"No source chain with chainId: {chain_id}")

    @property
    def chain_keys(self) -> List[str]:
        return [chain.key for chain in self.source_chains]


# --- Testnet -------------------------------------------------------------------

TESTNET = NetworkConfig(
    name="testnet",
    source_chains=(
        ChainConfig(
            key="ethereum-sepolia",
            name="Ethereum Sepolia",
            chain_id=11155111,
            domain=0,
            rpc_urls=(
                "https://ethereum-sepolia-rpc.publicnode.com",
                "https://rpc.sepolia.org",
            ),
            usdc="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
            weth="0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9",
            router="0xC532a74256D3Db42D0Bf7a0400fEFDbad7694008",
            has_swap=True,
            circle_blockchain="ETH-SEPOLIA",
            block_explorer="https://sepolia.etherscan.io",
        ),
        ChainConfig(
            key="base-sepolia",
            name="Base Sepolia",
            chain_id=84532,
            domain=6,
            rpc_urls=(
                "https://sepolia.base.org",
                "https://base-sepolia-rpc.publicnode.com",
            ),
            usdc="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            has_swap=False,  # No liquid router on Base Sepolia
            circle_blockchain="BASE-SEPOLIA",
            block_explorer="https://sepolia-explorer.base.org",
        ),
    ),
    destination=SettlementChain(
        key="arc-testnet",
        name="Arc Testnet",
        chain_id=5042002,
        domain=26,
        rpc_urls=("https://rpc.testnet.arc.network",),
        usdc="0x3600000000000000000000000000000000000000",
        block_explorer="https://testnet.arcscan.app",
    ),
    gateway=GatewayConfig(
        api_url="https://gateway-api-testnet.circle.com",
        wallet_contract="0x0077777d7EBA4688BDeF3E311b846F25870A19B9",
        minter_contract="0x0022222ABE238Cc2C7Bb1f21003F0a260052475B",
    ),
    swap_provider=SWAP_PROVIDER_UNISWAP_V2,
)


# --- Mainnet -------------------------------------------------------------------

MAINNET = NetworkConfig(
    name="mainnet",
    source_chains=(
        ChainConfig(
            key="ethereum",
            name="Ethereum",
            chain_id=1,
            domain=0,
            rpc_urls=(
                "https://ethereum-rpc.publicnode.com",
                "https://eth.llamarpc.com",
            ),
            usdc="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            weth="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            has_swap=True,  # 1inch handles swaps
            circle_blockchain="ETH",
            block_explorer="https://etherscan.io",
        ),
        ChainConfig(
            key="base",
            name="Base",
            chain_id=8453,
            domain=6,
            rpc_urls=(
                "https://mainnet.base.org",
                "https://base-rpc.publicnode.com",
            ),
            usdc="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            weth="0x4200000000000000000000000000000000000006",
            has_swap=True,
            circle_blockchain="BASE",
            block_explorer="https://basescan.org",
        ),
    ),
    destination=SettlementChain(
        key="arc",
        name="Arc",
        chain_id=5042001,  # placeholder until Arc mainnet is live
        domain=26,
        rpc_urls=(),
        usdc="0x3600000000000000000000000000000000000000",
        block_explorer="https://arcscan.app",
    ),
    gateway=GatewayConfig(
        api_url="https://gateway-api.circle.com",
        wallet_contract=None,  # published with Arc mainnet
        minter_contract=None,
    ),
    swap_provider=SWAP_PROVIDER_ONE_INCH,
)


NETWORKS: Dict[str, NetworkConfig] = {
    TESTNET.name: TESTNET,
    MAINNET.name: MAINNET,
}


def get_network_config(name: str) -> NetworkConfig:
    """Return the network table for `testnet` or `mainnet`."""
    try:
        return NETWORKS[name.lower()]
    except KeyError:
        raise UnknownChainError(f"Unknown network '{name}', expected one of {sorted(NETWORKS)}") from None


def as_dict(network: NetworkConfig) -> Dict[str, object]:
    """Expose the config as a plain dict (for the /config endpoint)."""
    return {
        "network": network.name,
        "swapProvider": network.swap_provider,
        "sourceChains": [
            {
                "key": chain.key,
                "name": chain.name,
                "chainId": chain.chain_id,
                "hasSwap": chain.has_swap,
                "nativeSymbol": chain.native_symbol,
                "usdc": chain.usdc,
            }
            for chain in network.source_chains
        ],
        "destination": {
            "key": network.destination.key,
            "name": network.destination.name,
            "chainId": network.destination.chain_id,
            "usdc": network.destination.usdc,
        },
        "gateway": {
            "apiUrl": network.gateway.api_url,
            "walletContract": network.gateway.wallet_contract,
            "minterContract": network.gateway.minter_contract,
        },
    }
