"""
Minimal ABIs and unit conversion helpers for the contracts arcpay touches.
"""

from decimal import ROUND_DOWN, ROUND_UP, Decimal
from typing import Dict, List

from web3 import Web3

USDC_DECIMALS = 6
NATIVE_DECIMALS = 18

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# --- Minimal ABIs -----------------------------------------------------------------

ERC20_ABI: List[Dict] = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


UNISWAP_V2_ROUTER_ABI: List[Dict] = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
        ],
        "name": "getAmountsOut",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"},
        ],
        "name": "swapExactETHForTokens",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "payable",
        "type": "function",
    },
]


GATEWAY_WALLET_ABI: List[Dict] = [
    {
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "deposit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        # token first, depositor second
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "depositor", "type": "address"},
        ],
        "name": "availableBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


GATEWAY_MINTER_ABI: List[Dict] = [
    {
        "inputs": [
            {"name": "attestationPayload", "type": "bytes"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "gatewayMint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


PAYMENT_ROUTER_ABI: List[Dict] = [
    {
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "grossAmount", "type": "uint256"},
            {"name": "paymentRef", "type": "bytes32"},
        ],
        "name": "pay",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "recipients", "type": "address[]"},
            {"name": "bps", "type": "uint256[]"},
            {"name": "grossAmount", "type": "uint256"},
            {"name": "paymentRef", "type": "bytes32"},
        ],
        "name": "splitPay",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


# --- Unit helpers -------------------------------------------------------------------


def to_base_units(amount: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> int:
    """Convert a human amount (e.g. Decimal("1.5")) to integer base units."""
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=rounding)
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units to an exact Decimal amount."""
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def usdc_to_units(amount: Decimal) -> int:
    return to_base_units(amount, USDC_DECIMALS)


def units_to_usdc(raw: int) -> Decimal:
    return from_base_units(raw, USDC_DECIMALS)


def quantize_usdc(amount: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """Round to USDC precision (6 decimals)."""
    return Decimal(amount).quantize(Decimal(1).scaleb(-USDC_DECIMALS), rounding=rounding)


def quantize_native(amount: Decimal, rounding: str = ROUND_UP) -> Decimal:
    """Round to native-token precision (18 decimals)."""
    return Decimal(amount).quantize(Decimal(1).scaleb(-NATIVE_DECIMALS), rounding=rounding)


def address_to_bytes32(address: str) -> str:
    """Left-pad a 20-byte address into a 0x-prefixed 32-byte hex string."""
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def encode_call(abi: List[Dict], fn_name: str, args: list) -> str:
    """ABI-encode a function call (selector + arguments) as 0x-prefixed hex."""
    contract = Web3().eth.contract(abi=abi)
    return contract.encode_abi(fn_name, args=args)
