"""
Signed EOA transaction sending.

Builds, signs and broadcasts transactions from a locally held key (the
payer's session key or the backend gas funder) and waits for receipts.
Broadcast and confirmation are separate calls so callers can persist the
transaction hash in between.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3RPCError

from ..errors import FatalStepError, RPCProviderError, TransactionRevertedError
from .abi import ERC20_ABI
from .gas import GasStrategy
from .providers import ProviderManager

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TIMEOUT = 180  # seconds


@dataclass
class TxRequest:
    """Unsigned transaction descriptor."""

    to: str
    data: str = "0x"
    value: int = 0
    gas: Optional[int] = None  # gas limit hint; estimated when None


@dataclass
class TxResult:
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


def _hex(tx_hash) -> str:
    value = tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)
    return value if value.startswith("0x") else f"0x{value}"


class TransactionSender:
    """Sends transactions signed with a local key on any configured chain."""

    def __init__(
        self,
        providers: ProviderManager,
        gas_strategy: Optional[GasStrategy] = None,
        receipt_timeout: int = DEFAULT_RECEIPT_TIMEOUT,
    ) -> None:
        self.providers = providers
        self.gas_strategy = gas_strategy or GasStrategy()
        self.receipt_timeout = receipt_timeout

    async def _web3(self, chain_key: str) -> AsyncWeb3:
        return await self.providers.web3(chain_key)

    async def broadcast(self, chain_key: str, tx: TxRequest, private_key: str) -> str:
        """
        Sign and broadcast a transaction without waiting for it to be mined.

        Returns:
            0x-prefixed transaction hash

        Raises:
            RPCProviderError: Network failure talking to the node (retryable)
            FatalStepError: The node rejected the transaction
        """
        w3 = await self._web3(chain_key)
        account = Account.from_key(private_key)
        sender = account.address

        try:
            nonce = await w3.eth.get_transaction_count(sender, "pending")
            base: Dict = {
                "from": sender,
                "to": AsyncWeb3.to_checksum_address(tx.to),
                "data": tx.data,
                "value": int(tx.value),
                "nonce": nonce,
                "chainId": self.providers.chain_id(chain_key),
            }
            gas_limit = tx.gas or await self.gas_strategy.estimate_gas_limit(w3, base)
            gas_params = await self.gas_strategy.calculate_gas_params(w3, gas_limit)
            base.update(gas_params.to_tx_fields())
        except Web3RPCError as e:
            raise FatalStepError(f"Transaction preparation rejected on {chain_key}: {e}") from e
        except Exception as e:
            self.providers.mark_failed(chain_key, str(e))
            raise RPCProviderError(f"Could not prepare transaction on {chain_key}: {e}") from e

        signed = Account.sign_transaction(base, private_key)
        raw_tx = getattr(signed, "raw_transaction", getattr(signed, "rawTransaction", None))

        try:
            tx_hash = await w3.eth.send_raw_transaction(raw_tx)
        except Web3RPCError as e:
            raise FatalStepError(f"Transaction rejected on {chain_key}: {e}") from e
        except Exception as e:
            self.providers.mark_failed(chain_key, str(e))
            raise RPCProviderError(f"Broadcast failed on {chain_key}: {e}") from e

        tx_hash_hex = _hex(tx_hash)
        logger.info(f"Transaction sent on {chain_key}: {tx_hash_hex} (from={sender}, to={tx.to})")
        return tx_hash_hex

    async def wait_for_receipt(self, chain_key: str, tx_hash: str) -> TxResult:
        """
        Wait until the transaction is mined.

        Raises:
            TransactionRevertedError: Mined with status != 1
            RPCProviderError: Receipt not available within the timeout
        """
        w3 = await self._web3(chain_key)
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except (TimeExhausted, TransactionNotFound, asyncio.TimeoutError) as e:
            raise RPCProviderError(f"No receipt for {tx_hash} on {chain_key} yet: {e}") from e
        except Exception as e:
            self.providers.mark_failed(chain_key, str(e))
            raise RPCProviderError(f"Receipt lookup failed for {tx_hash} on {chain_key}: {e}") from e

        if receipt["status"] != 1:
            raise TransactionRevertedError(
                f"Transaction reverted on {chain_key}; tx_hash={tx_hash}", tx_hash=tx_hash
            )
        return TxResult(
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def send(self, chain_key: str, tx: TxRequest, private_key: str) -> TxResult:
        """Broadcast and wait for a successful receipt."""
        tx_hash = await self.broadcast(chain_key, tx, private_key)
        return await self.wait_for_receipt(chain_key, tx_hash)

    async def native_balance(self, chain_key: str, address: str) -> int:
        w3 = await self._web3(chain_key)
        return int(await w3.eth.get_balance(AsyncWeb3.to_checksum_address(address)))

    async def token_balance(self, chain_key: str, token: str, address: str) -> int:
        w3 = await self._web3(chain_key)
        contract = w3.eth.contract(address=AsyncWeb3.to_checksum_address(token), abi=ERC20_ABI)
        return int(await contract.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call())

    async def transaction_exists(self, chain_key: str, tx_hash: str) -> bool:
        """Whether the node still knows `tx_hash` (mined or pending)."""
        w3 = await self._web3(chain_key)
        try:
            await w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except Exception as e:
            self.providers.mark_failed(chain_key, str(e))
            raise RPCProviderError(f"Transaction lookup failed for {tx_hash} on {chain_key}: {e}") from e
        return True
