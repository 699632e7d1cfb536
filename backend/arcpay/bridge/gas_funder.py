"""
Native gas top-ups for custodial wallets.

A freshly created custodial wallet holds no ETH, yet it pays gas for its own
approve and deposit calls. Before those calls the wallet is topped up from
the backend funder key when its balance is below the minimum.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from eth_account import Account

from ..chain.abi import NATIVE_DECIMALS, to_base_units
from ..chain.transactions import TransactionSender, TxRequest
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Enough for two HIGH-fee contract calls
MIN_GAS_BALANCE = Decimal("0.0005")
FUND_AMOUNT = Decimal("0.002")
TRANSFER_GAS_LIMIT = 21000


class GasFunder:
    def __init__(
        self,
        sender: TransactionSender,
        private_key: Optional[str],
        min_balance: Decimal = MIN_GAS_BALANCE,
        fund_amount: Decimal = FUND_AMOUNT,
    ) -> None:
        self.sender = sender
        self.private_key = self._normalize_key(private_key)
        self.min_balance_wei = to_base_units(min_balance, NATIVE_DECIMALS)
        self.fund_amount_wei = to_base_units(fund_amount, NATIVE_DECIMALS)

    @staticmethod
    def _normalize_key(private_key: Optional[str]) -> Optional[str]:
        if not private_key or not private_key.strip():
            return None
        key = private_key.strip()
        return key if key.startswith("0x") else f"0x{key}"

    @property
    def funder_address(self) -> Optional[str]:
        if not self.private_key:
            return None
        return Account.from_key(self.private_key).address

    async def ensure_gas(self, chain_key: str, address: str) -> Optional[str]:
        """
        Top up `address` on `chain_key` if it is below the minimum balance.

        Returns:
            Funding tx hash, or None when no top-up was needed

        Raises:
            ConfigurationError: If a top-up is needed but no funder key is set
        """
        balance = await self.sender.native_balance(chain_key, address)
        if balance >= self.min_balance_wei:
            return None

        if not self.private_key:
            raise ConfigurationError(
                f"Custodial wallet {address} on {chain_key} has no gas. "
                f"Set BACKEND_GAS_FUNDER_PRIVATE_KEY to auto-fund it."
            )

        logger.info(
            f"Funding custodial wallet {address} on {chain_key} with {self.fund_amount_wei} wei "
            f"(balance {balance} wei)"
        )
        result = await self.sender.send(
            chain_key,
            TxRequest(to=address, value=self.fund_amount_wei, gas=TRANSFER_GAS_LIMIT),
            self.private_key,
        )
        return result.tx_hash
