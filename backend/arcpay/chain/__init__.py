"""
Chain access - RPC providers, gas strategy, signed transactions and ABIs.
"""

from .gas import GasParams, GasStrategy
from .providers import ChainProvider, ProviderManager, create_provider_manager
from .transactions import TransactionSender, TxRequest, TxResult

__all__ = [
    "GasParams",
    "GasStrategy",
    "ChainProvider",
    "ProviderManager",
    "create_provider_manager",
    "TransactionSender",
    "TxRequest",
    "TxResult",
]
