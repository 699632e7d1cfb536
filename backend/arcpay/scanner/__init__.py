"""
Balance Scanner - per-chain native and USDC balances.
"""

from .balances import BalanceScanner, BalanceSnapshot, ChainBalance, snapshot_to_dict, validate_address

__all__ = ["BalanceScanner", "BalanceSnapshot", "ChainBalance", "snapshot_to_dict", "validate_address"]
