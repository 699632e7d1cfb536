"""
Custodial signing service client (Circle developer-controlled wallets).
"""

from .circle import (
    FEE_LEVEL_HIGH,
    CircleWalletsClient,
    CustodialWallet,
    CustodyTransaction,
)

__all__ = ["FEE_LEVEL_HIGH", "CircleWalletsClient", "CustodialWallet", "CustodyTransaction"]
