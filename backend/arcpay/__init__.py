"""
arcpay - cross-chain stablecoin payment backend.

Scans a payer's balances across source chains, plans how to fund a payment,
and drives the swap / bridge / mint / pay steps through a resumable job state
machine that settles on the Arc network.
"""

__version__ = "0.1.0"
