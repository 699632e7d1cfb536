"""
Signed payment links.
"""

from .signing import LinkVerification, PaymentLinkSigner

__all__ = ["LinkVerification", "PaymentLinkSigner"]
