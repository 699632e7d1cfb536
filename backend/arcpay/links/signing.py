"""
HMAC-signed payment links.

A link carries `to`, `amount`, `label`, `ref`, optional `expires` (unix
seconds) and `sig`. The signature covers
"merchant_lower|amount|label|ref[|expires]"; `expires` is only appended when
present so links without expiry keep verifying.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlencode

from ..errors import ConfigurationError
from ..routing.planner import parse_usdc_amount
from ..scanner.balances import validate_address

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_HOURS = 24


@dataclass
class LinkVerification:
    valid: bool
    error: Optional[str] = None
    merchant_address: Optional[str] = None
    amount: Optional[str] = None
    label: str = ""
    ref: str = ""
    expires_at: Optional[int] = None

    def to_dict(self) -> Dict:
        if not self.valid:
            return {"valid": False, "error": self.error}
        return {
            "valid": True,
            "merchantAddress": self.merchant_address,
            "amount": self.amount,
            "label": self.label,
            "ref": self.ref,
            "expiresAt": self.expires_at,
        }


def _message(merchant: str, amount: str, label: Optional[str], ref: Optional[str], expires) -> str:
    parts = [merchant.lower(), str(amount), label or "", ref or ""]
    if expires not in (None, ""):
        parts.append(str(expires))
    return "|".join(parts)


class PaymentLinkSigner:
    def __init__(self, secret: str, app_url: str = "http://localhost:5173") -> None:
        self.secret = secret
        self.app_url = app_url.rstrip("/")

    def _hmac(self, message: str) -> str:
        if not self.secret:
            raise ConfigurationError("LINK_SECRET is not set")
        return hmac.new(self.secret.encode(), message.encode(), hashlib.sha256).hexdigest()

    def sign_link(
        self,
        merchant_address: str,
        amount,
        label: Optional[str] = None,
        ref: Optional[str] = None,
        expires_in_hours: Optional[float] = DEFAULT_EXPIRY_HOURS,
    ) -> Dict:
        """
        Build a signed payment URL; `expires_in_hours` of 0/None means no expiry.

        Raises:
            InvalidInputError: Bad merchant address or amount
        """
        merchant = validate_address(merchant_address)
        amount_str = str(parse_usdc_amount(amount))
        expires = int(time.time() + expires_in_hours * 3600) if expires_in_hours else None

        sig = self._hmac(_message(merchant, amount_str, label, ref, expires))
        params = {"to": merchant, "amount": amount_str, "label": label or ""}
        if ref:
            params["ref"] = ref
        if expires is not None:
            params["expires"] = str(expires)
        params["sig"] = sig

        return {
            "url": f"{self.app_url}/pay?{urlencode(params)}",
            "params": params,
            "sig": sig,
            "expiresAt": expires,
        }

    def verify_link(
        self,
        to: Optional[str],
        amount: Optional[str],
        sig: Optional[str],
        label: Optional[str] = None,
        ref: Optional[str] = None,
        expires: Optional[str] = None,
        now: Optional[float] = None,
    ) -> LinkVerification:
        """Check expiry and signature (constant-time); never raises for bad links."""
        if not to or not amount or not sig:
            return LinkVerification(valid=False, error="Missing required parameters")

        expires_at = None
        if expires not in (None, ""):
            try:
                expires_at = int(expires)
            except (TypeError, ValueError):
                return LinkVerification(valid=False, error="Invalid expiry")
            if (now if now is not None else time.time()) > expires_at:
                return LinkVerification(valid=False, error="Link expired")

        expected = self._hmac(_message(to, amount, label, ref, expires))
        if not hmac.compare_digest(expected.encode(), sig.lower().encode()):
            logger.info(f"Rejected payment link for {to}: bad signature")
            return LinkVerification(valid=False, error="Invalid signature")

        return LinkVerification(
            valid=True,
            merchant_address=to,
            amount=str(amount),
            label=label or "",
            ref=ref or "",
            expires_at=expires_at,
        )
