"""
Recurring payment subscriptions.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from ..jobs.models import isoformat, utcnow


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


@dataclass
class Subscription:
    merchant_address: str
    payer_address: str
    amount: Decimal
    interval_days: int
    next_charge_at: datetime
    label: Optional[str] = None
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    # Session credential granted by the payer; charges run with it
    session_key_ciphertext: Optional[str] = None
    session_address: Optional[str] = None
    session_expires_at: Optional[datetime] = None
    last_job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_authorized(self) -> bool:
        return bool(self.session_key_ciphertext and self.session_address and self.session_expires_at)

    def is_due(self, now: datetime) -> bool:
        """ACTIVE, authorized, with an unexpired session and a charge date in the past."""
        return (
            self.status == SubscriptionStatus.ACTIVE
            and self.is_authorized
            and self.session_expires_at > now
            and self.next_charge_at <= now
        )

    def to_dict(self) -> Dict:
        """Public view; the session ciphertext is never exposed."""
        return {
            "id": self.subscription_id,
            "merchantAddress": self.merchant_address,
            "payerAddress": self.payer_address,
            "amount": str(self.amount),
            "intervalDays": self.interval_days,
            "label": self.label,
            "status": self.status.value,
            "authorized": self.is_authorized,
            "sessionAddress": self.session_address,
            "sessionExpiresAt": isoformat(self.session_expires_at),
            "nextChargeAt": isoformat(self.next_charge_at),
            "lastJobId": self.last_job_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
