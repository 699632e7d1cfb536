"""
Merchant profile and storefront product records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ..jobs.models import isoformat, utcnow

TOTAL_BPS = 10000

PRODUCT_ONE_TIME = "one_time"
PRODUCT_SUBSCRIPTION = "subscription"
PRODUCT_TYPES = (PRODUCT_ONE_TIME, PRODUCT_SUBSCRIPTION)


@dataclass
class Split:
    address: str
    bps: int

    def to_dict(self) -> Dict:
        return {"address": self.address, "bps": self.bps}


@dataclass
class Merchant:
    address: str  # checksummed; keyed lower-case by stores
    name: str
    logo_url: Optional[str] = None
    slug: Optional[str] = None
    webhook_url: Optional[str] = None
    splits: List[Split] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "name": self.name,
            "logoUrl": self.logo_url,
            "slug": self.slug,
            "webhookUrl": self.webhook_url,
            "splits": [split.to_dict() for split in self.splits],
            "createdAt": isoformat(self.created_at),
        }

    def to_public_dict(self) -> Dict:
        """Storefront view: no webhook or split configuration."""
        return {
            "address": self.address,
            "name": self.name,
            "logoUrl": self.logo_url,
            "slug": self.slug,
        }


@dataclass
class Product:
    merchant_address: str
    name: str
    amount: Decimal
    type: str = PRODUCT_ONE_TIME
    description: Optional[str] = None
    image_url: Optional[str] = None
    interval_days: Optional[int] = None
    sort_order: int = 0
    active: bool = True
    product_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            "id": self.product_id,
            "merchantAddress": self.merchant_address,
            "name": self.name,
            "description": self.description,
            "amount": str(self.amount),
            "imageUrl": self.image_url,
            "type": self.type,
            "intervalDays": self.interval_days,
            "sortOrder": self.sort_order,
            "active": self.active,
        }
