"""
Subscription storage.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..jobs.models import utcnow
from .models import Subscription


class SubscriptionStore(ABC):
    @abstractmethod
    async def save(self, subscription: Subscription) -> None:
        ...

    @abstractmethod
    async def get(self, subscription_id: str) -> Optional[Subscription]:
        ...

    @abstractmethod
    async def find_due(self, now: datetime) -> List[Subscription]:
        ...

    @abstractmethod
    async def list_for_merchant(self, merchant_address: str) -> List[Subscription]:
        ...

    @abstractmethod
    async def list_for_payer(self, payer_address: str) -> List[Subscription]:
        ...


class InMemorySubscriptionStore(SubscriptionStore):
    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def save(self, subscription: Subscription) -> None:
        async with self._lock:
            subscription.updated_at = utcnow()
            self._subscriptions[subscription.subscription_id] = copy.deepcopy(subscription)

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return copy.deepcopy(subscription) if subscription is not None else None

    async def find_due(self, now: datetime) -> List[Subscription]:
        async with self._lock:
            due = [copy.deepcopy(sub) for sub in self._subscriptions.values() if sub.is_due(now)]
        return sorted(due, key=lambda sub: sub.next_charge_at)

    async def _filter(self, attr: str, address: str) -> List[Subscription]:
        async with self._lock:
            matches = [
                copy.deepcopy(sub)
                for sub in self._subscriptions.values()
                if getattr(sub, attr).lower() == address.lower()
            ]
        return sorted(matches, key=lambda sub: sub.created_at, reverse=True)

    async def list_for_merchant(self, merchant_address: str) -> List[Subscription]:
        return await self._filter("merchant_address", merchant_address)

    async def list_for_payer(self, payer_address: str) -> List[Subscription]:
        return await self._filter("payer_address", payer_address)
