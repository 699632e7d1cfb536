"""
Recurring subscriptions charged through auto-executing payment jobs.
"""

from .models import Subscription, SubscriptionStatus
from .service import SubscriptionService
from .store import InMemorySubscriptionStore, SubscriptionStore

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionService",
    "InMemorySubscriptionStore",
    "SubscriptionStore",
]
