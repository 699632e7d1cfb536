"""
Signed merchant webhooks with retrying delivery.
"""

from .dispatcher import (
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    EVENT_PAYMENT_COMPLETE,
    EVENT_TEST,
    SIGNATURE_HEADER,
    DeliveryStore,
    InMemoryDeliveryStore,
    WebhookDelivery,
    WebhookDispatcher,
    sign_body,
    verify_signature,
)

__all__ = [
    "DELIVERY_DELIVERED",
    "DELIVERY_FAILED",
    "DELIVERY_PENDING",
    "EVENT_PAYMENT_COMPLETE",
    "EVENT_TEST",
    "SIGNATURE_HEADER",
    "DeliveryStore",
    "InMemoryDeliveryStore",
    "WebhookDelivery",
    "WebhookDispatcher",
    "sign_body",
    "verify_signature",
]
