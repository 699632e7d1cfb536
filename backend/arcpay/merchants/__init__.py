"""
Merchants, revenue splits and storefront products.
"""

from .models import PRODUCT_ONE_TIME, PRODUCT_SUBSCRIPTION, Merchant, Product, Split
from .service import MerchantService, parse_splits
from .store import InMemoryMerchantStore, MerchantStore

__all__ = [
    "PRODUCT_ONE_TIME",
    "PRODUCT_SUBSCRIPTION",
    "Merchant",
    "Product",
    "Split",
    "MerchantService",
    "parse_splits",
    "InMemoryMerchantStore",
    "MerchantStore",
]
