"""
Merchant and product storage.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Merchant, Product


class MerchantStore(ABC):
    @abstractmethod
    async def save_merchant(self, merchant: Merchant) -> None:
        ...

    @abstractmethod
    async def get_merchant(self, address: str) -> Optional[Merchant]:
        ...

    @abstractmethod
    async def get_merchant_by_slug(self, slug: str) -> Optional[Merchant]:
        ...

    @abstractmethod
    async def list_merchants(self) -> List[Merchant]:
        ...

    @abstractmethod
    async def save_product(self, product: Product) -> None:
        ...

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def list_products(self, merchant_address: str) -> List[Product]:
        ...


class InMemoryMerchantStore(MerchantStore):
    def __init__(self) -> None:
        self._merchants: Dict[str, Merchant] = {}
        self._products: Dict[str, Product] = {}
        self._lock = asyncio.Lock()

    async def save_merchant(self, merchant: Merchant) -> None:
        async with self._lock:
            self._merchants[merchant.address.lower()] = copy.deepcopy(merchant)

    async def get_merchant(self, address: str) -> Optional[Merchant]:
        async with self._lock:
            merchant = self._merchants.get(address.lower())
            return copy.deepcopy(merchant) if merchant is not None else None

    async def get_merchant_by_slug(self, slug: str) -> Optional[Merchant]:
        async with self._lock:
            for merchant in self._merchants.values():
                if merchant.slug and merchant.slug.lower() == slug.lower():
                    return copy.deepcopy(merchant)
            return None

    async def list_merchants(self) -> List[Merchant]:
        async with self._lock:
            return [copy.deepcopy(merchant) for merchant in self._merchants.values()]

    async def save_product(self, product: Product) -> None:
        async with self._lock:
            self._products[product.product_id] = copy.deepcopy(product)

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self._lock:
            product = self._products.get(product_id)
            return copy.deepcopy(product) if product is not None else None

    async def list_products(self, merchant_address: str) -> List[Product]:
        async with self._lock:
            products = [
                copy.deepcopy(product)
                for product in self._products.values()
                if product.merchant_address.lower() == merchant_address.lower()
            ]
        return sorted(products, key=lambda product: (product.sort_order, product.created_at))
