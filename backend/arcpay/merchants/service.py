"""
Merchant profiles, revenue splits, storefront slugs and products.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional

from ..errors import InvalidInputError, NotFoundError
from ..routing.planner import parse_usdc_amount
from ..scanner.balances import validate_address
from .models import PRODUCT_SUBSCRIPTION, PRODUCT_TYPES, TOTAL_BPS, Merchant, Product, Split
from .store import MerchantStore

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9-]{3,40}$")


def parse_splits(splits: List[Dict]) -> List[Split]:
    """
    Validate a revenue split table.

    Raises:
        InvalidInputError: Empty table, bad address, bps outside 1..10000
            or a total other than 10000
    """
    if not splits:
        raise InvalidInputError("splits must be a non-empty list")

    parsed: List[Split] = []
    for entry in splits:
        bps = entry.get("bps")
        if isinstance(bps, bool) or not isinstance(bps, int):
            raise InvalidInputError("Each split must have an integer bps")
        if not 1 <= bps <= TOTAL_BPS:
            raise InvalidInputError(f"Split bps must be between 1 and {TOTAL_BPS}, got {bps}")
        parsed.append(Split(address=validate_address(entry.get("address")), bps=bps))

    total = sum(split.bps for split in parsed)
    if total != TOTAL_BPS:
        raise InvalidInputError(f"Split bps must sum to {TOTAL_BPS}, got {total}")
    return parsed


class MerchantService:
    def __init__(self, store: MerchantStore) -> None:
        self.store = store
        self._slug_lock = asyncio.Lock()

    async def register(self, address: str, name: str, logo_url: Optional[str] = None) -> Merchant:
        """Create or update a merchant profile."""
        address = validate_address(address)
        if not name or not name.strip():
            raise InvalidInputError("Merchant name is required")

        merchant = await self.store.get_merchant(address)
        if merchant is None:
            merchant = Merchant(address=address, name=name.strip(), logo_url=logo_url)
            logger.info(f"Registered merchant {address}")
        else:
            merchant.name = name.strip()
            merchant.logo_url = logo_url
        await self.store.save_merchant(merchant)
        return merchant

    async def get(self, address: str) -> Merchant:
        merchant = await self.store.get_merchant(validate_address(address))
        if merchant is None:
            raise NotFoundError(f"Merchant {address} not found")
        return merchant

    async def find(self, address: str) -> Optional[Merchant]:
        """Like `get` but returns None for unregistered merchants."""
        return await self.store.get_merchant(address)

    async def get_by_slug(self, slug: str) -> Merchant:
        merchant = await self.store.get_merchant_by_slug(slug)
        if merchant is None:
            raise NotFoundError(f"No store at '{slug}'")
        return merchant

    async def set_webhook_url(self, address: str, webhook_url: str) -> Merchant:
        if not webhook_url or not webhook_url.startswith(("http://", "https://")):
            raise InvalidInputError("webhook_url must be an http(s) URL")
        merchant = await self.get(address)
        merchant.webhook_url = webhook_url
        await self.store.save_merchant(merchant)
        return merchant

    async def set_splits(self, address: str, splits: List[Dict]) -> Merchant:
        merchant = await self.get(address)
        merchant.splits = parse_splits(splits)
        await self.store.save_merchant(merchant)
        logger.info(f"Merchant {merchant.address} split table set: {len(merchant.splits)} recipients")
        return merchant

    async def claim_slug(self, address: str, slug: str) -> Merchant:
        """
        Raises:
            InvalidInputError: Bad format or the slug belongs to another merchant
        """
        slug = (slug or "").strip()
        if not SLUG_RE.match(slug):
            raise InvalidInputError("Slug must be 3-40 lowercase letters, digits, or hyphens")

        async with self._slug_lock:
            merchant = await self.get(address)
            existing = await self.store.get_merchant_by_slug(slug)
            if existing is not None and existing.address.lower() != merchant.address.lower():
                raise InvalidInputError(f"Slug '{slug}' is already taken")
            merchant.slug = slug
            await self.store.save_merchant(merchant)
        return merchant

    # --- Products ------------------------------------------------------------------

    @staticmethod
    def _validate_product_fields(product_type: str, interval_days: Optional[int]) -> None:
        if product_type not in PRODUCT_TYPES:
            raise InvalidInputError(f"Product type must be one of {PRODUCT_TYPES}")
        if product_type == PRODUCT_SUBSCRIPTION and (interval_days is None or interval_days < 1):
            raise InvalidInputError("Subscription products require interval_days >= 1")

    async def create_product(
        self,
        merchant_address: str,
        name: str,
        amount,
        product_type: str = "one_time",
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        interval_days: Optional[int] = None,
        sort_order: int = 0,
    ) -> Product:
        merchant = await self.get(merchant_address)
        if not name or not name.strip():
            raise InvalidInputError("Product name is required")
        self._validate_product_fields(product_type, interval_days)

        product = Product(
            merchant_address=merchant.address,
            name=name.strip(),
            amount=parse_usdc_amount(amount),
            type=product_type,
            description=description,
            image_url=image_url,
            interval_days=interval_days if product_type == PRODUCT_SUBSCRIPTION else None,
            sort_order=sort_order,
        )
        await self.store.save_product(product)
        return product

    async def _owned_product(self, merchant_address: str, product_id: str) -> Product:
        product = await self.store.get_product(product_id)
        if product is None or product.merchant_address.lower() != merchant_address.lower():
            raise NotFoundError(f"Product {product_id} not found")
        return product

    async def update_product(self, merchant_address: str, product_id: str, **changes) -> Product:
        product = await self._owned_product(merchant_address, product_id)

        if changes.get("name") is not None:
            if not changes["name"].strip():
                raise InvalidInputError("Product name is required")
            product.name = changes["name"].strip()
        if changes.get("amount") is not None:
            product.amount = parse_usdc_amount(changes["amount"])
        for attr in ("description", "image_url", "sort_order"):
            if changes.get(attr) is not None:
                setattr(product, attr, changes[attr])
        if changes.get("product_type") is not None:
            product.type = changes["product_type"]
        if changes.get("interval_days") is not None:
            product.interval_days = changes["interval_days"]

        self._validate_product_fields(product.type, product.interval_days)
        await self.store.save_product(product)
        return product

    async def deactivate_product(self, merchant_address: str, product_id: str) -> Product:
        product = await self._owned_product(merchant_address, product_id)
        product.active = False
        await self.store.save_product(product)
        return product

    async def list_products(self, merchant_address: str, active_only: bool = True) -> List[Product]:
        products = await self.store.list_products(merchant_address)
        return [product for product in products if product.active or not active_only]

    async def storefront(self, slug: str) -> Dict:
        """Public store page data: merchant profile and active products."""
        merchant = await self.get_by_slug(slug)
        products = await self.list_products(merchant.address)
        return {
            "merchant": merchant.to_public_dict(),
            "products": [product.to_dict() for product in products],
        }

