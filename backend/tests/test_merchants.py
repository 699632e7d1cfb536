from decimal import Decimal

import pytest

from conftest import MERCHANT
from arcpay.errors import InvalidInputError, NotFoundError
from arcpay.merchants.service import MerchantService, parse_splits
from arcpay.merchants.store import InMemoryMerchantStore

OTHER = "0x4444444444444444444444444444444444444444"


@pytest.fixture
def merchants():
    return MerchantService(InMemoryMerchantStore())


@pytest.mark.parametrize(
    "splits",
    [
        [],
        [{"address": MERCHANT, "bps": 5000}],
        [{"address": MERCHANT, "bps": 0}, {"address": OTHER, "bps": 10000}],
        [{"address": MERCHANT, "bps": 5000.0}, {"address": OTHER, "bps": 5000}],
        [{"address": "0xnope", "bps": 10000}],
    ],
)
def test_invalid_split_tables(splits):
    with pytest.raises(InvalidInputError):
        parse_splits(splits)


def test_valid_split_table():
    parsed = parse_splits([{"address": MERCHANT, "bps": 9000}, {"address": OTHER.lower(), "bps": 1000}])

    assert [(split.address, split.bps) for split in parsed] == [(MERCHANT, 9000), (OTHER, 1000)]


@pytest.mark.asyncio
async def test_register_is_idempotent_and_updates_profile(merchants):
    await merchants.register(MERCHANT, "Coffee")
    updated = await merchants.register(MERCHANT.lower(), "  Coffee & Co ", logo_url="https://x/logo.png")

    assert updated.name == "Coffee & Co"
    assert (await merchants.get(MERCHANT)).logo_url == "https://x/logo.png"
    with pytest.raises(InvalidInputError):
        await merchants.register(MERCHANT, " ")


@pytest.mark.asyncio
async def test_unknown_merchant(merchants):
    assert await merchants.find(OTHER) is None
    with pytest.raises(NotFoundError):
        await merchants.get(OTHER)


@pytest.mark.asyncio
async def test_slug_rules(merchants):
    await merchants.register(MERCHANT, "Coffee")
    await merchants.register(OTHER, "Tea")

    await merchants.claim_slug(MERCHANT, "coffee-shop")
    await merchants.claim_slug(MERCHANT, "coffee-shop")

    with pytest.raises(InvalidInputError, match="already taken"):
        await merchants.claim_slug(OTHER, "coffee-shop")
    for bad in ("ab", "Coffee", "coffee_shop", "x" * 41):
        with pytest.raises(InvalidInputError):
            await merchants.claim_slug(OTHER, bad)


@pytest.mark.asyncio
async def test_webhook_url_must_be_http(merchants):
    await merchants.register(MERCHANT, "Coffee")
    with pytest.raises(InvalidInputError):
        await merchants.set_webhook_url(MERCHANT, "ftp://example.com")

    merchant = await merchants.set_webhook_url(MERCHANT, "https://example.com/hook")
    assert merchant.webhook_url == "https://example.com/hook"


@pytest.mark.asyncio
async def test_products_and_storefront(merchants):
    await merchants.register(MERCHANT, "Coffee")
    await merchants.claim_slug(MERCHANT, "coffee")

    latte = await merchants.create_product(MERCHANT, "Latte", "4.5", sort_order=2)
    beans = await merchants.create_product(
        MERCHANT, "Beans club", "20", product_type="subscription", interval_days=30, sort_order=1
    )
    mug = await merchants.create_product(MERCHANT, "Mug", "12")
    await merchants.deactivate_product(MERCHANT, mug.product_id)

    store = await merchants.storefront("coffee")
    assert [product["name"] for product in store["products"]] == ["Beans club", "Latte"]
    assert "webhookUrl" not in store["merchant"]
    assert len(await merchants.list_products(MERCHANT, active_only=False)) == 3

    updated = await merchants.update_product(MERCHANT, latte.product_id, amount="5")
    assert updated.amount == Decimal("5.000000")
    assert beans.interval_days == 30


@pytest.mark.asyncio
async def test_product_validation(merchants):
    await merchants.register(MERCHANT, "Coffee")
    await merchants.register(OTHER, "Tea")
    product = await merchants.create_product(MERCHANT, "Latte", "4.5")

    with pytest.raises(InvalidInputError):
        await merchants.create_product(MERCHANT, "Club", "10", product_type="subscription")
    with pytest.raises(InvalidInputError):
        await merchants.create_product(MERCHANT, "Gift", "10", product_type="bundle")
    with pytest.raises(NotFoundError):
        await merchants.update_product(OTHER, product.product_id, name="Stolen")
    with pytest.raises(NotFoundError):
        await merchants.storefront("missing")
