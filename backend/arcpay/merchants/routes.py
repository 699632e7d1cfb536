"""
Merchant API routes: profiles, webhooks, splits, storefront and products.
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..container import Container, get_container
from ..errors import ArcpayError
from ..http_errors import to_http_exception
from ..jobs.models import JobStatus

router = APIRouter(tags=["merchants"])


class RegisterMerchantRequest(BaseModel):
    address: str
    name: str
    logo_url: Optional[str] = None


class WebhookRequest(BaseModel):
    webhook_url: str


class SplitsRequest(BaseModel):
    """Revenue split table; bps must sum to 10000."""
    splits: List[Dict]


class SlugRequest(BaseModel):
    slug: str


class ProductRequest(BaseModel):
    name: str
    amount: str
    type: str = "one_time"
    description: Optional[str] = None
    image_url: Optional[str] = None
    interval_days: Optional[int] = None
    sort_order: int = 0


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    amount: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    interval_days: Optional[int] = None
    sort_order: Optional[int] = None


@router.post("/merchants", status_code=201)
async def register_merchant(request: RegisterMerchantRequest, container: Container = Depends(get_container)) -> dict:
    try:
        merchant = await container.merchants.register(request.address, request.name, request.logo_url)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return merchant.to_dict()


@router.get("/merchants/{address}")
async def get_merchant(address: str, container: Container = Depends(get_container)) -> dict:
    try:
        merchant = await container.merchants.get(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return merchant.to_dict()


@router.get("/merchants/{address}/payments")
async def get_merchant_payments(
    address: str,
    limit: int = 20,
    offset: int = 0,
    all: bool = False,
    container: Container = Depends(get_container),
) -> dict:
    """Completed payments by default; `all=true` includes every status."""
    jobs = await container.jobs.list_jobs(address)
    if not all:
        jobs = [job for job in jobs if job.status == JobStatus.COMPLETE]
    page = jobs[offset:offset + limit]
    return {"payments": [job.to_dict() for job in page], "limit": limit, "offset": offset}


@router.put("/merchants/{address}/webhook")
async def set_webhook(address: str, request: WebhookRequest, container: Container = Depends(get_container)) -> dict:
    try:
        merchant = await container.merchants.set_webhook_url(address, request.webhook_url)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return merchant.to_dict()


@router.post("/merchants/{address}/webhook/test")
async def test_webhook(address: str, container: Container = Depends(get_container)) -> dict:
    """Send a signed `webhook.test` event and report the delivery outcome."""
    try:
        delivery = await container.webhooks.send_test(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return delivery.to_dict()


@router.get("/merchants/{address}/webhooks")
async def list_webhook_deliveries(address: str, container: Container = Depends(get_container)) -> dict:
    deliveries = await container.webhooks.list_deliveries(address)
    return {"deliveries": [delivery.to_dict() for delivery in deliveries]}


@router.put("/merchants/{address}/splits")
async def set_splits(address: str, request: SplitsRequest, container: Container = Depends(get_container)) -> dict:
    try:
        merchant = await container.merchants.set_splits(address, request.splits)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return merchant.to_dict()


@router.put("/merchants/{address}/slug")
async def claim_slug(address: str, request: SlugRequest, container: Container = Depends(get_container)) -> dict:
    try:
        merchant = await container.merchants.claim_slug(address, request.slug)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return merchant.to_dict()


# --- Products ------------------------------------------------------------------------


@router.get("/merchants/{address}/products")
async def list_products(
    address: str, include_inactive: bool = False, container: Container = Depends(get_container)
) -> dict:
    products = await container.merchants.list_products(address, active_only=not include_inactive)
    return {"products": [product.to_dict() for product in products]}


@router.post("/merchants/{address}/products", status_code=201)
async def create_product(address: str, request: ProductRequest, container: Container = Depends(get_container)) -> dict:
    try:
        product = await container.merchants.create_product(
            address,
            request.name,
            request.amount,
            product_type=request.type,
            description=request.description,
            image_url=request.image_url,
            interval_days=request.interval_days,
            sort_order=request.sort_order,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return product.to_dict()


@router.put("/merchants/{address}/products/{product_id}")
async def update_product(
    address: str,
    product_id: str,
    request: ProductUpdateRequest,
    container: Container = Depends(get_container),
) -> dict:
    try:
        product = await container.merchants.update_product(
            address,
            product_id,
            name=request.name,
            amount=request.amount,
            product_type=request.type,
            description=request.description,
            image_url=request.image_url,
            interval_days=request.interval_days,
            sort_order=request.sort_order,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return product.to_dict()


@router.delete("/merchants/{address}/products/{product_id}")
async def delete_product(address: str, product_id: str, container: Container = Depends(get_container)) -> dict:
    """Soft delete: the product is deactivated, never removed."""
    try:
        product = await container.merchants.deactivate_product(address, product_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return product.to_dict()


@router.get("/store/{slug}")
async def get_storefront(slug: str, container: Container = Depends(get_container)) -> dict:
    try:
        return await container.merchants.storefront(slug)
    except ArcpayError as e:
        raise to_http_exception(e) from e
