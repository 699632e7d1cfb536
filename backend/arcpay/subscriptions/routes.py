"""
Subscription routes.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..container import Container, get_container
from ..errors import ArcpayError
from ..http_errors import to_http_exception

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class CreateSubscriptionRequest(BaseModel):
    merchant_address: str
    payer_address: str
    amount: str
    interval_days: int
    label: Optional[str] = None


class AuthorizeSubscriptionRequest(BaseModel):
    """The payer authorizes with the session key created via POST /sessions."""
    wallet_address: str


class CancelSubscriptionRequest(BaseModel):
    caller_address: str


@router.post("", status_code=201)
async def create_subscription(
    request: CreateSubscriptionRequest, container: Container = Depends(get_container)
) -> dict:
    try:
        subscription = await container.subscriptions.create(
            request.merchant_address,
            request.payer_address,
            request.amount,
            request.interval_days,
            label=request.label,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    app_url = container.settings.public_app_url.rstrip("/")
    return {
        **subscription.to_dict(),
        "authorizeUrl": f"{app_url}/subscribe/{subscription.subscription_id}",
    }


@router.get("/merchant/{address}")
async def list_merchant_subscriptions(address: str, container: Container = Depends(get_container)) -> dict:
    try:
        subscriptions = await container.subscriptions.list_for_merchant(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return {"subscriptions": [sub.to_dict() for sub in subscriptions]}


@router.get("/payer/{address}")
async def list_payer_subscriptions(address: str, container: Container = Depends(get_container)) -> dict:
    try:
        subscriptions = await container.subscriptions.list_for_payer(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return {"subscriptions": [sub.to_dict() for sub in subscriptions]}


@router.get("/{subscription_id}")
async def get_subscription(subscription_id: str, container: Container = Depends(get_container)) -> dict:
    try:
        subscription = await container.subscriptions.get(subscription_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return subscription.to_dict()


@router.post("/{subscription_id}/authorize")
async def authorize_subscription(
    subscription_id: str,
    request: AuthorizeSubscriptionRequest,
    container: Container = Depends(get_container),
) -> dict:
    """Attach the payer's current session key to the subscription."""
    try:
        session = await container.sessions.get_session(request.wallet_address)
        subscription = await container.subscriptions.authorize(
            subscription_id,
            request.wallet_address,
            session.encrypted_key,
            session.session_address,
            session.expires_at,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return subscription.to_dict()


@router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    request: CancelSubscriptionRequest,
    container: Container = Depends(get_container),
) -> dict:
    try:
        subscription = await container.subscriptions.cancel(subscription_id, request.caller_address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return subscription.to_dict()
