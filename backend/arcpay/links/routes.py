"""
Payment link routes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..container import Container, get_container
from ..errors import ArcpayError
from ..http_errors import to_http_exception

router = APIRouter(prefix="/links", tags=["links"])


class CreateLinkRequest(BaseModel):
    merchant_address: str
    amount: str
    label: Optional[str] = None
    ref: Optional[str] = None
    expires_in_hours: Optional[float] = 24


class VerifyLinkRequest(BaseModel):
    to: Optional[str] = None
    amount: Optional[str] = None
    sig: Optional[str] = None
    label: Optional[str] = None
    ref: Optional[str] = None
    expires: Optional[str] = None


@router.post("")
async def create_link(request: CreateLinkRequest, container: Container = Depends(get_container)) -> dict:
    try:
        return container.links.sign_link(
            request.merchant_address,
            request.amount,
            label=request.label,
            ref=request.ref,
            expires_in_hours=request.expires_in_hours,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e


@router.post("/verify")
async def verify_link(request: VerifyLinkRequest, container: Container = Depends(get_container)) -> dict:
    try:
        result = container.links.verify_link(
            to=request.to,
            amount=request.amount,
            sig=request.sig,
            label=request.label,
            ref=request.ref,
            expires=request.expires,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    if not result.valid:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_dict()
