"""
Payment API routes: quotes, payment jobs, balances and session keys.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..container import Container, get_container
from ..errors import ArcpayError
from ..http_errors import to_http_exception
from ..scanner.balances import snapshot_to_dict, validate_address

router = APIRouter(tags=["payments"])


class QuoteRequest(BaseModel):
    """Request body for a funding quote."""
    wallet_address: str
    target_amount: str


class CreatePaymentRequest(BaseModel):
    """Request body for a new payment job.

    `sig` and `expires` are passed through from a signed payment link; when
    present the link is verified before the job is created.
    """
    payer_address: str
    merchant_address: str
    target_amount: str
    label: Optional[str] = None
    payment_ref: Optional[str] = None
    sig: Optional[str] = None
    expires: Optional[str] = None


class CreateSessionRequest(BaseModel):
    """Request body for a new session key."""
    owner_address: Optional[str] = None


@router.post("/payments/quote")
async def quote_payment(request: QuoteRequest, container: Container = Depends(get_container)) -> dict:
    """Plan how `wallet_address` would fund `target_amount` USDC, without creating a job."""
    try:
        plan = await container.orchestrator.quote(request.wallet_address, request.target_amount)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return {"walletAddress": validate_address(request.wallet_address), **plan.to_dict()}


@router.post("/payments", status_code=201)
async def create_payment(request: CreatePaymentRequest, container: Container = Depends(get_container)) -> dict:
    """Create a payment job; execution starts in the background."""
    expires_at = None
    if request.sig:
        verification = container.links.verify_link(
            to=request.merchant_address,
            amount=request.target_amount,
            sig=request.sig,
            label=request.label,
            ref=request.payment_ref,
            expires=request.expires,
        )
        if not verification.valid:
            raise HTTPException(status_code=400, detail=verification.error)
        if verification.expires_at is not None:
            expires_at = datetime.fromtimestamp(verification.expires_at, tz=timezone.utc)

    try:
        job = await container.orchestrator.create_job(
            payer_address=request.payer_address,
            merchant_address=request.merchant_address,
            amount=request.target_amount,
            label=request.label,
            payment_ref=request.payment_ref,
            expires_at=expires_at,
        )
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return job.to_dict()


@router.get("/payments")
async def list_payments(
    merchant_address: Optional[str] = None, container: Container = Depends(get_container)
) -> dict:
    jobs = await container.jobs.list_jobs(merchant_address)
    return {"payments": [job.to_dict() for job in jobs]}


@router.get("/payments/{job_id}")
async def get_payment(job_id: str, container: Container = Depends(get_container)) -> dict:
    try:
        job = await container.orchestrator.get_status(job_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return job.to_dict()


@router.get("/payments/{job_id}/receipt")
async def get_receipt(job_id: str, container: Container = Depends(get_container)) -> dict:
    """Public receipt: safe fields only, no session or plan details."""
    try:
        job = await container.orchestrator.get_status(job_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    data = job.to_dict()
    return {
        "jobId": data["jobId"],
        "status": data["status"],
        "merchantAddress": data["merchantAddress"],
        "targetAmount": data["targetAmount"],
        "label": data["label"],
        "merchantReceives": (job.quote or {}).get("merchantReceives"),
        "txHash": job.tx_hashes.get("pay"),
        "createdAt": data["createdAt"],
    }


@router.post("/payments/{job_id}/confirm")
async def confirm_payment(job_id: str, container: Container = Depends(get_container)) -> dict:
    try:
        job = await container.orchestrator.confirm(job_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return job.to_dict()


@router.post("/payments/{job_id}/retry")
async def retry_payment(job_id: str, container: Container = Depends(get_container)) -> dict:
    try:
        job = await container.orchestrator.retry(job_id)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return job.to_dict()


@router.get("/balances/{address}")
async def get_balances(address: str, container: Container = Depends(get_container)) -> dict:
    """Per-chain native and USDC balances; failing chains carry an `error`."""
    try:
        snapshot = await container.scanner.scan(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return {"address": validate_address(address), "balances": snapshot_to_dict(snapshot)}


@router.post("/sessions", status_code=201)
async def create_session(request: CreateSessionRequest, container: Container = Depends(get_container)) -> dict:
    """Create a session key for a payer; the payer funds the returned address."""
    try:
        record = await container.sessions.create_session(request.owner_address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return record.to_dict()


@router.get("/sessions/{address}")
async def get_session(address: str, container: Container = Depends(get_container)) -> dict:
    try:
        record = await container.sessions.get_session(address)
    except ArcpayError as e:
        raise to_http_exception(e) from e
    return record.to_dict()
