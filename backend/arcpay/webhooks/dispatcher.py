"""
Merchant webhook delivery.

When a payment completes, the merchant's webhook URL receives a signed
`payment.complete` event. Deliveries are retried up to 3 times with 1s/2s/4s
backoff and every delivery is recorded (PENDING -> DELIVERED | FAILED).
Delivery problems are logged and never affect the payment job.

Signature header:
    X-Arcpay-Signature: sha256=<hex HMAC-SHA256 of the raw JSON body>
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import hmac
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

import httpx

from ..errors import InvalidInputError, WebhookError
from ..jobs.models import PaymentJob, isoformat, utcnow
from ..merchants.service import MerchantService

logger = logging.getLogger(__name__)

EVENT_PAYMENT_COMPLETE = "payment.complete"
EVENT_TEST = "webhook.test"

SIGNATURE_HEADER = "X-Arcpay-Signature"

DELIVERY_PENDING = "PENDING"
DELIVERY_DELIVERED = "DELIVERED"
DELIVERY_FAILED = "FAILED"

DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAYS = (1, 2, 4)


@dataclass
class WebhookDelivery:
    job_id: Optional[str]
    merchant_address: str
    url: str
    event: str
    payload: Dict[str, Any]
    delivery_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = DELIVERY_PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    response_code: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "jobId": self.job_id,
            "merchantAddress": self.merchant_address,
            "url": self.url,
            "event": self.event,
            "status": self.status,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "responseCode": self.response_code,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class DeliveryStore(ABC):
    @abstractmethod
    async def save(self, delivery: WebhookDelivery) -> None:
        ...

    @abstractmethod
    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        ...

    @abstractmethod
    async def list_for_merchant(self, merchant_address: str) -> List[WebhookDelivery]:
        ...


class InMemoryDeliveryStore(DeliveryStore):
    def __init__(self) -> None:
        self._deliveries: Dict[str, WebhookDelivery] = {}
        self._lock = asyncio.Lock()

    async def save(self, delivery: WebhookDelivery) -> None:
        async with self._lock:
            delivery.updated_at = utcnow()
            self._deliveries[delivery.delivery_id] = copy.deepcopy(delivery)

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async with self._lock:
            delivery = self._deliveries.get(delivery_id)
            return copy.deepcopy(delivery) if delivery is not None else None

    async def list_for_merchant(self, merchant_address: str) -> List[WebhookDelivery]:
        async with self._lock:
            deliveries = [
                copy.deepcopy(delivery)
                for delivery in self._deliveries.values()
                if delivery.merchant_address.lower() == merchant_address.lower()
            ]
        return sorted(deliveries, key=lambda delivery: delivery.created_at, reverse=True)


def sign_body(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: str, header: str, secret: str) -> bool:
    """Constant-time check of an X-Arcpay-Signature header (for receivers)."""
    return hmac.compare_digest(sign_body(body, secret), header or "")


class WebhookDispatcher:
    """Signs and delivers merchant webhooks with retries."""

    def __init__(
        self,
        merchants: MerchantService,
        store: DeliveryStore,
        secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.merchants = merchants
        self.store = store
        self.secret = secret
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delays = tuple(retry_delays)
        self._client = client
        self._owns_client = client is None
        self._tasks: Set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _delay(self, attempt: int) -> float:
        if attempt - 1 < len(self.retry_delays):
            return self.retry_delays[attempt - 1]
        return self.retry_delays[-1] if self.retry_delays else 0

    @staticmethod
    def build_payment_payload(job: PaymentJob) -> Dict[str, Any]:
        quote = job.quote or {}
        return {
            "event": EVENT_PAYMENT_COMPLETE,
            "jobId": job.job_id,
            "merchantAddress": job.merchant_address,
            "payerAddress": job.payer_address,
            "amount": quote.get("merchantReceives", str(job.target_amount)),
            "txHash": job.tx_hashes.get("pay"),
            "label": job.label,
            "paymentRef": job.payment_ref,
            "timestamp": int(time.time() * 1000),
        }

    async def _post(self, url: str, body: str) -> int:
        """
        Raises:
            WebhookError: Network error or non-2xx response
        """
        if not self.secret:
            raise WebhookError("WEBHOOK_SECRET / LINK_SECRET is not set")
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_body(body, self.secret),
        }
        try:
            response = await self._get_client().post(url, content=body, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise WebhookError(f"{type(e).__name__}: {e}") from e
        if not 200 <= response.status_code < 300:
            raise WebhookError(f"HTTP {response.status_code}", response_code=response.status_code)
        return response.status_code

    async def deliver(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Attempt delivery until success or `max_attempts`, recording each attempt."""
        body = json.dumps(delivery.payload, separators=(",", ":"))

        while delivery.attempts < self.max_attempts:
            delivery.attempts += 1
            try:
                delivery.response_code = await self._post(delivery.url, body)
            except WebhookError as e:
                delivery.last_error = str(e)
                delivery.response_code = e.response_code
                if delivery.attempts >= self.max_attempts:
                    delivery.status = DELIVERY_FAILED
                    await self.store.save(delivery)
                    logger.warning(
                        f"Webhook {delivery.event} to {delivery.url} failed after "
                        f"{delivery.attempts} attempts: {e}"
                    )
                    return delivery
                await self.store.save(delivery)
                delay = self._delay(delivery.attempts)
                logger.warning(
                    f"Webhook attempt {delivery.attempts} to {delivery.url} failed ({e}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                continue

            delivery.status = DELIVERY_DELIVERED
            delivery.last_error = None
            await self.store.save(delivery)
            logger.info(f"Webhook {delivery.event} delivered to {delivery.url} (attempt {delivery.attempts})")
            return delivery

        return delivery

    async def dispatch_payment_complete(self, job: PaymentJob) -> Optional[WebhookDelivery]:
        """Deliver `payment.complete` for a finished job; None if the merchant has no webhook."""
        try:
            merchant = await self.merchants.find(job.merchant_address)
            if merchant is None or not merchant.webhook_url:
                return None

            delivery = WebhookDelivery(
                job_id=job.job_id,
                merchant_address=merchant.address,
                url=merchant.webhook_url,
                event=EVENT_PAYMENT_COMPLETE,
                payload=self.build_payment_payload(job),
            )
            await self.store.save(delivery)
            return await self.deliver(delivery)
        except Exception:
            logger.exception(f"Webhook dispatch error for job {job.job_id}")
            return None

    def notify_payment_complete(self, job: PaymentJob) -> asyncio.Task:
        """Fire-and-forget variant used by the orchestrator."""
        task = asyncio.create_task(self.dispatch_payment_complete(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send_test(self, merchant_address: str) -> WebhookDelivery:
        """
        Send a `webhook.test` event to the merchant's configured URL.

        Raises:
            NotFoundError: Unknown merchant
            InvalidInputError: No webhook URL configured
        """
        merchant = await self.merchants.get(merchant_address)
        if not merchant.webhook_url:
            raise InvalidInputError(f"Merchant {merchant.address} has no webhook URL")

        delivery = WebhookDelivery(
            job_id=None,
            merchant_address=merchant.address,
            url=merchant.webhook_url,
            event=EVENT_TEST,
            payload={
                "event": EVENT_TEST,
                "merchantAddress": merchant.address,
                "timestamp": int(time.time() * 1000),
            },
        )
        await self.store.save(delivery)
        return await self.deliver(delivery)

    async def list_deliveries(self, merchant_address: str) -> List[WebhookDelivery]:
        return await self.store.list_for_merchant(merchant_address)

    async def close(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
