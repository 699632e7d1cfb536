import json
from decimal import Decimal

import httpx
import pytest

from conftest import MERCHANT
from arcpay.errors import InvalidInputError
from arcpay.jobs.models import JobStatus, PaymentJob
from arcpay.merchants.service import MerchantService
from arcpay.merchants.store import InMemoryMerchantStore
from arcpay.webhooks.dispatcher import (
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    EVENT_PAYMENT_COMPLETE,
    SIGNATURE_HEADER,
    InMemoryDeliveryStore,
    WebhookDispatcher,
    verify_signature,
)

SECRET = "webhook-secret"
HOOK_URL = "https://merchant.example/hooks/arcpay"


async def make_dispatcher(handler, webhook_url=HOOK_URL):
    merchants = MerchantService(InMemoryMerchantStore())
    await merchants.register(MERCHANT, "Coffee Shop")
    if webhook_url:
        await merchants.set_webhook_url(MERCHANT, webhook_url)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookDispatcher(
        merchants, InMemoryDeliveryStore(), SECRET, retry_delays=(0, 0, 0), client=client
    )


def completed_job() -> PaymentJob:
    return PaymentJob(
        payer_address="0x1111111111111111111111111111111111111111",
        merchant_address=MERCHANT,
        target_amount=Decimal("10"),
        status=JobStatus.COMPLETE,
        quote={"merchantReceives": "10.000000"},
        tx_hashes={"pay": "0xpay"},
        label="Order #7",
        payment_ref="order-7",
    )


@pytest.mark.asyncio
async def test_delivery_is_signed_and_recorded():
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(200)

    dispatcher = await make_dispatcher(handler)
    delivery = await dispatcher.dispatch_payment_complete(completed_job())

    assert delivery.status == DELIVERY_DELIVERED
    assert delivery.attempts == 1
    (request,) = received
    body = request.content.decode()
    assert verify_signature(body, request.headers[SIGNATURE_HEADER], SECRET)
    payload = json.loads(body)
    assert payload["event"] == EVENT_PAYMENT_COMPLETE
    assert payload["amount"] == "10.000000"
    assert payload["txHash"] == "0xpay"
    assert payload["paymentRef"] == "order-7"


@pytest.mark.asyncio
async def test_failing_endpoint_is_retried_then_marked_failed():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    dispatcher = await make_dispatcher(handler)
    delivery = await dispatcher.dispatch_payment_complete(completed_job())

    assert len(calls) == 3
    assert delivery.status == DELIVERY_FAILED
    assert delivery.attempts == 3
    assert delivery.response_code == 500
    (stored,) = await dispatcher.list_deliveries(MERCHANT)
    assert stored.status == DELIVERY_FAILED


@pytest.mark.asyncio
async def test_second_attempt_succeeds():
    responses = iter([httpx.Response(503), httpx.Response(200)])
    dispatcher = await make_dispatcher(lambda request: next(responses))

    delivery = await dispatcher.dispatch_payment_complete(completed_job())

    assert delivery.status == DELIVERY_DELIVERED
    assert delivery.attempts == 2
    assert delivery.last_error is None


@pytest.mark.asyncio
async def test_network_errors_count_as_attempts():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = await make_dispatcher(handler)
    delivery = await dispatcher.dispatch_payment_complete(completed_job())

    assert delivery.status == DELIVERY_FAILED
    assert "ConnectError" in delivery.last_error


@pytest.mark.asyncio
async def test_merchant_without_webhook_is_skipped():
    dispatcher = await make_dispatcher(lambda request: httpx.Response(200), webhook_url=None)

    assert await dispatcher.dispatch_payment_complete(completed_job()) is None
    with pytest.raises(InvalidInputError):
        await dispatcher.send_test(MERCHANT)


@pytest.mark.asyncio
async def test_notify_runs_in_background():
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(204)

    dispatcher = await make_dispatcher(handler)
    task = dispatcher.notify_payment_complete(completed_job())
    delivery = await task
    await dispatcher.close()

    assert delivery.status == DELIVERY_DELIVERED
    assert len(received) == 1


@pytest.mark.asyncio
async def test_send_test_event():
    dispatcher = await make_dispatcher(lambda request: httpx.Response(200))
    delivery = await dispatcher.send_test(MERCHANT)

    assert delivery.event == "webhook.test"
    assert delivery.job_id is None
    assert delivery.status == DELIVERY_DELIVERED
