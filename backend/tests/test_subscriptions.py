from datetime import timedelta

import pytest

from conftest import MERCHANT
from arcpay.errors import InvalidInputError, NotAuthorizedError, NotFoundError
from arcpay.jobs.models import JobStatus, utcnow
from arcpay.subscriptions import InMemorySubscriptionStore, SubscriptionService, SubscriptionStatus

PAYER = "0x1111111111111111111111111111111111111111"
STRANGER = "0x5555555555555555555555555555555555555555"


class BrokenOrchestrator:
    async def create_job(self, **kwargs):
        raise RuntimeError("store unavailable")


class SessionRestoreFails:
    def __init__(self, sessions):
        self.sessions = sessions

    async def import_session(self, *args, **kwargs):
        raise RuntimeError("session store unavailable")

    def __getattr__(self, name):
        return getattr(self.sessions, name)


def make_service(harness, orchestrator=None) -> SubscriptionService:
    return SubscriptionService(InMemorySubscriptionStore(), orchestrator or harness.orchestrator, harness.sessions)


async def authorized_subscription(service, harness, interval_days=1):
    session = await harness.sessions.create_session(owner_address=PAYER)
    subscription = await service.create(MERCHANT, PAYER, "9.99", interval_days, label="Pro plan")
    return await service.authorize(
        subscription.subscription_id, PAYER, session.encrypted_key, session.session_address, session.expires_at
    )


@pytest.mark.asyncio
async def test_due_subscription_is_charged_from_session(harness):
    service = make_service(harness)
    subscription = await authorized_subscription(service, harness)
    charge_time = subscription.next_charge_at + timedelta(seconds=1)

    job_ids = await service.tick(charge_time)
    assert len(job_ids) == 1
    await harness.orchestrator.wait_for_pass(job_ids[0])

    job = await harness.store.get(job_ids[0])
    assert job.status == JobStatus.COMPLETE
    assert job.payer_address == subscription.session_address
    assert job.subscription_id == subscription.subscription_id
    assert job.label == "Pro plan"

    charged = await service.get(subscription.subscription_id)
    assert charged.last_job_id == job.job_id
    assert charged.next_charge_at == charge_time + timedelta(days=1)
    # Not due again until the next period
    assert await service.tick(charge_time) == []


@pytest.mark.asyncio
async def test_failed_charge_still_advances_schedule(harness):
    service = make_service(harness, orchestrator=BrokenOrchestrator())
    subscription = await authorized_subscription(service, harness, interval_days=7)
    charge_time = subscription.next_charge_at

    assert await service.tick(charge_time) == []

    after = await service.get(subscription.subscription_id)
    assert after.next_charge_at == charge_time + timedelta(days=7)
    assert after.last_job_id is None


@pytest.mark.asyncio
async def test_failed_session_restore_still_advances_schedule(harness):
    sessions = SessionRestoreFails(harness.sessions)
    service = SubscriptionService(InMemorySubscriptionStore(), harness.orchestrator, sessions)
    subscription = await authorized_subscription(service, harness, interval_days=7)
    charge_time = subscription.next_charge_at

    assert await service.tick(charge_time) == []

    after = await service.get(subscription.subscription_id)
    assert after.next_charge_at == charge_time + timedelta(days=7)
    assert await service.tick(charge_time) == []
    assert await harness.store.list_jobs() == []


@pytest.mark.asyncio
async def test_unauthorized_and_cancelled_are_not_due(harness):
    service = make_service(harness)
    pending = await service.create(MERCHANT, PAYER, "5", 1)
    authorized = await authorized_subscription(service, harness)
    await service.cancel(authorized.subscription_id, MERCHANT)

    later = utcnow() + timedelta(days=2)
    assert await service.tick(later) == []
    assert not pending.is_authorized
    with pytest.raises(InvalidInputError):
        await service.charge(pending)


@pytest.mark.asyncio
async def test_only_the_payer_can_authorize(harness):
    service = make_service(harness)
    subscription = await service.create(MERCHANT, PAYER, "5", 30)

    with pytest.raises(NotAuthorizedError):
        await service.authorize(subscription.subscription_id, STRANGER, "00:11", STRANGER, utcnow())
    with pytest.raises(InvalidInputError):
        await service.authorize(subscription.subscription_id, PAYER, "", PAYER, utcnow())


@pytest.mark.asyncio
async def test_cancel_rules(harness):
    service = make_service(harness)
    subscription = await service.create(MERCHANT, PAYER, "5", 30)

    with pytest.raises(NotAuthorizedError):
        await service.cancel(subscription.subscription_id, STRANGER)

    cancelled = await service.cancel(subscription.subscription_id, PAYER)
    again = await service.cancel(subscription.subscription_id, MERCHANT)
    assert cancelled.status == again.status == SubscriptionStatus.CANCELLED

    with pytest.raises(InvalidInputError):
        await service.authorize(subscription.subscription_id, PAYER, "00:11", PAYER, utcnow())


@pytest.mark.asyncio
@pytest.mark.parametrize("interval", [0, -1, 1.5, True])
async def test_create_rejects_bad_interval(harness, interval):
    with pytest.raises(InvalidInputError):
        await make_service(harness).create(MERCHANT, PAYER, "5", interval)


@pytest.mark.asyncio
async def test_listing_and_public_view(harness):
    service = make_service(harness)
    subscription = await authorized_subscription(service, harness)

    assert [sub.subscription_id for sub in await service.list_for_payer(PAYER)] == [subscription.subscription_id]
    assert len(await service.list_for_merchant(MERCHANT)) == 1
    assert await service.list_for_payer(STRANGER) == []

    data = subscription.to_dict()
    assert data["authorized"] is True
    assert "sessionKeyCiphertext" not in data
    assert all("ciphertext" not in key.lower() for key in data)
    with pytest.raises(NotFoundError):
        await service.get("missing")
