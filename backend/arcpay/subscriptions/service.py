"""
Subscription lifecycle and recurring charges.

create (ACTIVE, unauthorized) -> authorize (payer attaches a session
credential) -> charged on every tick while due -> cancelled (terminal).

A charge moves `next_charge_at` forward before the payment job is created,
so a crash or a failing job never charges the same period twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..accounts.session_keys import SessionService
from ..errors import InvalidInputError, NotAuthorizedError, NotFoundError
from ..jobs.models import utcnow
from ..orchestrator.engine import PaymentOrchestrator
from ..routing.planner import parse_usdc_amount
from ..scanner.balances import validate_address
from .models import Subscription, SubscriptionStatus
from .store import SubscriptionStore

logger = logging.getLogger(__name__)

DEFAULT_CHARGE_LABEL = "Subscription charge"


class SubscriptionService:
    def __init__(
        self,
        store: SubscriptionStore,
        orchestrator: PaymentOrchestrator,
        sessions: SessionService,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.sessions = sessions

    async def create(
        self,
        merchant_address: str,
        payer_address: str,
        amount,
        interval_days: int,
        label: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Raises:
            InvalidInputError: Bad address, amount <= 0 or interval < 1 day
        """
        if isinstance(interval_days, bool) or not isinstance(interval_days, int) or interval_days < 1:
            raise InvalidInputError(f"interval_days must be an integer >= 1, got {interval_days!r}")

        subscription = Subscription(
            merchant_address=validate_address(merchant_address),
            payer_address=validate_address(payer_address),
            amount=parse_usdc_amount(amount),
            interval_days=interval_days,
            next_charge_at=(now or utcnow()) + timedelta(days=interval_days),
            label=label,
        )
        await self.store.save(subscription)
        logger.info(
            f"Created subscription {subscription.subscription_id}: {subscription.amount} USDC "
            f"every {interval_days}d from {subscription.payer_address} to {subscription.merchant_address}"
        )
        return subscription

    async def get(self, subscription_id: str) -> Subscription:
        subscription = await self.store.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def list_for_merchant(self, merchant_address: str) -> List[Subscription]:
        return await self.store.list_for_merchant(validate_address(merchant_address))

    async def list_for_payer(self, payer_address: str) -> List[Subscription]:
        return await self.store.list_for_payer(validate_address(payer_address))

    async def authorize(
        self,
        subscription_id: str,
        payer_address: str,
        session_key_ciphertext: str,
        session_address: str,
        session_expires_at: datetime,
    ) -> Subscription:
        """
        Attach the payer's encrypted session credential.

        Raises:
            NotFoundError: Unknown subscription
            NotAuthorizedError: `payer_address` is not the subscription's payer
            InvalidInputError: Subscription is cancelled or the credential is incomplete
        """
        subscription = await self.get(subscription_id)
        if subscription.payer_address.lower() != (payer_address or "").lower():
            raise NotAuthorizedError("Not the payer for this subscription")
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidInputError("Subscription is not active")
        if not session_key_ciphertext or not session_address or session_expires_at is None:
            raise InvalidInputError("A complete session credential is required")

        subscription.session_key_ciphertext = session_key_ciphertext
        subscription.session_address = validate_address(session_address)
        subscription.session_expires_at = session_expires_at
        await self.store.save(subscription)
        logger.info(f"Subscription {subscription_id} authorized with session {subscription.session_address}")
        return subscription

    async def cancel(self, subscription_id: str, caller_address: str) -> Subscription:
        """
        Raises:
            NotFoundError: Unknown subscription
            NotAuthorizedError: Caller is neither the payer nor the merchant
        """
        subscription = await self.get(subscription_id)
        caller = (caller_address or "").lower()
        if caller not in (subscription.payer_address.lower(), subscription.merchant_address.lower()):
            raise NotAuthorizedError("Not authorized to cancel this subscription")
        if subscription.status == SubscriptionStatus.CANCELLED:
            return subscription

        subscription.status = SubscriptionStatus.CANCELLED
        await self.store.save(subscription)
        logger.info(f"Subscription {subscription_id} cancelled by {caller_address}")
        return subscription

    async def charge(self, subscription: Subscription, now: Optional[datetime] = None) -> str:
        """
        Create one auto-executing payment job for `subscription`.

        Returns:
            The new job id

        Raises:
            InvalidInputError: Subscription is cancelled or not authorized
        """
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidInputError(f"Subscription {subscription.subscription_id} is not active")
        if not subscription.is_authorized:
            raise InvalidInputError(f"Subscription {subscription.subscription_id} not yet authorized by payer")

        subscription.next_charge_at = (now or utcnow()) + timedelta(days=subscription.interval_days)
        await self.store.save(subscription)

        await self.sessions.import_session(
            subscription.session_address,
            subscription.session_key_ciphertext,
            subscription.session_expires_at,
            owner_address=subscription.payer_address,
        )

        job = await self.orchestrator.create_job(
            payer_address=subscription.session_address,
            merchant_address=subscription.merchant_address,
            amount=subscription.amount,
            label=subscription.label or DEFAULT_CHARGE_LABEL,
            skip_confirmation=True,
            subscription_id=subscription.subscription_id,
        )
        subscription.last_job_id = job.job_id
        await self.store.save(subscription)
        logger.info(f"Charged subscription {subscription.subscription_id} -> job {job.job_id}")
        return job.job_id

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Charge every due subscription; one failure never blocks the others."""
        now = now or utcnow()
        due = await self.store.find_due(now)
        if not due:
            return []

        logger.info(f"Charging {len(due)} due subscription(s)")
        job_ids: List[str] = []
        for subscription in due:
            try:
                job_ids.append(await self.charge(subscription, now=now))
            except Exception as e:
                logger.error(f"Failed to charge subscription {subscription.subscription_id}: {e}")
        return job_ids
