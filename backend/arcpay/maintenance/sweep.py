"""
Periodic maintenance.

Every interval:
- jobs still waiting for confirmation past their deadline become EXPIRED
- in-flight jobs (scanning through paying) without progress for the stuck timeout become FAILED
- due subscriptions are charged

Each job and subscription is handled on its own; one failure is logged and
the rest of the sweep continues.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from ..errors import JobStateError, NotFoundError
from ..jobs.models import JobStatus, utcnow
from ..jobs.store import JobStore
from ..subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)

STUCK_JOB_ERROR = "Job timed out (stuck in processing)"
DEFAULT_INTERVAL = 60  # seconds
DEFAULT_STUCK_TIMEOUT = 1800  # seconds


class MaintenanceSweep:
    def __init__(
        self,
        store: JobStore,
        subscriptions: Optional[SubscriptionService] = None,
        interval_seconds: float = DEFAULT_INTERVAL,
        stuck_timeout_seconds: float = DEFAULT_STUCK_TIMEOUT,
    ) -> None:
        self.store = store
        self.subscriptions = subscriptions
        self.interval_seconds = interval_seconds
        self.stuck_timeout_seconds = stuck_timeout_seconds

    async def expire_jobs(self, now: Optional[datetime] = None) -> int:
        """Move overdue pre-execution jobs to EXPIRED; returns how many moved."""
        expired = 0
        for job in await self.store.find_expirable(now or utcnow()):
            try:
                await self.store.update_status(job.job_id, JobStatus.EXPIRED, expected_status=job.status)
                expired += 1
            except (JobStateError, NotFoundError) as e:
                logger.info(f"Skipped expiring job {job.job_id}: {e}")
            except Exception:
                logger.exception(f"Failed to expire job {job.job_id}")
        if expired:
            logger.info(f"Expired {expired} job(s)")
        return expired

    async def fail_stuck_jobs(self, now: Optional[datetime] = None) -> int:
        """Fail in-flight jobs that made no progress within the stuck timeout."""
        failed = 0
        for job in await self.store.find_stuck(self.stuck_timeout_seconds, now or utcnow()):
            try:
                await self.store.update_status(
                    job.job_id, JobStatus.FAILED, error=STUCK_JOB_ERROR, expected_status=job.status
                )
                failed += 1
                logger.warning(f"Job {job.job_id} stuck in {job.status.value}, marked FAILED")
            except (JobStateError, NotFoundError) as e:
                logger.info(f"Skipped failing job {job.job_id}: {e}")
            except Exception:
                logger.exception(f"Failed to mark stuck job {job.job_id}")
        return failed

    async def tick_subscriptions(self, now: Optional[datetime] = None) -> int:
        if self.subscriptions is None:
            return 0
        job_ids = await self.subscriptions.tick(now)
        return len(job_ids)

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run every sweep unit once; a failing unit does not stop the others."""
        results: Dict[str, int] = {}
        units = (
            ("expired", self.expire_jobs),
            ("stuck", self.fail_stuck_jobs),
            ("charged", self.tick_subscriptions),
        )
        for name, unit in units:
            try:
                results[name] = await unit(now)
            except Exception:
                logger.exception(f"Maintenance unit '{name}' failed")
                results[name] = 0
        return results

    async def run_forever(self) -> None:
        logger.info(f"Maintenance sweep running every {self.interval_seconds}s")
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
