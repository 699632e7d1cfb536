"""
Job persistence.

`JobStore` is the contract the orchestrator and the maintenance sweep rely
on; `InMemoryJobStore` implements it for a single process. Updates are
per-field merges so concurrent writers never clobber each other's fields:

- `tx_hashes` is deep-merged and never shrinks
- `source_plan` and `quote` are write-once
- `error` is kept only while the job is FAILED
"""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..errors import JobStateError, JobStoreError, NotFoundError
from .models import (
    PRE_EXECUTION_STATES,
    TERMINAL_STATES,
    JobStatus,
    PaymentJob,
    merge_tx_hashes,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Payment failed"


class JobStore(ABC):
    """Storage contract for payment jobs."""

    @abstractmethod
    async def create(self, job: PaymentJob) -> PaymentJob:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[PaymentJob]:
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        tx_hashes: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        source_plan: Optional[List[Dict[str, Any]]] = None,
        quote: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        expected_status: Optional[JobStatus] = None,
    ) -> PaymentJob:
        """
        Move a job to `status` and merge the given fields.

        Args:
            expected_status: If given, the update only applies while the job
                is still in this status (compare-and-set)

        Raises:
            NotFoundError: Unknown job id
            JobStateError: Illegal transition or `expected_status` mismatch
            JobStoreError: Attempt to change a frozen field
        """
        ...

    @abstractmethod
    async def find_expirable(self, now: Optional[datetime] = None) -> List[PaymentJob]:
        """Pre-execution jobs whose `expires_at` has passed."""
        ...

    @abstractmethod
    async def find_stuck(self, timeout_seconds: float, now: Optional[datetime] = None) -> List[PaymentJob]:
        """Jobs still in flight (not terminal, not awaiting confirmation) not updated for `timeout_seconds`."""
        ...

    @abstractmethod
    async def find_resumable(self) -> List[PaymentJob]:
        """Non-terminal jobs that are not waiting for the payer."""
        ...

    @abstractmethod
    async def list_jobs(self, merchant_address: Optional[str] = None) -> List[PaymentJob]:
        ...


class InMemoryJobStore(JobStore):
    """Process-local job store guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._jobs: Dict[str, PaymentJob] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: PaymentJob) -> PaymentJob:
        async with self._lock:
            if job.job_id in self._jobs:
                raise JobStoreError(f"Job {job.job_id} already exists")
            self._jobs[job.job_id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    async def get(self, job_id: str) -> Optional[PaymentJob]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    @staticmethod
    def _freeze(job: PaymentJob, name: str, value: Any) -> None:
        if value is None:
            return
        current = getattr(job, name)
        if current is not None and current != value:
            raise JobStoreError(f"Job {job.job_id}: {name} is frozen and cannot be changed")
        setattr(job, name, copy.deepcopy(value))

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        tx_hashes: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        source_plan: Optional[List[Dict[str, Any]]] = None,
        quote: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        expected_status: Optional[JobStatus] = None,
    ) -> PaymentJob:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")

            if expected_status is not None and job.status != expected_status:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, expected {expected_status.value}"
                )
            if not job.status.can_transition(status):
                raise JobStateError(f"Job {job_id}: illegal transition {job.status.value} -> {status.value}")

            # Validate frozen fields before touching anything
            updated = copy.deepcopy(job)
            self._freeze(updated, "source_plan", source_plan)
            self._freeze(updated, "quote", quote)

            updated.tx_hashes = merge_tx_hashes(updated.tx_hashes, tx_hashes)
            if expires_at is not None:
                updated.expires_at = expires_at
            if status == JobStatus.FAILED:
                updated.error = error or updated.error or DEFAULT_FAILURE_MESSAGE
            else:
                updated.error = None
            if job.status != status:
                logger.info(f"Job {job_id}: {job.status.value} -> {status.value}")
            updated.status = status
            updated.updated_at = utcnow()

            self._jobs[job_id] = updated
            return copy.deepcopy(updated)

    async def find_expirable(self, now: Optional[datetime] = None) -> List[PaymentJob]:
        now = now or utcnow()
        async with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if job.status in PRE_EXECUTION_STATES and job.expires_at is not None and job.expires_at <= now
            ]

    async def find_stuck(self, timeout_seconds: float, now: Optional[datetime] = None) -> List[PaymentJob]:
        cutoff = (now or utcnow()) - timedelta(seconds=timeout_seconds)
        async with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if job.status not in TERMINAL_STATES
                and job.status != JobStatus.AWAITING_CONFIRMATION
                and job.updated_at <= cutoff
            ]

    async def find_resumable(self) -> List[PaymentJob]:
        async with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if job.status not in TERMINAL_STATES and job.status != JobStatus.AWAITING_CONFIRMATION
            ]

    async def list_jobs(self, merchant_address: Optional[str] = None) -> List[PaymentJob]:
        async with self._lock:
            jobs = [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if merchant_address is None or job.merchant_address.lower() == merchant_address.lower()
            ]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)
