"""
Payment jobs: model, status state machine and storage.
"""

from .models import (
    EXECUTION_STATES,
    PRE_EXECUTION_STATES,
    TERMINAL_STATES,
    JobStatus,
    PaymentJob,
    merge_tx_hashes,
    utcnow,
)
from .store import InMemoryJobStore, JobStore

__all__ = [
    "EXECUTION_STATES",
    "PRE_EXECUTION_STATES",
    "TERMINAL_STATES",
    "JobStatus",
    "PaymentJob",
    "merge_tx_hashes",
    "utcnow",
    "InMemoryJobStore",
    "JobStore",
]
