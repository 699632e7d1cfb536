"""
Payment job model and status state machine.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


# Bookkeeping entries in tx_hashes that are not shown to clients
INTERNAL_HASH_KEYS = ("submitted", "reverted", "bridged")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class JobStatus(str, Enum):
    SCANNING = "SCANNING"
    ROUTING = "ROUTING"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    SWAPPING = "SWAPPING"
    GATEWAY_DEPOSITING = "GATEWAY_DEPOSITING"
    GATEWAY_TRANSFERRING = "GATEWAY_TRANSFERRING"
    MINTING = "MINTING"
    PAYING = "PAYING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_executing(self) -> bool:
        """States where on-chain work may be in flight."""
        return self in EXECUTION_STATES

    def can_transition(self, target: "JobStatus") -> bool:
        """
        Whether `self -> target` is a legal edge.

        Staying in the same non-terminal state is allowed (progress merges).
        FAILED may only be left towards a resumable state (retry).
        """
        if self == target:
            return not self.is_terminal
        return target in _TRANSITIONS[self]


TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.EXPIRED})

EXECUTION_STATES: FrozenSet[JobStatus] = frozenset(
    {
        JobStatus.SWAPPING,
        JobStatus.GATEWAY_DEPOSITING,
        JobStatus.GATEWAY_TRANSFERRING,
        JobStatus.MINTING,
        JobStatus.PAYING,
    }
)

# States a job may still be expired from (nothing irreversible has happened)
PRE_EXECUTION_STATES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.SCANNING, JobStatus.ROUTING, JobStatus.AWAITING_CONFIRMATION}
)

_FORWARD = {
    JobStatus.SCANNING: {JobStatus.ROUTING},
    JobStatus.ROUTING: {JobStatus.AWAITING_CONFIRMATION, JobStatus.SWAPPING},
    JobStatus.AWAITING_CONFIRMATION: {JobStatus.SWAPPING},
    JobStatus.SWAPPING: {JobStatus.GATEWAY_DEPOSITING},
    JobStatus.GATEWAY_DEPOSITING: {JobStatus.GATEWAY_TRANSFERRING},
    JobStatus.GATEWAY_TRANSFERRING: {JobStatus.MINTING},
    JobStatus.MINTING: {JobStatus.PAYING},
    JobStatus.PAYING: {JobStatus.COMPLETE},
}

# Where a retry from FAILED may resume
RETRY_TARGETS: FrozenSet[JobStatus] = frozenset({JobStatus.SCANNING}) | EXECUTION_STATES

_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    status: frozenset(targets | {JobStatus.FAILED, JobStatus.EXPIRED}) for status, targets in _FORWARD.items()
}
_TRANSITIONS[JobStatus.FAILED] = RETRY_TARGETS
_TRANSITIONS[JobStatus.COMPLETE] = frozenset()
_TRANSITIONS[JobStatus.EXPIRED] = frozenset()


def merge_tx_hashes(current: Dict[str, Any], update: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge `update` into `current` without ever removing a key.

    Nested maps merge leaf by leaf; `None` leaves in the update are ignored.
    """
    merged = copy.deepcopy(current)
    for key, value in (update or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_tx_hashes(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class PaymentJob:
    """A single cross-chain payment and its persisted progress."""

    payer_address: str
    merchant_address: str
    target_amount: Decimal
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    label: Optional[str] = None
    payment_ref: Optional[str] = None
    status: JobStatus = JobStatus.SCANNING
    source_plan: Optional[List[Dict[str, Any]]] = None
    quote: Optional[Dict[str, Any]] = None
    tx_hashes: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    subscription_id: Optional[str] = None
    skip_confirmation: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def hashes(self, step: str) -> Dict[str, Any]:
        """Per-chain hashes recorded for `step` (empty dict if none)."""
        value = self.tx_hashes.get(step)
        return value if isinstance(value, dict) else {}

    @property
    def plan_chains(self) -> List[str]:
        chains: List[str] = []
        for step in self.source_plan or []:
            if step["chain"] not in chains:
                chains.append(step["chain"])
        return chains

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "sourcePlan": self.source_plan,
            "quote": self.quote,
            "txHashes": {key: value for key, value in self.tx_hashes.items() if key not in INTERNAL_HASH_KEYS},
            "error": self.error,
            "payerAddress": self.payer_address,
            "merchantAddress": self.merchant_address,
            "targetAmount": str(self.target_amount),
            "label": self.label,
            "paymentRef": self.payment_ref,
            "subscriptionId": self.subscription_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "expiresAt": isoformat(self.expires_at),
        }
