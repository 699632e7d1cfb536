"""
Exception hierarchy shared by every arcpay component.

Errors fall into three groups:
- Input errors, rejected before any job is created or moved
- Transient step failures, retried in place without failing the job
- Fatal step failures, which move the job to FAILED with a readable cause
"""

from __future__ import annotations

from typing import Optional


class ArcpayError(Exception):
    """Base exception for arcpay errors."""

    pass


# --- Input / lookup errors ---------------------------------------------------


class InvalidInputError(ArcpayError):
    """Bad address, non-positive amount, unknown chain key and similar."""

    pass


class UnknownChainError(InvalidInputError):
    """Raised when a chain key or chain id is not configured."""

    pass


class NotFoundError(ArcpayError):
    """Raised when a job, merchant, product or subscription does not exist."""

    pass


class JobStateError(ArcpayError):
    """Raised when an operation is not allowed in the job's current status."""

    pass


class JobStoreError(ArcpayError):
    """Raised when an update would violate the job record contract."""

    pass


class ConfigurationError(ArcpayError):
    """Raised when a required setting or contract address is missing."""

    pass


# --- Step failures -----------------------------------------------------------


class StepError(ArcpayError):
    """Failure inside one orchestrator step."""

    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step


class TransientStepError(StepError):
    """Retryable failure: RPC timeout, provider hiccup, pending attestation."""

    pass


class FatalStepError(StepError):
    """Unrecoverable failure: the job must move to FAILED."""

    pass


class RPCProviderError(TransientStepError):
    """No healthy RPC endpoint, or a chain read failed."""

    pass


class SwapProviderError(TransientStepError):
    """Swap quote or transaction build failed."""

    pass


class TransactionRevertedError(FatalStepError):
    """An on-chain transaction was mined with status != 1."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, step: Optional[str] = None) -> None:
        super().__init__(message, step=step)
        self.tx_hash = tx_hash


class CustodyError(FatalStepError):
    """The custodial signing service reported an explicit failure state."""

    pass


class BridgeError(FatalStepError):
    """The bridge attestation service rejected or failed a transfer."""

    pass


class WebhookError(ArcpayError):
    """A webhook delivery attempt failed; never surfaces outside the dispatcher."""

    def __init__(self, message: str, response_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.response_code = response_code


class NotAuthorizedError(ArcpayError):
    """The caller is not allowed to act on this resource (e.g. not the payer)."""

    pass
