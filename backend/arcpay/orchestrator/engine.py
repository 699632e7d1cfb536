"""
Payment orchestrator.

Drives a payment job through the state machine:

    SCANNING -> ROUTING -> AWAITING_CONFIRMATION -> SWAPPING ->
    GATEWAY_DEPOSITING -> GATEWAY_TRANSFERRING -> MINTING -> PAYING -> COMPLETE

Each job gets at most one execution pass (an asyncio task) per process. A
pass runs steps until the job completes, fails, needs the payer's
confirmation, or hits a transient error that outlives its retries.

Every on-chain action is recorded twice in `tx_hashes`: once when it is
submitted (`submitted["<step>:<chain>"]`) and once when it is confirmed
(`<step>[<chain>]`). A pass that finds a confirmed hash skips the action and
one that finds only a submitted hash waits for it instead of sending again,
so retries and restarts never double-spend.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from web3 import AsyncWeb3, Web3

from ..accounts.session_keys import SessionService
from ..bridge.gas_funder import GasFunder
from ..bridge.gateway import GatewayClient
from ..chain.abi import ERC20_ABI, PAYMENT_ROUTER_ABI, encode_call, quantize_usdc, units_to_usdc, usdc_to_units
from ..chain.transactions import TransactionSender, TxRequest
from ..config.networks import ChainConfig, NetworkConfig
from ..errors import (
    ArcpayError,
    ConfigurationError,
    CustodyError,
    FatalStepError,
    JobStateError,
    NotFoundError,
    TransactionRevertedError,
    TransientStepError,
)
from ..jobs.models import JobStatus, PaymentJob, utcnow
from ..jobs.store import JobStore
from ..merchants.service import MerchantService
from ..routing.planner import STEP_SWAP, FundingPlan, RoutePlanner, parse_usdc_amount
from ..scanner.balances import BalanceScanner, BalanceSnapshot, validate_address
from ..swap.base import USDC_SYMBOL, SwapProvider
from ..webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TTL = 1800  # seconds
DEFAULT_STEP_MAX_ATTEMPTS = 3
DEFAULT_STEP_RETRY_BASE = 2.0  # seconds
DEFAULT_CUSTODY_TIMEOUT = 300  # seconds
DEFAULT_ATTESTATION_TIMEOUT = 1200  # seconds, below the stuck-job timeout

EMPTY_PAYMENT_REF = b"\x00" * 32

# Keys in tx_hashes that hold bookkeeping rather than confirmed hashes
SUBMITTED = "submitted"
REVERTED = "reverted"
BRIDGED = "bridged"


class _PassStopped(Exception):
    """The job was moved by someone else; the current pass must stop."""


class PaymentOrchestrator:
    """Creates payment jobs and runs their execution passes."""

    def __init__(
        self,
        network: NetworkConfig,
        store: JobStore,
        scanner: BalanceScanner,
        planner: RoutePlanner,
        swap_provider: SwapProvider,
        sender: TransactionSender,
        gateway: GatewayClient,
        sessions: SessionService,
        merchants: MerchantService,
        webhooks: Optional[WebhookDispatcher] = None,
        gas_funder: Optional[GasFunder] = None,
        payment_router_address: str = "",
        bridge_fee_per_chain: Decimal = Decimal("0"),
        confirmation_ttl_seconds: int = DEFAULT_CONFIRMATION_TTL,
        step_max_attempts: int = DEFAULT_STEP_MAX_ATTEMPTS,
        step_retry_base_seconds: float = DEFAULT_STEP_RETRY_BASE,
        custody_timeout_seconds: Optional[float] = DEFAULT_CUSTODY_TIMEOUT,
        attestation_timeout_seconds: Optional[float] = DEFAULT_ATTESTATION_TIMEOUT,
    ) -> None:
        self.network = network
        self.store = store
        self.scanner = scanner
        self.planner = planner
        self.swap_provider = swap_provider
        self.sender = sender
        self.gateway = gateway
        self.sessions = sessions
        self.merchants = merchants
        self.webhooks = webhooks
        self.gas_funder = gas_funder
        self.payment_router_address = payment_router_address
        self.bridge_fee_per_chain = Decimal(bridge_fee_per_chain)
        self.confirmation_ttl_seconds = confirmation_ttl_seconds
        self.step_max_attempts = max(1, step_max_attempts)
        self.step_retry_base_seconds = step_retry_base_seconds
        self.custody_timeout_seconds = custody_timeout_seconds
        self.attestation_timeout_seconds = attestation_timeout_seconds

        self._tasks: Dict[str, asyncio.Task] = {}
        self._snapshots: Dict[str, BalanceSnapshot] = {}
        self._handlers: Dict[JobStatus, Callable[[PaymentJob], Awaitable[None]]] = {
            JobStatus.SCANNING: self._step_scanning,
            JobStatus.ROUTING: self._step_routing,
            JobStatus.SWAPPING: self._step_swapping,
            JobStatus.GATEWAY_DEPOSITING: self._step_depositing,
            JobStatus.GATEWAY_TRANSFERRING: self._step_transferring,
            JobStatus.MINTING: self._step_minting,
            JobStatus.PAYING: self._step_paying,
        }

    # --- Public operations -------------------------------------------------------------

    async def quote(self, wallet_address: str, target_amount) -> FundingPlan:
        """
        Scan `wallet_address` and plan `target_amount` USDC without creating a job.

        Raises:
            InvalidInputError: Bad address or amount
            SwapProviderError: A needed swap quote failed
        """
        address = validate_address(wallet_address)
        amount = parse_usdc_amount(target_amount)
        balances = await self.scanner.scan(address)
        return await self.planner.plan(balances, amount)

    async def create_job(
        self,
        payer_address: str,
        merchant_address: str,
        amount,
        label: Optional[str] = None,
        payment_ref: Optional[str] = None,
        skip_confirmation: bool = False,
        subscription_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> PaymentJob:
        """
        Persist a SCANNING job and start its execution pass.

        `expires_at` (a payment link's expiry) also caps the confirmation deadline.

        Raises:
            InvalidInputError: Bad payer/merchant address or amount
        """
        job = PaymentJob(
            payer_address=validate_address(payer_address),
            merchant_address=validate_address(merchant_address),
            target_amount=parse_usdc_amount(amount),
            label=label,
            payment_ref=payment_ref,
            skip_confirmation=skip_confirmation,
            subscription_id=subscription_id,
            expires_at=expires_at,
        )
        job = await self.store.create(job)
        logger.info(
            f"Created job {job.job_id}: {job.target_amount} USDC from {job.payer_address} "
            f"to {job.merchant_address}"
        )
        self.start(job.job_id)
        return job

    async def confirm(self, job_id: str) -> PaymentJob:
        """
        Accept the frozen quote and start execution.

        Raises:
            NotFoundError: Unknown job
            JobStateError: Job is not awaiting confirmation or has expired
        """
        job = await self.get_status(job_id)
        if job.status != JobStatus.AWAITING_CONFIRMATION:
            raise JobStateError(f"Job {job_id} is {job.status.value}, not awaiting confirmation")
        if job.expires_at is not None and job.expires_at <= utcnow():
            await self.store.update_status(job_id, JobStatus.EXPIRED, expected_status=JobStatus.AWAITING_CONFIRMATION)
            raise JobStateError(f"Job {job_id} has expired")

        job = await self.store.update_status(
            job_id, JobStatus.SWAPPING, expected_status=JobStatus.AWAITING_CONFIRMATION
        )
        logger.info(f"Job {job_id} confirmed by payer")
        self.start(job_id)
        return job

    async def retry(self, job_id: str) -> PaymentJob:
        """
        Resume a FAILED job at the first step with missing hashes.

        Retrying a COMPLETE job is a no-op.

        Raises:
            NotFoundError: Unknown job
            JobStateError: Job is neither FAILED nor COMPLETE
        """
        job = await self.get_status(job_id)
        if job.status == JobStatus.COMPLETE:
            return job
        if job.status != JobStatus.FAILED:
            raise JobStateError(f"Only failed jobs can be retried; job {job_id} is {job.status.value}")

        # A pass left over from before the failure may still be polling
        await self.stop_pass(job_id)
        resume_at = self.resume_point(job)
        job = await self.store.update_status(job_id, resume_at, expected_status=JobStatus.FAILED)
        logger.info(f"Retrying job {job_id} from {resume_at.value}")
        self.start(job_id)
        return job

    async def resume_incomplete(self) -> List[str]:
        """Restart passes for every job left mid-flight by a previous process."""
        jobs = await self.store.find_resumable()
        resumed = [job.job_id for job in jobs if self.start(job.job_id) is not None]
        if resumed:
            logger.info(f"Resumed {len(resumed)} incomplete job(s)")
        return resumed

    async def get_status(self, job_id: str) -> PaymentJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def resume_point(self, job: PaymentJob) -> JobStatus:
        """The status a retry restarts from, derived from recorded hashes."""
        hashes = job.tx_hashes
        if hashes.get("pay") or hashes.get("mint"):
            return JobStatus.PAYING
        if hashes.get("transfer"):
            return JobStatus.MINTING

        chains = job.plan_chains
        deposits = job.hashes("deposit")
        if chains and all(chain in deposits for chain in chains):
            return JobStatus.GATEWAY_TRANSFERRING

        swap_chains = [step["chain"] for step in job.source_plan or [] if step["type"] == STEP_SWAP]
        swaps = job.hashes("swap")
        if swap_chains and all(chain in swaps for chain in swap_chains):
            return JobStatus.GATEWAY_DEPOSITING
        if job.source_plan is not None:
            return JobStatus.SWAPPING
        return JobStatus.SCANNING

    # --- Pass management ---------------------------------------------------------------

    def start(self, job_id: str) -> Optional[asyncio.Task]:
        """Start an execution pass unless one is already running for `job_id`."""
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            return None
        task = asyncio.create_task(self._run(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._forget(job_id, task))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait_for_pass(self, job_id: str) -> None:
        """Await the active pass for `job_id`, if any."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def stop_pass(self, job_id: str) -> None:
        """Cancel the active pass for `job_id` and wait until it has unwound."""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Job {job_id}: stale pass cancelled")

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, job_id: str) -> None:
        while True:
            job = await self.store.get(job_id)
            if job is None or job.status.is_terminal or job.status == JobStatus.AWAITING_CONFIRMATION:
                return
            handler = self._handlers[job.status]

            try:
                await self._run_step(job, handler)
            except _PassStopped:
                logger.info(f"Job {job_id}: pass stopped, job was moved elsewhere")
                return
            except TransientStepError as e:
                logger.warning(
                    f"Job {job_id}: {job.status.value} still failing after {self.step_max_attempts} "
                    f"attempts, leaving it for the sweep: {e}"
                )
                return
            except asyncio.CancelledError:
                raise
            except ArcpayError as e:
                logger.error(f"Job {job_id}: {job.status.value} failed: {e}")
                await self._fail(job, str(e))
                return
            except Exception as e:
                logger.exception(f"Job {job_id}: unexpected error in {job.status.value}")
                await self._fail(job, str(e) or e.__class__.__name__)
                return

    async def _run_step(self, job: PaymentJob, handler: Callable[[PaymentJob], Awaitable[None]]) -> None:
        attempt = 1
        while True:
            try:
                await handler(job)
                return
            except TransientStepError as e:
                if attempt >= self.step_max_attempts:
                    raise
                delay = self.step_retry_base_seconds * 2 ** (attempt - 1)
                logger.warning(
                    f"Job {job.job_id}: transient error in {job.status.value} "
                    f"(attempt {attempt}/{self.step_max_attempts}), retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
                attempt += 1

            current = await self.store.get(job.job_id)
            if current is None or current.status != job.status:
                raise _PassStopped()
            job = current

    async def _fail(self, job: PaymentJob, message: str) -> None:
        try:
            await self.store.update_status(job.job_id, JobStatus.FAILED, error=message, expected_status=job.status)
        except (JobStateError, NotFoundError) as e:
            logger.warning(f"Job {job.job_id}: could not record failure ({e})")

    async def _advance(self, job: PaymentJob, status: JobStatus, **fields: Any) -> PaymentJob:
        """Move `job` on, provided nobody else moved it in the meantime."""
        current = await self.store.get(job.job_id)
        if current is None or current.status != job.status:
            raise _PassStopped()
        try:
            return await self.store.update_status(job.job_id, status, expected_status=job.status, **fields)
        except JobStateError:
            raise _PassStopped() from None

    async def _record(self, job: PaymentJob, tx_hashes: Dict[str, Any]) -> PaymentJob:
        """Merge progress into the job without changing its status."""
        try:
            return await self.store.update_status(
                job.job_id, job.status, tx_hashes=tx_hashes, expected_status=job.status
            )
        except JobStateError:
            raise _PassStopped() from None

    # --- Idempotent transaction execution -----------------------------------------------

    async def _execute_tx(
        self,
        job: PaymentJob,
        step: str,
        chain_key: Optional[str],
        submit: Callable[[], Awaitable[str]],
        confirm: Callable[[str], Awaitable[str]],
        still_known: Optional[Callable[[str], Awaitable[bool]]] = None,
    ) -> str:
        """
        Submit and confirm one on-chain action at most once per job.

        `submit` returns a tx hash or a custody challenge id; `confirm` waits
        for it and returns the confirmed tx hash. `still_known` lets a
        re-entered pass resend an EOA transaction the node has dropped.
        Per-chain steps are recorded under `step[chain_key]`, single ones
        (chain_key None) under `step`.
        """
        current = await self.store.get(job.job_id) or job
        key = f"{step}:{chain_key}" if chain_key else step
        confirmed = current.hashes(step).get(chain_key) if chain_key else current.tx_hashes.get(step)
        if confirmed:
            return confirmed

        submitted = current.hashes(SUBMITTED).get(key)
        if submitted and submitted == current.hashes(REVERTED).get(key):
            submitted = None
        if submitted and still_known is not None and not await still_known(submitted):
            logger.warning(f"Job {job.job_id}: {key} transaction {submitted} was dropped, resubmitting")
            submitted = None

        if not submitted:
            submitted = await submit()
            await self._record(job, {SUBMITTED: {key: submitted}})
            logger.info(f"Job {job.job_id}: {key} submitted ({submitted})")

        try:
            tx_hash = await confirm(submitted)
        except (TransactionRevertedError, CustodyError):
            await self._record(job, {REVERTED: {key: submitted}})
            raise

        await self._record(job, {step: {chain_key: tx_hash}} if chain_key else {step: tx_hash})
        logger.info(f"Job {job.job_id}: {key} confirmed ({tx_hash})")
        return tx_hash

    def _eoa_confirm(self, chain_key: str) -> Callable[[str], Awaitable[str]]:
        async def confirm(tx_hash: str) -> str:
            return (await self.sender.wait_for_receipt(chain_key, tx_hash)).tx_hash

        return confirm

    def _eoa_known(self, chain_key: str) -> Callable[[str], Awaitable[bool]]:
        async def known(tx_hash: str) -> bool:
            return await self.sender.transaction_exists(chain_key, tx_hash)

        return known

    async def _custody_confirm(self, challenge_id: str) -> str:
        tx = await self.gateway.custody.wait_for_transaction(challenge_id, self.custody_timeout_seconds)
        if not tx.tx_hash:
            raise CustodyError(f"Circle transaction {challenge_id} completed without a txHash")
        return tx.tx_hash

    async def _eoa_tx(
        self,
        job: PaymentJob,
        step: str,
        chain_key: str,
        tx: TxRequest,
        key: str,
        record_chain: bool = True,
    ) -> str:
        """Session-key transaction through `_execute_tx`."""
        return await self._execute_tx(
            job,
            step,
            chain_key if record_chain else None,
            lambda: self.sender.broadcast(chain_key, tx, key),
            self._eoa_confirm(chain_key),
            self._eoa_known(chain_key),
        )

    # --- Steps -------------------------------------------------------------------------

    async def _step_scanning(self, job: PaymentJob) -> None:
        session = await self.sessions.get_session(job.payer_address)
        self._snapshots[job.job_id] = await self.scanner.scan(session.session_address)
        await self._advance(job, JobStatus.ROUTING)

    async def _step_routing(self, job: PaymentJob) -> None:
        balances = self._snapshots.pop(job.job_id, None)
        if balances is None:
            session = await self.sessions.get_session(job.payer_address)
            balances = await self.scanner.scan(session.session_address)

        plan = await self.planner.plan(balances, job.target_amount)
        if not plan.sufficient_funds:
            raise FatalStepError(f"Insufficient funds. Shortfall: {plan.shortfall} USDC", step="routing")

        if job.skip_confirmation:
            await self._advance(job, JobStatus.SWAPPING, source_plan=plan.source_plan(), quote=plan.quote())
            return

        deadline = utcnow() + timedelta(seconds=self.confirmation_ttl_seconds)
        if job.expires_at is not None and job.expires_at < deadline:
            deadline = job.expires_at
        await self._advance(
            job,
            JobStatus.AWAITING_CONFIRMATION,
            source_plan=plan.source_plan(),
            quote=plan.quote(),
            expires_at=deadline,
        )

    async def _step_swapping(self, job: PaymentJob) -> None:
        swaps = [step for step in job.source_plan or [] if step["type"] == STEP_SWAP]
        pending = [step for step in swaps if step["chain"] not in job.hashes("swap")]
        if pending:
            session = await self.sessions.get_session(job.payer_address)
            key = await self.sessions.signing_key(job.payer_address)
            results = await asyncio.gather(
                *(self._swap_on_chain(job, step, session.session_address, key) for step in pending),
                return_exceptions=True,
            )
            errors = [result for result in results if isinstance(result, BaseException)]
            if errors:
                # Fatal errors win over transient ones
                fatal = [error for error in errors if not isinstance(error, TransientStepError)]
                raise (fatal or errors)[0]

        await self._advance(job, JobStatus.GATEWAY_DEPOSITING)

    async def _swap_on_chain(self, job: PaymentJob, step: Dict[str, Any], recipient: str, key: str) -> str:
        chain = self.network.source_chain(step["chain"])

        async def submit() -> str:
            swap = await self.swap_provider.build_transaction(
                step["asset"], USDC_SYMBOL, Decimal(step["amount"]), recipient, chain.chain_id
            )
            tx = TxRequest(to=swap.to, data=swap.data, value=swap.value, gas=swap.gas_estimate)
            return await self.sender.broadcast(chain.key, tx, key)

        return await self._execute_tx(
            job, "swap", chain.key, submit, self._eoa_confirm(chain.key), self._eoa_known(chain.key)
        )

    def _planned_amount(self, job: PaymentJob, chain_key: str) -> Decimal:
        return sum(
            (Decimal(step["estimatedUsdcOut"]) for step in job.source_plan or [] if step["chain"] == chain_key),
            Decimal("0"),
        )

    async def _bridged_amount(self, job: PaymentJob, chain: ChainConfig, session_address: str) -> Decimal:
        """
        USDC moved into the Gateway from `chain`, fixed the first time it is computed.

        Swap output may land below the estimate, so chains with a swap step
        are capped at the session's actual USDC balance.
        """
        recorded = job.hashes(BRIDGED).get(chain.key)
        if recorded is not None:
            return Decimal(recorded)

        amount = self._planned_amount(job, chain.key)
        has_swap = any(
            step["chain"] == chain.key and step["type"] == STEP_SWAP for step in job.source_plan or []
        )
        if has_swap:
            raw = await self.sender.token_balance(chain.key, chain.usdc, session_address)
            amount = min(amount, quantize_usdc(units_to_usdc(raw)))
        if amount <= self.bridge_fee_per_chain:
            raise FatalStepError(
                f"Only {amount} USDC available on {chain.key}, not enough to cover the bridge fee",
                step="deposit",
            )

        await self._record(job, {BRIDGED: {chain.key: str(amount)}})
        return amount

    async def _step_depositing(self, job: PaymentJob) -> None:
        session = await self.sessions.get_session(job.payer_address)
        key = await self.sessions.signing_key(job.payer_address)

        for chain_key in job.plan_chains:
            if chain_key in job.hashes("deposit"):
                continue
            chain = self.network.source_chain(chain_key)
            wallet = await self.sessions.ensure_custodial_wallet(job.payer_address, chain)
            amount = await self._bridged_amount(job, chain, session.session_address)

            if chain_key not in job.hashes("fund"):
                if self.gas_funder is not None:
                    await self.gas_funder.ensure_gas(chain.key, session.session_address)
                transfer = TxRequest(
                    to=AsyncWeb3.to_checksum_address(chain.usdc),
                    data=encode_call(
                        ERC20_ABI, "transfer", [AsyncWeb3.to_checksum_address(wallet.address), usdc_to_units(amount)]
                    ),
                )
                await self._eoa_tx(job, "fund", chain.key, transfer, key)

            if self.gas_funder is not None:
                await self.gas_funder.ensure_gas(chain.key, wallet.address)

            await self._execute_tx(
                job,
                "approve",
                chain.key,
                lambda: self.gateway.submit_approve(wallet.wallet_id, chain, amount),
                self._custody_confirm,
            )
            await self._execute_tx(
                job,
                "deposit",
                chain.key,
                lambda: self.gateway.submit_deposit(wallet.wallet_id, chain, amount),
                self._custody_confirm,
            )
            logger.info(f"Job {job.job_id}: deposited {amount} USDC into the Gateway from {chain.key}")

        await self._advance(job, JobStatus.GATEWAY_TRANSFERRING)

    async def _step_transferring(self, job: PaymentJob) -> None:
        transfer_id = job.tx_hashes.get("transfer")
        if not transfer_id:
            session = await self.sessions.get_session(job.payer_address)
            current = await self.get_status(job.job_id)
            signed = []
            for chain_key in job.plan_chains:
                chain = self.network.source_chain(chain_key)
                wallet = await self.sessions.ensure_custodial_wallet(job.payer_address, chain)
                bridged = await self._bridged_amount(current, chain, session.session_address)
                value = bridged - self.bridge_fee_per_chain

                available = await self.gateway.available_balance(chain, wallet.address)
                if available < bridged:
                    raise TransientStepError(
                        f"Gateway balance on {chain.key} is {available} USDC, waiting for {bridged}",
                        step="transfer",
                    )

                intent = await self.gateway.build_burn_intent(chain, wallet.address, session.session_address, value)
                signature = await self.gateway.sign_burn_intent(wallet.wallet_id, intent)
                signed.append((intent, signature))

            attestation = await self.gateway.submit_burn_intents(signed)
            transfer_id = attestation.transfer_id
            await self._record(job, {"transfer": transfer_id})

        await self.gateway.wait_for_attestation(transfer_id, self.attestation_timeout_seconds)
        await self._advance(job, JobStatus.MINTING)

    async def _step_minting(self, job: PaymentJob) -> None:
        transfer_id = job.tx_hashes.get("transfer")
        if not transfer_id:
            raise FatalStepError(f"Job {job.job_id} has no Gateway transfer to mint", step="mint")
        destination = self.network.destination.key
        key = await self.sessions.signing_key(job.payer_address)

        async def submit() -> str:
            attestation = await self.gateway.wait_for_attestation(transfer_id, self.attestation_timeout_seconds)
            tx = await self.gateway.build_mint_transaction(attestation)
            return await self.sender.broadcast(destination, tx, key)

        await self._execute_tx(
            job, "mint", None, submit, self._eoa_confirm(destination), self._eoa_known(destination)
        )
        await self._advance(job, JobStatus.PAYING)

    async def _step_paying(self, job: PaymentJob) -> None:
        if not job.tx_hashes.get("pay"):
            if not self.payment_router_address:
                raise ConfigurationError("PAYMENT_ROUTER_ADDRESS is not set")
            destination = self.network.destination
            router = AsyncWeb3.to_checksum_address(self.payment_router_address)
            key = await self.sessions.signing_key(job.payer_address)
            gross = usdc_to_units(Decimal((job.quote or {}).get("merchantReceives", job.target_amount)))
            ref = Web3.keccak(text=job.payment_ref) if job.payment_ref else EMPTY_PAYMENT_REF

            approve = TxRequest(
                to=AsyncWeb3.to_checksum_address(destination.usdc),
                data=encode_call(ERC20_ABI, "approve", [router, gross]),
            )
            await self._eoa_tx(job, "payApprove", destination.key, approve, key, record_chain=False)

            merchant = await self.merchants.find(job.merchant_address)
            if merchant is not None and merchant.splits:
                data = encode_call(
                    PAYMENT_ROUTER_ABI,
                    "splitPay",
                    [[split.address for split in merchant.splits], [split.bps for split in merchant.splits], gross, ref],
                )
            else:
                data = encode_call(
                    PAYMENT_ROUTER_ABI, "pay", [AsyncWeb3.to_checksum_address(job.merchant_address), gross, ref]
                )
            await self._eoa_tx(job, "pay", destination.key, TxRequest(to=router, data=data), key, record_chain=False)

        completed = await self._advance(job, JobStatus.COMPLETE)
        logger.info(f"Job {job.job_id} complete: {job.target_amount} USDC paid to {job.merchant_address}")
        if self.webhooks is not None:
            self.webhooks.notify_payment_complete(completed)
