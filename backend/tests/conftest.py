"""
Shared fakes for arcpay tests. Nothing here touches the network.
"""

from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from arcpay.accounts.session_keys import InMemorySessionStore, SessionKeyVault, SessionService
from arcpay.bridge.gateway import Attestation
from arcpay.chain.abi import usdc_to_units
from arcpay.chain.transactions import TxRequest, TxResult
from arcpay.config.networks import TESTNET
from arcpay.custody.circle import CustodialWallet, CustodyTransaction
from arcpay.errors import TransactionRevertedError
from arcpay.jobs.store import InMemoryJobStore
from arcpay.merchants.service import MerchantService
from arcpay.merchants.store import InMemoryMerchantStore
from arcpay.orchestrator.engine import PaymentOrchestrator
from arcpay.routing.planner import RoutePlanner
from arcpay.scanner.balances import ChainBalance
from arcpay.swap.base import SwapProvider, SwapQuote, SwapTransaction

ENCRYPTION_KEY = "11" * 32
MERCHANT = "0x2222222222222222222222222222222222222222"
ROUTER = "0x3333333333333333333333333333333333333333"
BRIDGE_FEE = Decimal("0.0055")
DESTINATION_GAS = Decimal("0.011")


def balance(chain_key: str, usdc="0", native="0", error=None) -> ChainBalance:
    chain = TESTNET.source_chain(chain_key)
    return ChainBalance(
        chain=chain.key,
        chain_id=chain.chain_id,
        native=Decimal(native),
        native_symbol=chain.native_symbol,
        usdc=Decimal(usdc),
        has_swap=chain.has_swap,
        error=error,
    )


def snapshot(**usdc_by_chain) -> Dict[str, ChainBalance]:
    """snapshot(base_sepolia="20") -> balances with USDC on the named chains."""
    result = {}
    for chain in TESTNET.source_chains:
        amount = usdc_by_chain.get(chain.key.replace("-", "_"), "0")
        result[chain.key] = balance(chain.key, usdc=amount)
    return result


class FakeScanner:
    def __init__(self, balances: Dict[str, ChainBalance]):
        self.balances = balances
        self.scanned: List[str] = []

    async def scan(self, address):
        self.scanned.append(address)
        return self.balances


class FakeSwapProvider(SwapProvider):
    """Fixed price with a 0.3% fee."""

    name = "fake"

    def __init__(self, network=TESTNET, price=Decimal("2000"), fee_rate=Decimal("0.003")):
        super().__init__(network)
        self.price = price
        self.fee_rate = fee_rate
        self.built: List[Decimal] = []

    async def quote(self, from_asset, to_asset, amount, chain_id):
        gross = Decimal(amount) * self.price
        fee = gross * self.fee_rate
        return SwapQuote(expected_output=gross - fee, fee=fee)

    async def build_transaction(self, from_asset, to_asset, amount, recipient, chain_id):
        self.built.append(Decimal(amount))
        return SwapTransaction(to="0x" + "aa" * 20, data="0x7ff36ab5", value=1, gas_estimate=150000)


class FakeSender:
    def __init__(self, usdc_balance: Decimal = Decimal("1000000")):
        self.sent: List[tuple] = []
        self.revert_to: set = set()
        self.reverted_hashes: set = set()
        self.usdc_balance = usdc_balance

    async def broadcast(self, chain_key: str, tx: TxRequest, private_key: str) -> str:
        self.sent.append((chain_key, tx))
        tx_hash = "0x" + f"{len(self.sent):064x}"
        if tx.to in self.revert_to:
            self.reverted_hashes.add(tx_hash)
        return tx_hash

    async def wait_for_receipt(self, chain_key: str, tx_hash: str) -> TxResult:
        if tx_hash in self.reverted_hashes:
            raise TransactionRevertedError(f"Transaction {tx_hash} reverted on {chain_key}", tx_hash=tx_hash)
        return TxResult(tx_hash=tx_hash, block_number=1, gas_used=21000)

    async def transaction_exists(self, chain_key: str, tx_hash: str) -> bool:
        return True

    async def native_balance(self, chain_key: str, address: str) -> int:
        return 10**18

    async def token_balance(self, chain_key: str, token: str, address: str) -> int:
        return usdc_to_units(self.usdc_balance)

    def calls_to(self, address: str) -> List[TxRequest]:
        return [tx for _, tx in self.sent if tx.to.lower() == address.lower()]


class FakeCustody:
    def __init__(self):
        self.wallets: List[CustodialWallet] = []
        self.waited: List[str] = []

    async def create_wallet(self, blockchain: str) -> CustodialWallet:
        index = len(self.wallets) + 1
        wallet = CustodialWallet(
            wallet_id=f"wallet-{index}", address="0x" + f"{index:040x}", blockchain=blockchain
        )
        self.wallets.append(wallet)
        return wallet

    async def wait_for_transaction(self, challenge_id: str, timeout) -> CustodyTransaction:
        self.waited.append(challenge_id)
        return CustodyTransaction(challenge_id=challenge_id, state="COMPLETE", tx_hash=f"0xhash-{challenge_id}")


class FakeGateway:
    def __init__(self, custody: FakeCustody):
        self.custody = custody
        self.approves: List[tuple] = []
        self.deposits: List[tuple] = []
        self.signed: List[tuple] = []
        self.submissions = 0
        self.submit_error: Optional[Exception] = None

    async def submit_approve(self, wallet_id, chain, amount):
        self.approves.append((chain.key, amount))
        return f"approve-{chain.key}-{len(self.approves)}"

    async def submit_deposit(self, wallet_id, chain, amount):
        self.deposits.append((chain.key, amount))
        return f"deposit-{chain.key}-{len(self.deposits)}"

    async def available_balance(self, chain, depositor):
        return Decimal("1000000")

    async def build_burn_intent(self, chain, depositor, recipient, amount, salt=None):
        return {"chain": chain.key, "depositor": depositor, "recipient": recipient, "value": amount}

    async def sign_burn_intent(self, wallet_id, intent):
        return "0x" + "5" * 130

    async def submit_burn_intents(self, signed_intents):
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions += 1
        self.signed = list(signed_intents)
        return Attestation(transfer_id=f"transfer-{self.submissions}", status="PENDING")

    async def wait_for_attestation(self, transfer_id, timeout):
        return Attestation(transfer_id=transfer_id, status="COMPLETE", attestation="0xa77e", signature="0x5167")

    async def build_mint_transaction(self, attestation):
        return TxRequest(to="0x0022222ABE238Cc2C7Bb1f21003F0a260052475B", data="0xmint", gas=400000)


class FakeWebhooks:
    def __init__(self):
        self.notified = []

    def notify_payment_complete(self, job):
        self.notified.append(job)


@pytest.fixture
def harness():
    """A PaymentOrchestrator wired to fakes; tweak the pieces before creating jobs."""
    custody = FakeCustody()
    scanner = FakeScanner(snapshot(base_sepolia="20"))
    swap_provider = FakeSwapProvider()
    sender = FakeSender()
    gateway = FakeGateway(custody)
    sessions = SessionService(InMemorySessionStore(), SessionKeyVault(ENCRYPTION_KEY), custody=custody)
    merchants = MerchantService(InMemoryMerchantStore())
    webhooks = FakeWebhooks()
    store = InMemoryJobStore()
    planner = RoutePlanner(TESTNET, swap_provider, bridge_fee_per_chain=BRIDGE_FEE, destination_gas=DESTINATION_GAS)

    orchestrator = PaymentOrchestrator(
        network=TESTNET,
        store=store,
        scanner=scanner,
        planner=planner,
        swap_provider=swap_provider,
        sender=sender,
        gateway=gateway,
        sessions=sessions,
        merchants=merchants,
        webhooks=webhooks,
        payment_router_address=ROUTER,
        bridge_fee_per_chain=BRIDGE_FEE,
        step_max_attempts=2,
        step_retry_base_seconds=0,
    )
    return SimpleNamespace(
        orchestrator=orchestrator,
        store=store,
        scanner=scanner,
        swap_provider=swap_provider,
        sender=sender,
        gateway=gateway,
        custody=custody,
        sessions=sessions,
        merchants=merchants,
        webhooks=webhooks,
    )
