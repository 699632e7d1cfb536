import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from arcpay.bridge.gateway import (
    BURN_INTENT_MAX_FEE,
    Attestation,
    GatewayCache,
    GatewayClient,
    burn_intent_typed_data,
)
from arcpay.config.networks import TESTNET
from arcpay.errors import BridgeError, TransientStepError

BASE_SEPOLIA = TESTNET.source_chain("base-sepolia")
DEPOSITOR = "0x" + "ab" * 20
RECIPIENT = "0x1111111111111111111111111111111111111111"
INFO = {
    "domains": [
        {
            "domain": 6,
            "walletContract": {"address": "0x" + "77" * 20},
            "minterContract": {"address": "0x" + "22" * 20},
        }
    ]
}


class RecordingCustody:
    def __init__(self):
        self.calls = []

    async def execute_contract_call(self, wallet_id, contract_address, **kwargs):
        self.calls.append((wallet_id, contract_address, kwargs))
        return f"challenge-{len(self.calls)}"

    async def sign_typed_data(self, wallet_id, typed_data):
        self.calls.append((wallet_id, "sign", typed_data))
        return "0x" + "99" * 65


def make_gateway(handler, custody=None, providers=None) -> GatewayClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayClient(TESTNET, custody or RecordingCustody(), providers=providers, client=client, poll_interval=0)


def info_handler(routes):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/info":
            return httpx.Response(200, json=INFO)
        return routes(request)

    return handler


@pytest.mark.asyncio
async def test_cache_uses_api_contracts_and_falls_back_to_config():
    gateway = make_gateway(info_handler(lambda request: httpx.Response(404)))

    base = await gateway.cache.contracts(6)
    arc = await gateway.cache.contracts(TESTNET.destination.domain)

    assert base.wallet == "0x" + "77" * 20
    assert arc.wallet == TESTNET.gateway.wallet_contract
    assert not gateway.cache.is_stale


@pytest.mark.asyncio
async def test_unreachable_info_uses_configured_contracts():
    cache = GatewayCache(
        TESTNET.gateway, client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    )
    contracts = await cache.contracts(6)

    assert contracts.minter == TESTNET.gateway.minter_contract


@pytest.mark.asyncio
async def test_approve_is_raw_calldata_and_deposit_uses_signature():
    custody = RecordingCustody()
    gateway = make_gateway(info_handler(lambda request: httpx.Response(404)), custody=custody)

    await gateway.submit_approve("w-1", BASE_SEPOLIA, Decimal("10.5"))
    await gateway.submit_deposit("w-1", BASE_SEPOLIA, Decimal("10.5"))

    (_, approve_to, approve), (_, deposit_to, deposit) = custody.calls
    assert approve_to == BASE_SEPOLIA.usdc
    assert approve["call_data"].startswith("0x095ea7b3")
    assert deposit_to == "0x" + "77" * 20
    assert deposit["abi_function_signature"] == "deposit(address,uint256)"
    assert deposit["abi_parameters"] == [BASE_SEPOLIA.usdc, 10_500_000]


@pytest.mark.asyncio
async def test_burn_intent_and_typed_data():
    gateway = make_gateway(info_handler(lambda request: httpx.Response(404)))
    intent = await gateway.build_burn_intent(BASE_SEPOLIA, DEPOSITOR, RECIPIENT, Decimal("10.011"), salt="0x" + "00" * 32)

    spec = intent["spec"]
    assert spec["sourceDomain"] == 6
    assert spec["destinationDomain"] == 26
    assert spec["value"] == 10_011_000
    assert spec["sourceDepositor"] == spec["sourceSigner"] == "0x" + "0" * 24 + "ab" * 20
    assert spec["destinationRecipient"].endswith("11" * 20)
    assert intent["maxFee"] == BURN_INTENT_MAX_FEE

    typed = burn_intent_typed_data(intent)
    assert typed["primaryType"] == "BurnIntent"
    assert typed["message"]["spec"]["value"] == "10011000"
    assert typed["message"]["maxFee"] == str(BURN_INTENT_MAX_FEE)
    json.dumps(typed)


@pytest.mark.asyncio
async def test_submit_burn_intents_posts_batch():
    posted = []

    def routes(request):
        posted.append(json.loads(request.content))
        return httpx.Response(201, json=[{"transferId": "t-1", "attestation": "0xa1", "signature": "0x51"}])

    gateway = make_gateway(info_handler(routes))
    intent = await gateway.build_burn_intent(BASE_SEPOLIA, DEPOSITOR, RECIPIENT, Decimal("1"))
    attestation = await gateway.submit_burn_intents([(intent, "0xsig")])

    assert attestation.transfer_id == "t-1"
    assert posted[0][0]["signature"] == "0xsig"
    assert posted[0][0]["burnIntent"]["spec"]["value"] == "1000000"
    # Ready attestations are cached; no lookup needed
    assert (await gateway.wait_for_attestation("t-1", timeout=1)).attestation == "0xa1"


@pytest.mark.asyncio
async def test_indexer_lag_is_transient_and_rejections_are_fatal():
    responses = iter(
        [
            httpx.Response(400, text='{"message": "Insufficient balance for depositor"}'),
            httpx.Response(400, text='{"message": "invalid signature"}'),
        ]
    )
    gateway = make_gateway(info_handler(lambda request: next(responses)))
    intent = await gateway.build_burn_intent(BASE_SEPOLIA, DEPOSITOR, RECIPIENT, Decimal("1"))

    with pytest.raises(TransientStepError):
        await gateway.submit_burn_intents([(intent, "0xsig")])
    with pytest.raises(BridgeError):
        await gateway.submit_burn_intents([(intent, "0xsig")])


@pytest.mark.asyncio
async def test_attestation_pending_until_ready():
    responses = iter(
        [
            httpx.Response(404),
            httpx.Response(200, json={"status": "PENDING"}),
            httpx.Response(200, json={"status": "COMPLETE", "attestation": "0xa1", "signature": "0x51"}),
        ]
    )
    gateway = make_gateway(info_handler(lambda request: next(responses)))

    attestation = await gateway.wait_for_attestation("t-9", timeout=5)

    assert attestation.is_ready
    assert attestation.signature == "0x51"


@pytest.mark.asyncio
async def test_failed_transfer_raises_bridge_error():
    gateway = make_gateway(info_handler(lambda request: httpx.Response(200, json={"status": "FAILED"})))
    with pytest.raises(BridgeError):
        await gateway.fetch_attestation("t-9")


@pytest.mark.asyncio
async def test_mint_transaction_targets_minter():
    gateway = make_gateway(info_handler(lambda request: httpx.Response(404)))
    tx = await gateway.build_mint_transaction(
        Attestation(transfer_id="t-1", attestation="0x" + "aa" * 10, signature="0x" + "bb" * 65)
    )

    assert tx.to == TESTNET.gateway.minter_contract
    assert tx.gas == 400000

    with pytest.raises(BridgeError):
        await gateway.build_mint_transaction(Attestation(transfer_id="t-2"))


@pytest.mark.asyncio
async def test_available_balance_reads_gateway_wallet():
    def contract(address, abi):
        async def call():
            return 2_500_000

        return SimpleNamespace(
            functions=SimpleNamespace(availableBalance=lambda token, depositor: SimpleNamespace(call=call))
        )

    class Providers:
        async def web3(self, chain_key):
            return SimpleNamespace(eth=SimpleNamespace(contract=contract))

    gateway = make_gateway(info_handler(lambda request: httpx.Response(404)), providers=Providers())

    assert await gateway.available_balance(BASE_SEPOLIA, DEPOSITOR) == Decimal("2.5")
