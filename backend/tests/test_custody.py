import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from arcpay.custody.circle import CircleWalletsClient
from arcpay.errors import ConfigurationError, CustodyError, TransientStepError
from arcpay.polling import PollTimeoutError

ENTITY_SECRET = "ab" * 32

PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
PUBLIC_PEM = PRIVATE_KEY.public_key().public_bytes(
    serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
).decode()


def decrypt_secret(ciphertext: str) -> str:
    plain = PRIVATE_KEY.decrypt(
        base64.b64decode(ciphertext),
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )
    return plain.hex()


class CircleApi:
    """MockTransport handler that records requests and replays canned states."""

    def __init__(self, states=None):
        self.requests = []
        self.states = list(states or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/w3s/config/entity/publicKey":
            return httpx.Response(200, json={"data": {"publicKey": PUBLIC_PEM}})
        if path == "/v1/w3s/developer/walletSets":
            return httpx.Response(201, json={"data": {"walletSet": {"id": "set-1"}}})
        if path == "/v1/w3s/developer/wallets":
            body = json.loads(request.content)
            wallet = {"id": "w-1", "address": "0x" + "ab" * 20, "blockchain": body["blockchains"][0]}
            return httpx.Response(201, json={"data": {"wallets": [wallet]}})
        if path == "/v1/w3s/developer/transactions/contractExecution":
            return httpx.Response(201, json={"data": {"id": "challenge-1", "state": "INITIATED"}})
        if path.startswith("/v1/w3s/transactions/"):
            state = self.states.pop(0) if self.states else {"state": "PENDING"}
            return httpx.Response(200, json={"data": {"transaction": state}})
        if path == "/v1/w3s/developer/sign/typedData":
            return httpx.Response(200, json={"data": {"signature": "0x" + "11" * 65}})
        return httpx.Response(404)

    def bodies(self, path):
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


def make_client(api, **kwargs) -> CircleWalletsClient:
    return CircleWalletsClient(
        api_key="test-api-key",
        entity_secret=ENTITY_SECRET,
        poll_interval=0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_wallet_creates_wallet_set_once():
    api = CircleApi()
    client = make_client(api)

    first = await client.create_wallet("BASE-SEPOLIA")
    await client.create_wallet("ETH-SEPOLIA")

    assert first.wallet_id == "w-1"
    assert first.blockchain == "BASE-SEPOLIA"
    assert len(api.bodies("/v1/w3s/developer/walletSets")) == 1
    bodies = api.bodies("/v1/w3s/developer/wallets")
    assert [body["walletSetId"] for body in bodies] == ["set-1", "set-1"]
    assert bodies[0]["accountType"] == "EOA"
    # Each mutating request carries its own key and a decryptable secret
    assert bodies[0]["idempotencyKey"] != bodies[1]["idempotencyKey"]
    assert decrypt_secret(bodies[0]["entitySecretCiphertext"]) == ENTITY_SECRET


@pytest.mark.asyncio
async def test_configured_wallet_set_is_reused():
    api = CircleApi()
    client = make_client(api, wallet_set_id="configured-set")

    assert await client.get_wallet_set_id() == "configured-set"
    assert api.requests == []


@pytest.mark.asyncio
async def test_contract_call_stringifies_integers():
    api = CircleApi()
    client = make_client(api)

    challenge = await client.execute_contract_call(
        "w-1", "0x" + "cd" * 20, abi_function_signature="deposit(address,uint256)", abi_parameters=["0xusdc", 10**6]
    )

    assert challenge == "challenge-1"
    (body,) = api.bodies("/v1/w3s/developer/transactions/contractExecution")
    assert body["abiParameters"] == ["0xusdc", "1000000"]
    assert body["feeLevel"] == "HIGH"
    assert "callData" not in body


@pytest.mark.asyncio
async def test_contract_call_needs_exactly_one_encoding():
    client = make_client(CircleApi())
    with pytest.raises(ValueError):
        await client.execute_contract_call("w-1", "0x" + "cd" * 20)


@pytest.mark.asyncio
async def test_wait_for_transaction_polls_until_complete():
    api = CircleApi(states=[{"state": "QUEUED"}, {"state": "SENT"}, {"state": "COMPLETE", "txHash": "0xabc"}])
    tx = await make_client(api).wait_for_transaction("challenge-1", timeout=5)

    assert tx.tx_hash == "0xabc"
    assert tx.is_complete


@pytest.mark.asyncio
async def test_failed_transaction_raises_custody_error():
    api = CircleApi(states=[{"state": "FAILED", "errorReason": "INSUFFICIENT_NATIVE_TOKEN"}])
    with pytest.raises(CustodyError, match="INSUFFICIENT_NATIVE_TOKEN"):
        await make_client(api).wait_for_transaction("challenge-1", timeout=5)


@pytest.mark.asyncio
async def test_wait_times_out():
    with pytest.raises(PollTimeoutError):
        await make_client(CircleApi()).wait_for_transaction("challenge-1", timeout=0)


@pytest.mark.asyncio
async def test_http_errors_are_classified():
    def handler(request):
        if request.url.path.endswith("/1"):
            return httpx.Response(503)
        return httpx.Response(400, text="bad wallet")

    client = make_client(handler)
    with pytest.raises(TransientStepError):
        await client.poll_transaction("1")
    with pytest.raises(CustodyError, match="HTTP 400"):
        await client.poll_transaction("2")


@pytest.mark.asyncio
async def test_sign_typed_data_serializes_payload():
    api = CircleApi()
    signature = await make_client(api).sign_typed_data("w-1", {"primaryType": "BurnIntent"})

    assert signature.startswith("0x")
    (body,) = api.bodies("/v1/w3s/developer/sign/typedData")
    assert json.loads(body["data"]) == {"primaryType": "BurnIntent"}


@pytest.mark.asyncio
async def test_missing_credentials_are_configuration_errors():
    client = CircleWalletsClient(api_key="", entity_secret="")
    with pytest.raises(ConfigurationError):
        await client.poll_transaction("1")
