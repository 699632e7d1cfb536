"""
Circle developer-controlled wallets client.

Thin async REST client for the custodial signing service:
- Wallet set lookup / lazy creation (cached for the process)
- EOA wallet creation per blockchain
- Contract execution (ABI signature or raw calldata) returning a challenge id
- Transaction polling until a terminal state
- EIP-712 typed-data signing

Every mutating request carries an idempotency key and a fresh entity secret
ciphertext (RSA-OAEP/SHA-256 of the entity secret with Circle's public key).
No private key ever leaves Circle.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ..errors import ConfigurationError, CustodyError, TransientStepError
from ..polling import wait_until

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.circle.com"
DEFAULT_TIMEOUT = 30.0

FEE_LEVEL_HIGH = "HIGH"

# Transaction states reported by Circle
SUCCESS_STATES = frozenset({"CONFIRMED", "COMPLETE"})
FAILURE_STATES = frozenset({"FAILED", "CANCELLED", "DENIED"})

WALLET_SET_NAME = "arcpay-gateway-wallets"


@dataclass
class CustodialWallet:
    wallet_id: str
    address: str
    blockchain: str


@dataclass
class CustodyTransaction:
    """State of a contract execution challenge."""

    challenge_id: str
    state: str
    tx_hash: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.state in SUCCESS_STATES

    @property
    def is_failed(self) -> bool:
        return self.state in FAILURE_STATES


class CircleWalletsClient:
    """Async client for Circle's developer-controlled wallets API."""

    def __init__(
        self,
        api_key: str,
        entity_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        wallet_set_id: Optional[str] = None,
        poll_interval: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.entity_secret = entity_secret
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self._wallet_set_id = wallet_set_id.strip() if wallet_set_id else None
        self._public_key_pem: Optional[str] = None
        self._client = client
        self._owns_client = client is None

    # --- HTTP plumbing ----------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._client

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("CIRCLE_API_KEY is not set")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, body: Optional[Dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._get_client().request(method, url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientStepError(f"Circle {method} {path} failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientStepError(f"Circle {method} {path} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise CustodyError(
                f"Circle {method} {path} rejected with HTTP {response.status_code}: {response.text[:300]}"
            )
        return response.json().get("data") or {}

    # --- Entity secret ------------------------------------------------------------

    async def _public_key(self) -> str:
        if self._public_key_pem is None:
            data = await self._request("GET", "/v1/w3s/config/entity/publicKey")
            self._public_key_pem = data.get("publicKey")
            if not self._public_key_pem:
                raise CustodyError("Circle did not return an entity public key")
        return self._public_key_pem

    async def entity_secret_ciphertext(self) -> str:
        """Encrypt the entity secret for a single request."""
        if not self.entity_secret:
            raise ConfigurationError("CIRCLE_ENTITY_SECRET is not set")
        public_key = serialization.load_pem_public_key((await self._public_key()).encode())
        ciphertext = public_key.encrypt(
            bytes.fromhex(self.entity_secret),
            padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
        )
        return base64.b64encode(ciphertext).decode()

    async def _signed_body(self, **fields) -> Dict[str, Any]:
        body = {
            "idempotencyKey": str(uuid.uuid4()),
            "entitySecretCiphertext": await self.entity_secret_ciphertext(),
        }
        body.update({key: value for key, value in fields.items() if value is not None})
        return body

    # --- Wallets ------------------------------------------------------------------------

    async def get_wallet_set_id(self) -> str:
        """Return the configured wallet set id, creating one on first use."""
        if self._wallet_set_id:
            return self._wallet_set_id

        data = await self._request(
            "POST", "/v1/w3s/developer/walletSets", await self._signed_body(name=WALLET_SET_NAME)
        )
        wallet_set_id = (data.get("walletSet") or {}).get("id")
        if not wallet_set_id:
            raise CustodyError("Failed to create Circle wallet set")

        self._wallet_set_id = wallet_set_id
        logger.info(f"Created Circle wallet set {wallet_set_id}; set CIRCLE_WALLET_SET_ID to reuse it")
        return wallet_set_id

    async def create_wallet(self, blockchain: str) -> CustodialWallet:
        """Create a single EOA wallet on `blockchain` (e.g. BASE-SEPOLIA)."""
        body = await self._signed_body(
            walletSetId=await self.get_wallet_set_id(),
            blockchains=[blockchain],
            count=1,
            accountType="EOA",
        )
        data = await self._request("POST", "/v1/w3s/developer/wallets", body)
        wallets: List[Dict] = data.get("wallets") or []
        if not wallets:
            raise CustodyError(f"Circle did not return a wallet for {blockchain}")

        wallet = wallets[0]
        logger.info(f"Created Circle wallet {wallet['id']} ({wallet['address']}) on {blockchain}")
        return CustodialWallet(wallet_id=wallet["id"], address=wallet["address"], blockchain=blockchain)

    # --- Contract execution -------------------------------------------------------------

    async def execute_contract_call(
        self,
        wallet_id: str,
        contract_address: str,
        abi_function_signature: Optional[str] = None,
        abi_parameters: Optional[List[Any]] = None,
        call_data: Optional[str] = None,
        fee_level: str = FEE_LEVEL_HIGH,
    ) -> str:
        """
        Submit a contract call from a custodial wallet.

        Exactly one of `abi_function_signature` or `call_data` must be given.

        Returns:
            Challenge (transaction) id to poll
        """
        if bool(abi_function_signature) == bool(call_data):
            raise ValueError("Pass either abi_function_signature or call_data")

        body = await self._signed_body(
            walletId=wallet_id,
            contractAddress=contract_address,
            abiFunctionSignature=abi_function_signature,
            abiParameters=[str(p) if isinstance(p, int) else p for p in abi_parameters]
            if abi_parameters is not None
            else None,
            callData=call_data,
            feeLevel=fee_level,
        )
        data = await self._request("POST", "/v1/w3s/developer/transactions/contractExecution", body)
        challenge_id = data.get("id")
        if not challenge_id:
            raise CustodyError(f"Circle contract execution returned no id: {data}")
        logger.info(
            f"Circle contract call submitted: wallet={wallet_id}, contract={contract_address}, "
            f"fn={abi_function_signature or 'callData'}, challenge={challenge_id}"
        )
        return challenge_id

    async def poll_transaction(self, challenge_id: str) -> CustodyTransaction:
        """Fetch the current state of a challenge; explicit failures raise CustodyError."""
        data = await self._request("GET", f"/v1/w3s/transactions/{challenge_id}")
        tx = data.get("transaction") or {}
        result = CustodyTransaction(
            challenge_id=challenge_id,
            state=tx.get("state", "PENDING"),
            tx_hash=tx.get("txHash"),
            error_reason=tx.get("errorReason"),
        )
        if result.is_failed:
            raise CustodyError(
                f"Circle transaction {challenge_id} {result.state}: {result.error_reason or 'unknown reason'}"
            )
        return result

    async def wait_for_transaction(self, challenge_id: str, timeout: Optional[float]) -> CustodyTransaction:
        """Poll until the challenge is CONFIRMED/COMPLETE."""
        return await wait_until(
            lambda: self.poll_transaction(challenge_id),
            lambda tx: tx.is_complete,
            timeout=timeout,
            interval=self.poll_interval,
            description=f"Circle transaction {challenge_id}",
        )

    # --- Signing ---------------------------------------------------------------------------

    async def sign_typed_data(self, wallet_id: str, typed_data: Dict[str, Any]) -> str:
        """Sign EIP-712 typed data with a custodial wallet; returns the 0x signature."""
        body = await self._signed_body(walletId=wallet_id, data=json.dumps(typed_data))
        data = await self._request("POST", "/v1/w3s/developer/sign/typedData", body)
        signature = data.get("signature")
        if not signature:
            raise CustodyError("Circle did not return a typed-data signature")
        return signature

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
