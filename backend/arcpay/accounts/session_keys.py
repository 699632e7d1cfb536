"""
Per-payer session keys.

A session key is a backend-generated EOA that the payer funds and that
executes the payer-side transactions of a payment (swaps, funding the
custodial wallet, mint, pay). Private keys are stored only as AES-256-GCM
ciphertext ("<nonce hex>:<ciphertext hex>") under SESSION_ENCRYPTION_KEY and
are decrypted in memory right before signing.

The record also remembers the custodial (Circle) wallet created for the
payer on each source chain.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_account import Account

from ..config.networks import ChainConfig
from ..custody.circle import CircleWalletsClient, CustodialWallet
from ..errors import ConfigurationError, InvalidInputError, NotFoundError
from ..jobs.models import isoformat, utcnow
from ..scanner.balances import validate_address

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12


class SessionKeyVault:
    """AES-256-GCM encryption of session private keys."""

    def __init__(self, encryption_key_hex: str) -> None:
        self._encryption_key_hex = encryption_key_hex or ""

    def _cipher(self) -> AESGCM:
        key_hex = self._encryption_key_hex.strip()
        if len(key_hex) != 64:
            raise ConfigurationError("SESSION_ENCRYPTION_KEY must be a 64-character hex string (32 bytes)")
        try:
            return AESGCM(bytes.fromhex(key_hex))
        except ValueError as e:
            raise ConfigurationError(f"SESSION_ENCRYPTION_KEY is not valid hex: {e}") from e

    def encrypt(self, private_key: str) -> str:
        raw = private_key[2:] if private_key.startswith("0x") else private_key
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._cipher().encrypt(nonce, raw.encode(), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        """
        Raises:
            ConfigurationError: Malformed ciphertext or wrong encryption key
        """
        nonce_hex, sep, ciphertext_hex = encrypted.partition(":")
        if not sep or not nonce_hex or not ciphertext_hex:
            raise ConfigurationError("Invalid encrypted key format, expected nonce:ciphertext")
        try:
            raw = self._cipher().decrypt(bytes.fromhex(nonce_hex), bytes.fromhex(ciphertext_hex), None)
        except (InvalidTag, ValueError) as e:
            raise ConfigurationError("Session key could not be decrypted") from e
        return f"0x{raw.decode()}"


def generate_session_key() -> Tuple[str, str]:
    """Return a fresh (private key, address) pair."""
    account = Account.create()
    private_key = account.key.hex()
    if not private_key.startswith("0x"):
        private_key = f"0x{private_key}"
    return private_key, account.address


@dataclass
class SessionRecord:
    session_address: str
    encrypted_key: str
    expires_at: datetime
    owner_address: Optional[str] = None
    custodial_wallets: Dict[str, Dict[str, str]] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= utcnow()

    def custodial_wallet(self, chain_key: str) -> Optional[CustodialWallet]:
        wallet = self.custodial_wallets.get(chain_key)
        if not wallet:
            return None
        return CustodialWallet(
            wallet_id=wallet["walletId"], address=wallet["address"], blockchain=wallet.get("blockchain", "")
        )

    def to_dict(self) -> Dict:
        """Public view; never includes key material."""
        return {
            "sessionAddress": self.session_address,
            "payerAddress": self.session_address,
            "ownerAddress": self.owner_address,
            "expiresAt": isoformat(self.expires_at),
            "custodialWallets": {chain: wallet["address"] for chain, wallet in self.custodial_wallets.items()},
        }


class SessionStore(ABC):
    @abstractmethod
    async def save(self, record: SessionRecord) -> None:
        ...

    @abstractmethod
    async def get(self, address: str) -> Optional[SessionRecord]:
        """Look up by session address or owner address (case-insensitive)."""
        ...

    @abstractmethod
    async def set_custodial_wallet(self, session_address: str, chain_key: str, wallet: CustodialWallet) -> None:
        ...


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}
        self._owners: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: SessionRecord) -> None:
        async with self._lock:
            key = record.session_address.lower()
            self._records[key] = copy.deepcopy(record)
            if record.owner_address:
                self._owners[record.owner_address.lower()] = key

    async def get(self, address: str) -> Optional[SessionRecord]:
        async with self._lock:
            key = address.lower()
            record = self._records.get(key) or self._records.get(self._owners.get(key, ""))
            return copy.deepcopy(record) if record is not None else None

    async def set_custodial_wallet(self, session_address: str, chain_key: str, wallet: CustodialWallet) -> None:
        async with self._lock:
            record = self._records.get(session_address.lower())
            if record is None:
                raise NotFoundError(f"No session for {session_address}")
            record.custodial_wallets[chain_key] = {
                "walletId": wallet.wallet_id,
                "address": wallet.address,
                "blockchain": wallet.blockchain,
            }


class SessionService:
    """Creates session keys and hands out signing keys and custodial wallets."""

    def __init__(
        self,
        store: SessionStore,
        vault: SessionKeyVault,
        custody: Optional[CircleWalletsClient] = None,
        ttl_hours: int = 24 * 30,
    ) -> None:
        self.store = store
        self.vault = vault
        self.custody = custody
        self.ttl_hours = ttl_hours
        self._wallet_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    async def create_session(self, owner_address: Optional[str] = None) -> SessionRecord:
        """Generate and store a new session key, optionally linked to the payer's own wallet."""
        owner = validate_address(owner_address) if owner_address else None
        private_key, address = generate_session_key()
        record = SessionRecord(
            session_address=address,
            encrypted_key=self.vault.encrypt(private_key),
            expires_at=utcnow() + timedelta(hours=self.ttl_hours),
            owner_address=owner,
        )
        await self.store.save(record)
        logger.info(f"Created session key {address} (owner={owner})")
        return record

    async def import_session(
        self,
        session_address: str,
        encrypted_key: str,
        expires_at: datetime,
        owner_address: Optional[str] = None,
    ) -> SessionRecord:
        """Restore a session from a stored credential (e.g. a subscription's authorization)."""
        existing = await self.store.get(session_address)
        record = SessionRecord(
            session_address=validate_address(session_address),
            encrypted_key=encrypted_key,
            expires_at=expires_at,
            owner_address=owner_address,
            custodial_wallets=existing.custodial_wallets if existing else {},
        )
        await self.store.save(record)
        return record

    async def get_session(self, address: str) -> SessionRecord:
        """
        Raises:
            NotFoundError: No session for `address`
            InvalidInputError: The session has expired
        """
        record = await self.store.get(address)
        if record is None:
            raise NotFoundError(f"No session key found for {address}")
        if record.is_expired:
            raise InvalidInputError(f"Session key for {address} expired at {isoformat(record.expires_at)}")
        return record

    async def signing_key(self, address: str) -> str:
        record = await self.get_session(address)
        return self.vault.decrypt(record.encrypted_key)

    async def ensure_custodial_wallet(self, address: str, chain: ChainConfig) -> CustodialWallet:
        """Return the payer's custodial wallet on `chain`, creating it on first use."""
        record = await self.get_session(address)
        lock = self._wallet_locks.setdefault((record.session_address.lower(), chain.key), asyncio.Lock())
        async with lock:
            record = await self.get_session(address)
            wallet = record.custodial_wallet(chain.key)
            if wallet is not None:
                return wallet
            if self.custody is None:
                raise ConfigurationError("Custodial wallet service is not configured")
            if not chain.circle_blockchain:
                raise ConfigurationError(f"Chain {chain.key} has no custodial wallet blockchain id")

            wallet = await self.custody.create_wallet(chain.circle_blockchain)
            await self.store.set_custodial_wallet(record.session_address, chain.key, wallet)
            return wallet
