from decimal import Decimal
from types import SimpleNamespace

import pytest

from arcpay.config.networks import TESTNET
from arcpay.errors import InvalidInputError, RPCProviderError
from arcpay.scanner.balances import BalanceScanner, snapshot_to_dict, validate_address

PAYER = "0x1111111111111111111111111111111111111111"


class FakeEth:
    def __init__(self, native_wei: int, usdc_units: int):
        self.native_wei = native_wei
        self.usdc_units = usdc_units

    async def get_balance(self, address):
        return self.native_wei

    def contract(self, address, abi):
        async def call():
            return self.usdc_units

        def balance_of(owner):
            return SimpleNamespace(call=call)

        return SimpleNamespace(functions=SimpleNamespace(balanceOf=balance_of))


class FakeProviders:
    def __init__(self, chains):
        self.chains = chains

    async def web3(self, chain_key):
        chain = self.chains[chain_key]
        if isinstance(chain, Exception):
            raise chain
        return SimpleNamespace(eth=chain)


@pytest.mark.asyncio
async def test_scan_reads_every_source_chain():
    providers = FakeProviders(
        {
            "ethereum-sepolia": FakeEth(native_wei=5 * 10**17, usdc_units=0),
            "base-sepolia": FakeEth(native_wei=0, usdc_units=12_345_678),
        }
    )
    balances = await BalanceScanner(TESTNET, providers).scan(PAYER.lower())

    assert list(balances) == ["ethereum-sepolia", "base-sepolia"]
    assert balances["ethereum-sepolia"].native == Decimal("0.5")
    assert balances["ethereum-sepolia"].has_swap
    assert balances["base-sepolia"].usdc == Decimal("12.345678")
    assert balances["base-sepolia"].error is None


@pytest.mark.asyncio
async def test_failing_chain_is_isolated():
    providers = FakeProviders(
        {
            "ethereum-sepolia": RPCProviderError("No healthy RPC endpoints for ethereum-sepolia"),
            "base-sepolia": FakeEth(native_wei=0, usdc_units=1_000_000),
        }
    )
    balances = await BalanceScanner(TESTNET, providers).scan(PAYER)

    failed = balances["ethereum-sepolia"]
    assert failed.usdc == Decimal("0") and failed.native == Decimal("0")
    assert "No healthy RPC" in failed.error
    assert balances["base-sepolia"].usdc == Decimal("1")

    data = snapshot_to_dict(balances)
    assert data["ethereum-sepolia"]["error"]
    assert "error" not in data["base-sepolia"]
    assert data["base-sepolia"]["usdc"] == "1"


@pytest.mark.asyncio
async def test_scan_rejects_bad_address():
    with pytest.raises(InvalidInputError):
        await BalanceScanner(TESTNET, FakeProviders({})).scan("0x123")


def test_validate_address_checksums():
    address = validate_address("0xd8da6bf26964af9d7eed9e03e53415d37aa96045")
    assert address == "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
    with pytest.raises(InvalidInputError):
        validate_address(None)
