from decimal import Decimal

import pytest

from conftest import BRIDGE_FEE, DESTINATION_GAS, FakeSwapProvider, balance, snapshot
from arcpay.config.networks import TESTNET
from arcpay.errors import InvalidInputError
from arcpay.routing.planner import RoutePlanner, parse_usdc_amount


def make_planner(**kwargs) -> RoutePlanner:
    return RoutePlanner(
        TESTNET, FakeSwapProvider(), bridge_fee_per_chain=BRIDGE_FEE, destination_gas=DESTINATION_GAS, **kwargs
    )


@pytest.mark.asyncio
async def test_single_chain_covers_target_and_fees():
    plan = await make_planner().plan(snapshot(base_sepolia="20"), Decimal("10"))

    assert plan.sufficient_funds
    assert plan.source_plan() == [
        {
            "chain": "base-sepolia",
            "chainId": 84532,
            "type": "stablecoin",
            "asset": "USDC",
            "amount": "10.016500",
            "estimatedUsdcOut": "10.016500",
        }
    ]
    quote = plan.quote()
    assert quote["fees"] == {
        "swapFee": "0",
        "bridgeFee": "0.005500",
        "destinationGas": "0.011000",
        "totalFees": "0.016500",
    }
    assert quote["userAuthorizes"] == "10.016500"
    assert quote["merchantReceives"] == "10.000000"


@pytest.mark.asyncio
async def test_plan_is_exact_across_chains():
    plan = await make_planner().plan(snapshot(ethereum_sepolia="4", base_sepolia="20"), Decimal("10"))

    assert plan.chains == ["ethereum-sepolia", "base-sepolia"]
    delivered = sum(Decimal(step["estimatedUsdcOut"]) for step in plan.source_plan())
    # Each chain pays its own bridge fee; what is left is exactly target + gas
    assert delivered - BRIDGE_FEE * 2 == Decimal("10") + DESTINATION_GAS
    assert plan.bridge_fee == Decimal("0.011000")


@pytest.mark.asyncio
async def test_insufficient_funds_reports_shortfall():
    plan = await make_planner().plan(snapshot(base_sepolia="5"), Decimal("10"))

    assert not plan.sufficient_funds
    assert plan.steps == []
    assert plan.shortfall == Decimal("5.016500")
    assert plan.to_dict()["shortfall"] == "5.016500"


@pytest.mark.asyncio
async def test_balance_exactly_covering_target_and_fees_is_sufficient():
    plan = await make_planner().plan(snapshot(base_sepolia="10.0165"), Decimal("10"))

    assert plan.sufficient_funds
    assert plan.shortfall is None
    assert plan.source_plan()[0]["amount"] == "10.016500"
    assert plan.quote()["userAuthorizes"] == "10.016500"


@pytest.mark.asyncio
async def test_one_usdc_below_exact_cover_is_short_by_one():
    plan = await make_planner().plan(snapshot(base_sepolia="9.0165"), Decimal("10"))

    assert not plan.sufficient_funds
    assert plan.shortfall == Decimal("1")
    assert plan.to_dict()["shortfall"] == "1.000000"


@pytest.mark.asyncio
async def test_base_sepolia_thirty_pays_twenty_five():
    plan = await make_planner().plan(snapshot(base_sepolia="30"), parse_usdc_amount("25.00"))

    assert plan.sufficient_funds
    assert plan.source_plan() == [
        {
            "chain": "base-sepolia",
            "chainId": 84532,
            "type": "stablecoin",
            "asset": "USDC",
            "amount": "25.016500",
            "estimatedUsdcOut": "25.016500",
        }
    ]
    assert plan.quote()["userAuthorizes"] == "25.016500"
    assert plan.quote()["merchantReceives"] == "25.000000"


@pytest.mark.asyncio
async def test_dust_below_bridge_fee_is_skipped():
    plan = await make_planner().plan(snapshot(ethereum_sepolia="0.005", base_sepolia="20"), Decimal("1"))

    assert plan.chains == ["base-sepolia"]


@pytest.mark.asyncio
async def test_direct_usdc_is_used_before_swaps():
    balances = {
        "ethereum-sepolia": balance("ethereum-sepolia", usdc="0", native="1"),
        "base-sepolia": balance("base-sepolia", usdc="50"),
    }
    plan = await make_planner().plan(balances, Decimal("10"))

    assert [step["type"] for step in plan.source_plan()] == ["stablecoin"]


@pytest.mark.asyncio
async def test_partial_swap_scales_native_amount_and_fee():
    balances = {"ethereum-sepolia": balance("ethereum-sepolia", native="1")}
    plan = await make_planner().plan(balances, Decimal("10"))

    (step,) = plan.steps
    assert step.type == "swap"
    assert step.estimated_usdc_out == Decimal("10.0165")
    # 1 ETH quotes 1994 USDC net of the 0.3% fee
    assert step.amount < Decimal("0.01")
    assert Decimal("0") < plan.swap_fee < Decimal("0.05")


@pytest.mark.asyncio
async def test_gas_reserve_is_not_swapped():
    balances = {"ethereum-sepolia": balance("ethereum-sepolia", native="0.001")}
    plan = await make_planner(native_gas_reserve=Decimal("0.001")).plan(balances, Decimal("1"))

    assert not plan.sufficient_funds


@pytest.mark.asyncio
async def test_errored_chain_contributes_nothing():
    balances = snapshot(base_sepolia="20")
    balances["ethereum-sepolia"] = balance("ethereum-sepolia", error="RPC timeout")
    plan = await make_planner().plan(balances, Decimal("1"))

    assert plan.chains == ["base-sepolia"]


@pytest.mark.parametrize("value", ["0", "-1", "abc", "1.0000001", "NaN"])
def test_parse_usdc_amount_rejects(value):
    with pytest.raises(InvalidInputError):
        parse_usdc_amount(value)


def test_parse_usdc_amount_normalizes():
    assert parse_usdc_amount("1.5") == Decimal("1.500000")
    assert parse_usdc_amount(2) == Decimal("2.000000")
