"""
Route planner.

Turns a balance snapshot and a target amount into an ordered funding plan:
which chains contribute, how much USDC each sends directly, and how much
native token must be swapped first. All arithmetic is exact `Decimal`.

Fee model:
- Destination gas is charged once per payment
- The Gateway bridge fee is charged once per contributing chain
- Swap fees are already netted out of the provider's expected output and
  are reported for display

Candidates are taken greedily in configuration order (direct USDC first,
then swaps), never sorted by balance size, so the same snapshot always
yields the same plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Set

from ..chain.abi import quantize_native, quantize_usdc
from ..config.networks import NetworkConfig
from ..errors import InvalidInputError
from ..scanner.balances import BalanceSnapshot
from ..swap.base import USDC_SYMBOL, SwapProvider

logger = logging.getLogger(__name__)

STEP_STABLECOIN = "stablecoin"
STEP_SWAP = "swap"

ZERO = Decimal("0")


def parse_usdc_amount(value) -> Decimal:
    """
    Parse a USDC amount given as string/int/Decimal.

    Raises:
        InvalidInputError: If not a positive number with at most 6 decimals
    """
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError(f"Amount must be greater than zero, got {value!r}")
    if quantize_usdc(amount) != amount:
        raise InvalidInputError(f"Amount supports at most 6 decimals, got {value!r}")
    return quantize_usdc(amount)


@dataclass
class FundingStep:
    """One per-chain contribution."""

    chain: str
    chain_id: int
    type: str  # stablecoin | swap
    asset: str
    amount: Decimal  # in `asset` units
    estimated_usdc_out: Decimal
    swap_fee: Decimal = ZERO

    def to_dict(self) -> Dict:
        data = {
            "chain": self.chain,
            "chainId": self.chain_id,
            "type": self.type,
            "asset": self.asset,
            "amount": str(self.amount),
            "estimatedUsdcOut": str(self.estimated_usdc_out),
        }
        if self.type == STEP_SWAP:
            data["swapFee"] = str(self.swap_fee)
        return data


@dataclass
class FundingPlan:
    """Planner output; also the payload of the quote endpoint."""

    target: Decimal
    sufficient_funds: bool
    steps: List[FundingStep] = field(default_factory=list)
    swap_fee: Decimal = ZERO
    bridge_fee: Decimal = ZERO
    destination_gas: Decimal = ZERO
    shortfall: Optional[Decimal] = None

    @property
    def total_fees(self) -> Decimal:
        return self.swap_fee + self.bridge_fee + self.destination_gas

    @property
    def user_authorizes(self) -> Decimal:
        return self.target + self.total_fees

    @property
    def merchant_receives(self) -> Decimal:
        return self.target

    @property
    def chains(self) -> List[str]:
        seen: List[str] = []
        for step in self.steps:
            if step.chain not in seen:
                seen.append(step.chain)
        return seen

    def source_plan(self) -> List[Dict]:
        return [step.to_dict() for step in self.steps]

    def quote(self) -> Dict:
        """Fee breakdown and headline numbers frozen onto the job."""
        return {
            "targetAmount": str(self.target),
            "fees": {
                "swapFee": str(self.swap_fee),
                "bridgeFee": str(self.bridge_fee),
                "destinationGas": str(self.destination_gas),
                "totalFees": str(self.total_fees),
            },
            "userAuthorizes": str(self.user_authorizes),
            "merchantReceives": str(self.merchant_receives),
        }

    def to_dict(self) -> Dict:
        data = {
            "sufficientFunds": self.sufficient_funds,
            "steps": self.source_plan(),
            **self.quote(),
            "shortfall": str(self.shortfall) if self.shortfall is not None else None,
        }
        return data


@dataclass
class _Candidate:
    chain: str
    chain_id: int
    type: str
    asset: str
    available: Decimal  # asset units
    native_symbol: str = "ETH"


class RoutePlanner:
    """Greedy, deterministic funding planner."""

    def __init__(
        self,
        network: NetworkConfig,
        swap_provider: SwapProvider,
        bridge_fee_per_chain: Decimal,
        destination_gas: Decimal,
        native_gas_reserve: Decimal = ZERO,
        prefer_direct: bool = True,
    ) -> None:
        self.network = network
        self.swap_provider = swap_provider
        self.bridge_fee_per_chain = Decimal(bridge_fee_per_chain)
        self.destination_gas = Decimal(destination_gas)
        self.native_gas_reserve = Decimal(native_gas_reserve)
        self.prefer_direct = prefer_direct

    def _candidates(self, balances: BalanceSnapshot) -> List[_Candidate]:
        direct: List[_Candidate] = []
        swaps: List[_Candidate] = []
        interleaved: List[_Candidate] = []

        for chain in self.network.source_chains:
            balance = balances.get(chain.key)
            if balance is None:
                continue
            if balance.usdc > 0:
                candidate = _Candidate(chain.key, chain.chain_id, STEP_STABLECOIN, USDC_SYMBOL, balance.usdc)
                direct.append(candidate)
                interleaved.append(candidate)
            swappable = quantize_native(balance.native - self.native_gas_reserve, ROUND_DOWN)
            if chain.has_swap and swappable > 0:
                candidate = _Candidate(
                    chain.key, chain.chain_id, STEP_SWAP, chain.native_symbol, swappable, chain.native_symbol
                )
                swaps.append(candidate)
                interleaved.append(candidate)

        return direct + swaps if self.prefer_direct else interleaved

    async def plan(self, balances: BalanceSnapshot, target: Decimal) -> FundingPlan:
        """
        Build a funding plan for `target` USDC.

        Raises:
            InvalidInputError: If target <= 0
            SwapProviderError: If a needed swap quote fails
        """
        target = parse_usdc_amount(target)
        required = target + self.destination_gas
        remaining = required
        used_chains: Set[str] = set()
        steps: List[FundingStep] = []
        swap_fee = ZERO

        for candidate in self._candidates(balances):
            if remaining <= 0:
                break

            fee = ZERO if candidate.chain in used_chains else self.bridge_fee_per_chain

            if candidate.type == STEP_STABLECOIN:
                gross = quantize_usdc(candidate.available)
                if gross <= fee:
                    continue
                take = min(gross, remaining + fee)
                steps.append(
                    FundingStep(
                        chain=candidate.chain,
                        chain_id=candidate.chain_id,
                        type=STEP_STABLECOIN,
                        asset=USDC_SYMBOL,
                        amount=take,
                        estimated_usdc_out=take,
                    )
                )
            else:
                quote = await self.swap_provider.quote(
                    candidate.asset, USDC_SYMBOL, candidate.available, candidate.chain_id
                )
                gross = quantize_usdc(quote.expected_output)
                if gross <= fee:
                    continue
                take = min(gross, remaining + fee)
                if take < gross:
                    ratio = take / gross
                    native_amount = min(candidate.available, quantize_native(candidate.available * ratio, ROUND_UP))
                    step_fee = quantize_usdc(quote.fee * ratio, ROUND_UP)
                else:
                    native_amount = candidate.available
                    step_fee = quantize_usdc(quote.fee, ROUND_UP)
                swap_fee += step_fee
                steps.append(
                    FundingStep(
                        chain=candidate.chain,
                        chain_id=candidate.chain_id,
                        type=STEP_SWAP,
                        asset=candidate.asset,
                        amount=native_amount,
                        estimated_usdc_out=take,
                        swap_fee=step_fee,
                    )
                )

            remaining -= take - fee
            used_chains.add(candidate.chain)

        bridge_fee = self.bridge_fee_per_chain * len(used_chains)

        if remaining > 0:
            shortfall = quantize_usdc(remaining, ROUND_UP)
            logger.info(f"Insufficient funds for {target} USDC: shortfall {shortfall}")
            return FundingPlan(
                target=target,
                sufficient_funds=False,
                bridge_fee=quantize_usdc(bridge_fee, ROUND_UP),
                destination_gas=quantize_usdc(self.destination_gas, ROUND_UP),
                shortfall=shortfall,
            )

        plan = FundingPlan(
            target=target,
            sufficient_funds=True,
            steps=steps,
            swap_fee=swap_fee,
            bridge_fee=quantize_usdc(bridge_fee, ROUND_UP),
            destination_gas=quantize_usdc(self.destination_gas, ROUND_UP),
        )
        logger.info(
            f"Planned {target} USDC over {plan.chains}: fees={plan.total_fees}, "
            f"userAuthorizes={plan.user_authorizes}"
        )
        return plan
