"""
Route Planner - funding plans with exact fees and shortfall.
"""

from .planner import (
    STEP_STABLECOIN,
    STEP_SWAP,
    FundingPlan,
    FundingStep,
    RoutePlanner,
    parse_usdc_amount,
)

__all__ = [
    "STEP_STABLECOIN",
    "STEP_SWAP",
    "FundingPlan",
    "FundingStep",
    "RoutePlanner",
    "parse_usdc_amount",
]
