"""
Cross-chain settlement through Circle Gateway.
"""

from .gas_funder import GasFunder
from .gateway import (
    BURN_INTENT_DOMAIN,
    BURN_INTENT_MAX_FEE,
    BURN_INTENT_TYPES,
    Attestation,
    GatewayCache,
    GatewayClient,
    GatewayContracts,
    burn_intent_typed_data,
)

__all__ = [
    "GasFunder",
    "BURN_INTENT_DOMAIN",
    "BURN_INTENT_MAX_FEE",
    "BURN_INTENT_TYPES",
    "Attestation",
    "GatewayCache",
    "GatewayClient",
    "GatewayContracts",
    "burn_intent_typed_data",
]
