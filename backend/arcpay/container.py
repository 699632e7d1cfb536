"""
Service wiring.

Builds every arcpay component from `Settings` once per process. Routers get
the services through `get_container()`; tests swap in their own container
with `set_container()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .accounts.session_keys import InMemorySessionStore, SessionKeyVault, SessionService
from .bridge.gas_funder import GasFunder
from .bridge.gateway import GatewayClient
from .chain.providers import ProviderManager, create_provider_manager
from .chain.transactions import TransactionSender
from .config.networks import NetworkConfig
from .config.settings import Settings, settings as default_settings
from .custody.circle import CircleWalletsClient
from .jobs.store import InMemoryJobStore, JobStore
from .links.signing import PaymentLinkSigner
from .maintenance.sweep import MaintenanceSweep
from .merchants.service import MerchantService
from .merchants.store import InMemoryMerchantStore
from .orchestrator.engine import PaymentOrchestrator
from .routing.planner import RoutePlanner
from .scanner.balances import BalanceScanner
from .subscriptions.service import SubscriptionService
from .subscriptions.store import InMemorySubscriptionStore
from .swap import create_swap_provider
from .swap.base import SwapProvider
from .webhooks.dispatcher import InMemoryDeliveryStore, WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    network: NetworkConfig
    providers: ProviderManager
    jobs: JobStore
    scanner: BalanceScanner
    planner: RoutePlanner
    swap_provider: SwapProvider
    custody: CircleWalletsClient
    gateway: GatewayClient
    sessions: SessionService
    merchants: MerchantService
    webhooks: WebhookDispatcher
    links: PaymentLinkSigner
    orchestrator: PaymentOrchestrator
    subscriptions: SubscriptionService
    sweep: MaintenanceSweep

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.webhooks.close()
        await self.gateway.close()
        await self.custody.close()
        await self.swap_provider.close()


def build_container(config: Optional[Settings] = None) -> Container:
    """Create every service for `config` (the global settings by default)."""
    config = config or default_settings
    network = config.network_config
    providers = create_provider_manager(network, config.rpc_overrides(), timeout=config.rpc_timeout_seconds)

    sender = TransactionSender(providers, receipt_timeout=config.receipt_timeout_seconds)
    swap_provider = create_swap_provider(network, providers, config)
    planner = RoutePlanner(
        network,
        swap_provider,
        bridge_fee_per_chain=config.bridge_fee_per_chain,
        destination_gas=config.destination_gas,
        native_gas_reserve=config.native_gas_reserve,
    )

    custody = CircleWalletsClient(
        api_key=config.circle_api_key,
        entity_secret=config.circle_entity_secret,
        base_url=config.circle_api_url,
        wallet_set_id=config.circle_wallet_set_id,
        poll_interval=config.custody_poll_interval,
    )
    gateway = GatewayClient(network, custody, providers=providers, poll_interval=config.attestation_poll_interval)

    sessions = SessionService(
        InMemorySessionStore(),
        SessionKeyVault(config.session_encryption_key),
        custody=custody,
        ttl_hours=config.session_ttl_hours,
    )
    merchants = MerchantService(InMemoryMerchantStore())
    webhooks = WebhookDispatcher(
        merchants,
        InMemoryDeliveryStore(),
        secret=config.webhook_secret or config.link_secret,
        timeout=config.webhook_timeout_seconds,
        max_attempts=config.webhook_max_attempts,
    )

    jobs = InMemoryJobStore()
    orchestrator = PaymentOrchestrator(
        network=network,
        store=jobs,
        scanner=BalanceScanner(network, providers),
        planner=planner,
        swap_provider=swap_provider,
        sender=sender,
        gateway=gateway,
        sessions=sessions,
        merchants=merchants,
        webhooks=webhooks,
        gas_funder=GasFunder(sender, config.gas_funder_private_key),
        payment_router_address=config.payment_router_address,
        bridge_fee_per_chain=config.bridge_fee_per_chain,
        confirmation_ttl_seconds=config.confirmation_ttl_seconds,
        step_max_attempts=config.step_max_attempts,
        step_retry_base_seconds=config.step_retry_base_seconds,
        custody_timeout_seconds=config.custody_timeout_seconds,
        attestation_timeout_seconds=config.attestation_timeout_seconds,
    )
    subscriptions = SubscriptionService(InMemorySubscriptionStore(), orchestrator, sessions)
    sweep = MaintenanceSweep(
        jobs,
        subscriptions,
        interval_seconds=config.maintenance_interval_seconds,
        stuck_timeout_seconds=config.stuck_job_timeout_seconds,
    )

    logger.info(f"arcpay services built for {network.name} ({network.swap_provider} swaps)")
    return Container(
        settings=config,
        network=network,
        providers=providers,
        jobs=jobs,
        scanner=orchestrator.scanner,
        planner=planner,
        swap_provider=swap_provider,
        custody=custody,
        gateway=gateway,
        sessions=sessions,
        merchants=merchants,
        webhooks=webhooks,
        links=PaymentLinkSigner(config.link_secret, config.public_app_url),
        orchestrator=orchestrator,
        subscriptions=subscriptions,
        sweep=sweep,
    )


_container: Optional[Container] = None


def get_container() -> Container:
    """FastAPI dependency returning the process-wide container."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: Optional[Container]) -> None:
    global _container
    _container = container
