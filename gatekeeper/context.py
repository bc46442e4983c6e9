"""Explicit wiring of the collaborators shared by middleware and routes."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from gatekeeper.config import Settings, require_settings
from gatekeeper.services.audit import AuditSink
from gatekeeper.services.auth_provider import AuthProviderClient
from gatekeeper.services.billing import (
    BillingEventRouter,
    BillingProvider,
    PlanMapper,
    WebhookVerifier,
)
from gatekeeper.services.gatekeeper import Gatekeeper
from gatekeeper.services.maintenance import MaintenanceGate
from gatekeeper.services.session_bridge import SessionBridge


@dataclass
class AppContext:
    settings: Settings
    session_factory: sessionmaker
    auth_client: AuthProviderClient
    session_bridge: SessionBridge
    gatekeeper: Gatekeeper
    webhook_verifier: WebhookVerifier
    event_router: BillingEventRouter
    audit: AuditSink

    async def start(self) -> None:
        await self.audit.start()

    async def close(self) -> None:
        await self.audit.stop()
        await self.auth_client.aclose()


def build_context(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    auth_client: AuthProviderClient | None = None,
    billing_provider: BillingProvider | None = None,
) -> AppContext:
    """Validate configuration and assemble the application's collaborators.

    Raises ``ConfigurationError`` when a required setting is missing.
    """
    require_settings(settings)
    auth_client = auth_client or AuthProviderClient(settings)
    session_bridge = SessionBridge(settings, auth_client)
    audit = AuditSink(session_factory, maxsize=settings.audit_queue_size)
    return AppContext(
        settings=settings,
        session_factory=session_factory,
        auth_client=auth_client,
        session_bridge=session_bridge,
        gatekeeper=Gatekeeper(
            settings,
            session_bridge,
            session_factory,
            maintenance_gate=MaintenanceGate(settings),
        ),
        webhook_verifier=WebhookVerifier(settings),
        event_router=BillingEventRouter(
            session_factory,
            billing_provider or BillingProvider(settings),
            PlanMapper.from_settings(settings),
            audit=audit,
        ),
        audit=audit,
    )
