"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the acting user, the external collaborators and the TransactionFacade.
Tests override the collaborator providers through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import structlog
from fastapi import Depends, Header

from transaction_engine.automation import AutomationEngine
from transaction_engine.config import Settings, get_settings
from transaction_engine.infrastructure.database.engine import session_scope
from transaction_engine.services.collaborators import (
    AcceptedOfferLookup,
    OwnerTenantScope,
    TenantScope,
)
from transaction_engine.services.side_effects import (
    SideEffectDispatcher,
    get_side_effect_dispatcher,
)
from transaction_engine.services.transaction_facade import TransactionFacade

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (one unit of work) for a request.

    The handler's exception is raised at the ``yield``, so ``session_scope``
    rolls back before the error reaches the middleware.
    """
    async with session_scope() as session:
        yield session


def get_actor_id(x_actor_id: int = Header(..., description="Authenticated user id")) -> int:
    """Read the acting user set by the upstream authentication layer."""
    structlog.contextvars.bind_contextvars(actor_id=x_actor_id)
    return x_actor_id


def get_tenant_scope() -> TenantScope:
    return OwnerTenantScope()


def get_offer_lookup() -> AcceptedOfferLookup | None:
    """No offer tracking is wired in by default; the offer gate then stays open."""
    return None


@lru_cache(maxsize=1)
def get_automation_engine() -> AutomationEngine:
    return AutomationEngine.from_settings(get_settings())


def get_dispatcher() -> SideEffectDispatcher:
    return get_side_effect_dispatcher()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_facade(
    session: AsyncSession = Depends(get_db_session),
    tenant_scope: TenantScope = Depends(get_tenant_scope),
    offer_lookup: AcceptedOfferLookup | None = Depends(get_offer_lookup),
    automation: AutomationEngine = Depends(get_automation_engine),
    side_effects: SideEffectDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
) -> TransactionFacade:
    """Provide a TransactionFacade bound to the request's session."""
    return TransactionFacade(
        session,
        automation=automation,
        side_effects=side_effects,
        tenant_scope=tenant_scope,
        offer_lookup=offer_lookup,
        settings=settings,
    )
