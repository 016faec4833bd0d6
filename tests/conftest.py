"""Shared test fixtures for the transaction workflow engine test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Seeded purchase and sale workflow templates
    - A TransactionFacade wired to recording side-effect collaborators
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from factories import (
    OWNER_ID,
    RecordingActivityFeed,
    RecordingEmailSender,
    RecordingNotifier,
    build_template,
)
from transaction_engine.automation import AutomationEngine
from transaction_engine.config import Settings
from transaction_engine.infrastructure.database.engine import make_session_factory
from transaction_engine.infrastructure.database.orm_models import Base, WorkflowTemplate
from transaction_engine.services.side_effects import SideEffectDispatcher
from transaction_engine.services.transaction_facade import TransactionFacade

# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    """One in-memory database per test, shared by every session of that test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def purchase_template(session) -> WorkflowTemplate:
    template = build_template("purchase")
    session.add(template)
    await session.commit()
    return template


@pytest_asyncio.fixture
async def sale_template(session) -> WorkflowTemplate:
    template = build_template("sale")
    session.add(template)
    await session.commit()
    return template


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="development", database_url="sqlite+aiosqlite://")


@pytest.fixture
def activity_feed() -> RecordingActivityFeed:
    return RecordingActivityFeed()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def dispatcher(activity_feed, notifier, email_sender) -> SideEffectDispatcher:
    return SideEffectDispatcher(
        activity_feed=activity_feed,
        notifier=notifier,
        email_sender=email_sender,
        max_attempts=3,
        wait_multiplier=0,
        wait_max=0,
    )


@pytest.fixture
def automation(settings) -> AutomationEngine:
    return AutomationEngine.from_settings(settings)


@pytest.fixture
def make_facade(session, automation, dispatcher, settings):
    """Build a facade on the test session; ``offer_lookup`` defaults to none wired in."""

    def _make(offer_lookup=None) -> TransactionFacade:
        return TransactionFacade(
            session,
            automation=automation,
            side_effects=dispatcher,
            offer_lookup=offer_lookup,
            settings=settings,
        )

    return _make


@pytest.fixture
def facade(make_facade) -> TransactionFacade:
    return make_facade()


@pytest_asyncio.fixture
async def purchase(facade, purchase_template):
    """A purchase transaction sitting on its first step."""
    return await facade.create_transaction(
        actor_id=OWNER_ID,
        workflow_template_id=purchase_template.id,
        transaction_type="purchase",
    )
