"""Tests for the per-request unit of work provided by ``get_db_session``."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transaction_engine.api import deps
from transaction_engine.infrastructure.database import engine as engine_module


class RecordingSession(AsyncSession):
    """AsyncSession that remembers how its unit of work ended."""

    outcomes: list[str] = []

    async def commit(self) -> None:
        self.outcomes.append("commit")
        await super().commit()

    async def rollback(self) -> None:
        self.outcomes.append("rollback")
        await super().rollback()


@pytest.fixture
def recording_factory(db_engine, monkeypatch):
    RecordingSession.outcomes = []
    factory = async_sessionmaker(db_engine, class_=RecordingSession, expire_on_commit=False)
    monkeypatch.setattr(engine_module, "_session_factory", factory)
    return factory


class TestGetDbSession:
    @pytest.mark.asyncio
    async def test_handler_error_rolls_back_before_propagating(self, recording_factory) -> None:
        provider = deps.get_db_session()
        session = await anext(provider)
        assert isinstance(session, RecordingSession)

        with pytest.raises(RuntimeError, match="handler failed"):
            await provider.athrow(RuntimeError("handler failed"))

        assert RecordingSession.outcomes == ["rollback"]

    @pytest.mark.asyncio
    async def test_success_commits(self, recording_factory) -> None:
        provider = deps.get_db_session()
        await anext(provider)

        with pytest.raises(StopAsyncIteration):
            await anext(provider)

        assert RecordingSession.outcomes == ["commit"]
