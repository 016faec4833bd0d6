"""Tests for condition resolution: the evidence policy applied to stored conditions."""

from __future__ import annotations

import pytest

from factories import OWNER_ID
from transaction_engine.domain.exceptions import (
    ConditionArchivedError,
    ResolutionFailedError,
    ValidationError,
)
from transaction_engine.infrastructure.database.repositories import ConditionRepository
from transaction_engine.services.resolution_service import ResolutionService


class TestBlockingResolution:
    @pytest.mark.asyncio
    async def test_complete_without_evidence_refused(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        with pytest.raises(ResolutionFailedError) as exc_info:
            await facade.complete_condition(condition.id, OWNER_ID)

        assert exc_info.value.code == "E_RESOLUTION_FAILED"
        assert exc_info.value.to_payload()["error"]["conditionId"] == condition.id
        assert condition.status == "pending"
        assert condition.resolved_at is None

    @pytest.mark.asyncio
    async def test_complete_with_evidence(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        await facade.add_evidence(
            condition.id, OWNER_ID, evidence_type="note", note="Approval letter received"
        )
        resolved = await facade.complete_condition(condition.id, OWNER_ID, note="All good")

        assert resolved.status == "completed"
        assert resolved.resolution_type == "completed"
        assert resolved.resolution_note == "All good"
        assert resolved.resolved_by == OWNER_ID
        assert resolved.escaped_without_proof is False

    @pytest.mark.asyncio
    async def test_escape_hatch(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        resolved = await facade.resolve_condition(
            condition.id,
            OWNER_ID,
            "completed",
            escaped_without_proof=True,
            escape_reason="  Lender confirmed by phone  ",
        )

        assert resolved.resolution_type == "skipped_with_risk"
        assert resolved.escaped_without_proof is True
        assert resolved.escape_reason == "Lender confirmed by phone"

    @pytest.mark.asyncio
    async def test_escape_hatch_short_reason(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        with pytest.raises(ResolutionFailedError) as exc_info:
            await facade.resolve_condition(
                condition.id, OWNER_ID, "waived", escaped_without_proof=True, escape_reason="nope"
            )
        assert "at least 10 characters" in exc_info.value.reason


class TestRequiredAndRecommended:
    @pytest.mark.asyncio
    async def test_required_waived_needs_note(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Inspection", level="required"
        )
        with pytest.raises(ResolutionFailedError):
            await facade.resolve_condition(condition.id, OWNER_ID, "waived")

        resolved = await facade.resolve_condition(
            condition.id, OWNER_ID, "waived", note="Buyer waives inspection"
        )
        assert resolved.resolution_type == "waived"

    @pytest.mark.asyncio
    async def test_recommended_not_applicable(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Tip")
        resolved = await facade.resolve_condition(condition.id, OWNER_ID, "not_applicable")
        assert resolved.status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_resolution_type(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Tip")
        with pytest.raises(ValidationError):
            await facade.resolve_condition(condition.id, OWNER_ID, "approved")

    @pytest.mark.asyncio
    async def test_already_resolved_is_refused(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Tip")
        await facade.complete_condition(condition.id, OWNER_ID)
        with pytest.raises(ResolutionFailedError) as exc_info:
            await facade.complete_condition(condition.id, OWNER_ID)
        assert exc_info.value.reason == "condition is already resolved"


class TestAuditAndArchival:
    @pytest.mark.asyncio
    async def test_resolved_event_recorded(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        evidence = await facade.add_evidence(
            condition.id, OWNER_ID, evidence_type="link", url="https://bank.example/letter"
        )
        await facade.resolve_condition(
            condition.id, OWNER_ID, "completed", has_evidence=True, evidence_id=evidence.id
        )

        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert [e.event_type for e in history] == ["created", "evidence_added", "resolved"]
        resolved = history[-1]
        assert resolved.actor == str(OWNER_ID)
        assert resolved.metadata_json["resolutionType"] == "completed"
        assert resolved.metadata_json["evidenceId"] == evidence.id
        assert resolved.metadata_json["evidenceCount"] == 1

    @pytest.mark.asyncio
    async def test_archived_condition_is_read_only(self, session, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Tip")
        await ConditionRepository(session).archive(condition, at_step=1)

        with pytest.raises(ConditionArchivedError):
            await facade.complete_condition(condition.id, OWNER_ID)
        with pytest.raises(ConditionArchivedError):
            await facade.add_evidence(condition.id, OWNER_ID, evidence_type="note", note="x")

    @pytest.mark.asyncio
    async def test_service_reports_refusal_as_value(self, session, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", level="blocking"
        )
        outcome = await ResolutionService(session).resolve(condition.id, "completed", OWNER_ID)

        assert outcome.resolved is False
        assert "requires evidence" in outcome.reason
        assert outcome.condition.status == "pending"
