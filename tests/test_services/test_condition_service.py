"""Tests for the condition lifecycle: creation, updates, deletion, evidence and reads."""

from __future__ import annotations

from datetime import date

import pytest

from factories import OWNER_ID
from transaction_engine.domain.exceptions import NotFoundError, ValidationError


class TestCreate:
    @pytest.mark.asyncio
    async def test_defaults_to_current_step(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="  Financing  ", level="required"
        )

        assert condition.title == "Financing"
        assert condition.status == "pending"
        assert condition.transaction_step_id == purchase.current_step_id
        assert condition.step_when_created == 1
        assert condition.archived is False

    @pytest.mark.asyncio
    async def test_explicit_step(self, facade, purchase) -> None:
        step3 = purchase.step_by_order(3)
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Deposit", transaction_step_id=step3.id
        )
        assert condition.transaction_step_id == step3.id
        assert condition.step_when_created == 3

    @pytest.mark.asyncio
    async def test_invalid_level(self, facade, purchase) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await facade.create_condition(purchase.id, OWNER_ID, title="X", level="critical")
        assert exc_info.value.field == "level"

    @pytest.mark.asyncio
    async def test_unknown_step(self, facade, purchase) -> None:
        with pytest.raises(NotFoundError):
            await facade.create_condition(
                purchase.id, OWNER_ID, title="X", transaction_step_id=9999
            )

    @pytest.mark.asyncio
    async def test_labels(self, facade, purchase) -> None:
        condition = await facade.create_condition(
            purchase.id, OWNER_ID, title="Financing", label_fr="Financement"
        )
        assert condition.label("fr") == "Financement"
        assert condition.label("en") == "Financing"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_records_diff(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        await facade.update_condition(
            condition.id,
            OWNER_ID,
            {"level": "blocking", "due_date": date(2026, 11, 30), "title": "Financing"},
        )

        assert condition.level == "blocking"
        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert history[-1].event_type == "condition_updated"
        assert history[-1].metadata_json["changes"] == {
            "level": {"from": "recommended", "to": "blocking"},
            "due_date": {"from": None, "to": "2026-11-30"},
        }

    @pytest.mark.asyncio
    async def test_noop_update_records_nothing(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        await facade.update_condition(condition.id, OWNER_ID, {"title": "Financing"})

        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert [e.event_type for e in history] == ["created"]

    @pytest.mark.asyncio
    async def test_status_not_updatable(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        with pytest.raises(ValidationError) as exc_info:
            await facade.update_condition(condition.id, OWNER_ID, {"status": "completed"})
        assert exc_info.value.field == "status"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["title", "level", "condition_type"])
    async def test_null_for_required_field_rejected(self, facade, purchase, field) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        with pytest.raises(ValidationError) as exc_info:
            await facade.update_condition(condition.id, OWNER_ID, {field: None})

        assert exc_info.value.field == field
        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert [e.event_type for e in history] == ["created"]

    @pytest.mark.asyncio
    async def test_title_is_stripped(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        await facade.update_condition(condition.id, OWNER_ID, {"title": "  Mortgage  "})
        assert condition.title == "Mortgage"

        with pytest.raises(ValidationError) as exc_info:
            await facade.update_condition(condition.id, OWNER_ID, {"title": "   "})
        assert exc_info.value.field == "title"


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_condition_and_children(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        await facade.add_evidence(condition.id, OWNER_ID, evidence_type="note", note="Called bank")
        condition_id = condition.id

        await facade.delete_condition(condition_id, OWNER_ID)

        assert await facade.get_active_conditions(purchase.id, OWNER_ID) == []
        with pytest.raises(NotFoundError):
            await facade.get_condition_history(condition_id, OWNER_ID)


class TestEvidence:
    @pytest.mark.asyncio
    async def test_link_requires_url(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        with pytest.raises(ValidationError) as exc_info:
            await facade.add_evidence(condition.id, OWNER_ID, evidence_type="link")
        assert exc_info.value.field == "url"

    @pytest.mark.asyncio
    async def test_unknown_type(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        with pytest.raises(ValidationError):
            await facade.add_evidence(condition.id, OWNER_ID, evidence_type="video", url="x")

    @pytest.mark.asyncio
    async def test_add_list_remove(self, facade, purchase) -> None:
        condition = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        first = await facade.add_evidence(
            condition.id, OWNER_ID, evidence_type="file", url="s3://bucket/letter.pdf"
        )
        await facade.add_evidence(condition.id, OWNER_ID, evidence_type="note", note="Signed")

        await facade.remove_evidence(condition.id, first.id, OWNER_ID)

        remaining = await facade.list_evidence(condition.id, OWNER_ID)
        assert [e.type for e in remaining] == ["note"]
        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert [e.event_type for e in history] == [
            "created", "evidence_added", "evidence_added", "evidence_removed",
        ]

    @pytest.mark.asyncio
    async def test_remove_foreign_evidence(self, facade, purchase) -> None:
        first = await facade.create_condition(purchase.id, OWNER_ID, title="Financing")
        second = await facade.create_condition(purchase.id, OWNER_ID, title="Deposit")
        evidence = await facade.add_evidence(first.id, OWNER_ID, evidence_type="note", note="ok")

        with pytest.raises(NotFoundError):
            await facade.remove_evidence(second.id, evidence.id, OWNER_ID)


class TestReads:
    @pytest.mark.asyncio
    async def test_active_sorted_by_severity(self, facade, purchase) -> None:
        await facade.create_condition(purchase.id, OWNER_ID, title="Tip")
        await facade.create_condition(purchase.id, OWNER_ID, title="Inspection", level="required")
        await facade.create_condition(purchase.id, OWNER_ID, title="Financing", level="blocking")

        active = await facade.get_active_conditions(purchase.id, OWNER_ID)
        assert [c.title for c in active] == ["Financing", "Inspection", "Tip"]

    @pytest.mark.asyncio
    async def test_grouped_by_step(self, facade, purchase) -> None:
        await facade.create_condition(purchase.id, OWNER_ID, title="Consult notes")
        await facade.create_condition(
            purchase.id,
            OWNER_ID,
            title="Deposit",
            transaction_step_id=purchase.step_by_order(3).id,
        )
        await facade.create_condition(purchase.id, OWNER_ID, title="Agenda")

        grouped = await facade.get_conditions_grouped_by_step(purchase.id, OWNER_ID)
        assert list(grouped) == [1, 3]
        assert [c.title for c in grouped[1]] == ["Consult notes", "Agenda"]
        assert [c.title for c in grouped[3]] == ["Deposit"]
