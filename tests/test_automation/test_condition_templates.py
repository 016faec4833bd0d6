"""Tests for template-driven conditions (condition packs).

Scenario: a rural house with a well, financed. The rural pack has a well
test on the negotiation step (order 2); the condo pack has a document
review that must never match this profile.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from structlog.testing import capture_logs

from factories import OWNER_ID
from transaction_engine.automation import (
    CONDITION_TEMPLATE_RULE_KEY,
    AutomationEngine,
    ConditionTemplateRule,
)
from transaction_engine.config import Settings
from transaction_engine.domain.exceptions import NotFoundError, ValidationError
from transaction_engine.infrastructure.database.orm_models import ConditionTemplate

RURAL_HOUSE = {
    "property_type": "house",
    "property_context": "rural",
    "is_financed": True,
    "has_well": True,
    "has_septic": True,
    "access_type": "private",
}


async def well_test(facade, **overrides) -> ConditionTemplate:
    fields = {
        "label_fr": "Test de puits",
        "label_en": "Well test",
        "description_fr": "Analyse de potabilité de l'eau",
        "level": "required",
        "source_type": "industry",
        "category": "inspection",
        "step": 2,
        "applies_when": {"property_context": "rural", "has_well": True},
        "pack": "rural",
    }
    return await facade.create_condition_template(**{**fields, **overrides})


async def condo_review(facade) -> ConditionTemplate:
    return await facade.create_condition_template(
        label_fr="Revue des documents de copropriété",
        label_en="Condo documents review",
        level="blocking",
        source_type="legal",
        step=2,
        applies_when={"property_type": "condo"},
        pack="condo",
    )


class TestTemplateMatching:
    def test_applies_when_must_all_match(self) -> None:
        template = ConditionTemplate(
            label_fr="Test de puits",
            label_en="Well test",
            applies_when={"property_context": "rural", "has_well": True},
        )
        assert template.applies_to({"property_context": "rural", "has_well": True}) is True
        assert template.applies_to({"property_context": "rural", "has_well": None}) is False
        assert template.applies_to({"property_context": "urban", "has_well": True}) is False

    def test_empty_filter_matches_everything(self) -> None:
        template = ConditionTemplate(label_fr="Visite", label_en="Visit", applies_when={})
        assert template.applies_to({"property_type": "land"}) is True

    def test_labels_by_locale(self) -> None:
        template = ConditionTemplate(
            label_fr="Test de puits", label_en="Well test", description_fr="Analyse"
        )
        assert template.label("fr") == "Test de puits"
        assert template.label("en") == "Well test"
        assert template.localized_description("en") == "Analyse"

    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("acceptance", date(2026, 3, 11)),
            ("closing", date(2026, 5, 11)),
            ("step_start", date(2026, 4, 11)),
        ],
    )
    def test_due_date_from_reference(self, reference, expected) -> None:
        template = ConditionTemplate(
            label_fr="x", label_en="x", deadline_reference=reference, default_deadline_days=10
        )
        due = template.calculate_due_date(
            acceptance_date=date(2026, 3, 1),
            closing_date=date(2026, 5, 1),
            step_start=date(2026, 4, 1),
        )
        assert due == expected

    def test_no_due_date_without_reference_date(self) -> None:
        template = ConditionTemplate(
            label_fr="x", label_en="x", deadline_reference="closing", default_deadline_days=-10
        )
        assert template.calculate_due_date(acceptance_date=date(2026, 3, 1)) is None
        assert ConditionTemplate(label_fr="x", label_en="x").calculate_due_date() is None


class TestProfilesAndTemplates:
    @pytest.mark.asyncio
    async def test_profile_upsert(self, facade, purchase) -> None:
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)
        profile = await facade.set_transaction_profile(
            purchase.id, OWNER_ID, **{**RURAL_HOUSE, "has_well": False}
        )

        assert profile.transaction_id == purchase.id
        assert profile.has_well is False
        assert (await facade.get_transaction_profile(purchase.id, OWNER_ID)) is profile

    @pytest.mark.asyncio
    async def test_missing_profile(self, facade, purchase) -> None:
        with pytest.raises(NotFoundError):
            await facade.get_transaction_profile(purchase.id, OWNER_ID)

    @pytest.mark.asyncio
    async def test_invalid_profile_value(self, facade, purchase) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await facade.set_transaction_profile(
                purchase.id, OWNER_ID, **{**RURAL_HOUSE, "property_type": "castle"}
            )
        assert exc_info.value.field == "property_type"

    @pytest.mark.asyncio
    async def test_unknown_applies_when_field(self, facade) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await well_test(facade, applies_when={"has_pool": True})
        assert exc_info.value.field == "applies_when"

    @pytest.mark.asyncio
    async def test_deadline_needs_both_parts(self, facade) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await well_test(facade, deadline_reference="closing")
        assert exc_info.value.field == "deadline_reference"

    @pytest.mark.asyncio
    async def test_invalid_level(self, facade) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await well_test(facade, level="critical")
        assert exc_info.value.field == "level"

    @pytest.mark.asyncio
    async def test_list_by_step(self, facade) -> None:
        well = await well_test(facade)
        visit = await facade.create_condition_template(
            label_fr="Visite", label_en="Visit", is_default=False
        )

        assert [t.id for t in await facade.list_condition_templates()] == [visit.id, well.id]
        assert [t.id for t in await facade.list_condition_templates(step=1)] == [visit.id]
        assert [t.id for t in await facade.list_condition_templates(step=2)] == [well.id]


class TestStepEnter:
    def test_rule_registered_with_locale(self) -> None:
        engine = AutomationEngine.from_settings(Settings(default_locale="en"))
        rule = engine.get_rule(CONDITION_TEMPLATE_RULE_KEY)

        assert isinstance(rule, ConditionTemplateRule)
        assert rule.locale == "en"
        assert rule.is_compliance is False

    @pytest.mark.asyncio
    async def test_matching_templates_materialized(self, facade, purchase) -> None:
        well = await well_test(facade)
        await condo_review(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)

        transition = await facade.advance_step(purchase.id, OWNER_ID)

        [condition] = transition.automation.created
        assert condition.title == "Test de puits"
        assert condition.label_en == "Well test"
        assert condition.description == "Analyse de potabilité de l'eau"
        assert condition.level == "required"
        assert condition.condition_type == "inspection"
        assert condition.template_id == well.id
        assert condition.rule_key == CONDITION_TEMPLATE_RULE_KEY
        assert condition.transaction_step_id == purchase.step_by_order(2).id
        assert condition.step_when_created == 2

        history = await facade.get_condition_history(condition.id, OWNER_ID)
        assert history[0].metadata_json["source"] == "template"
        assert history[0].metadata_json["templateId"] == well.id

    @pytest.mark.asyncio
    async def test_due_date_from_step_start(self, facade, purchase) -> None:
        await well_test(facade, deadline_reference="step_start", default_deadline_days=7)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)

        transition = await facade.advance_step(purchase.id, OWNER_ID)

        [condition] = transition.automation.created
        assert condition.due_date == transition.new_step.entered_at.date() + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_no_profile_no_conditions(self, facade, purchase) -> None:
        await well_test(facade)
        transition = await facade.advance_step(purchase.id, OWNER_ID)
        assert transition.automation.created == []

    @pytest.mark.asyncio
    async def test_disabled_automation(self, facade, purchase_template) -> None:
        await well_test(facade)
        transaction = await facade.create_transaction(
            actor_id=OWNER_ID,
            workflow_template_id=purchase_template.id,
            transaction_type="purchase",
            auto_conditions_enabled=False,
        )
        await facade.set_transaction_profile(transaction.id, OWNER_ID, **RURAL_HOUSE)

        transition = await facade.advance_step(transaction.id, OWNER_ID)
        assert transition.automation.created == []

    @pytest.mark.asyncio
    async def test_reentering_step_is_idempotent(self, facade, purchase) -> None:
        await well_test(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)

        await facade.go_to_step(purchase.id, 2, OWNER_ID)
        await facade.go_to_step(purchase.id, 2, OWNER_ID)
        await facade.go_to_step(purchase.id, 1, OWNER_ID)
        await facade.go_to_step(purchase.id, 2, OWNER_ID)

        active = await facade.get_active_conditions(purchase.id, OWNER_ID)
        assert [c.title for c in active] == ["Test de puits"]

    @pytest.mark.asyncio
    async def test_template_condition_gates_the_step(self, facade, purchase) -> None:
        await well_test(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)
        await facade.advance_step(purchase.id, OWNER_ID)

        check = await facade.check_step_advancement(purchase.id, OWNER_ID)
        assert [c.title for c in check.gate.required] == ["Test de puits"]


class TestLoadPack:
    @pytest.mark.asyncio
    async def test_loads_every_step_with_due_dates(self, facade, purchase) -> None:
        inspection = await facade.create_condition_template(
            label_fr="Inspection",
            label_en="Inspection",
            level="recommended",
            applies_when={"property_type": "house"},
            deadline_reference="acceptance",
            default_deadline_days=5,
        )
        await well_test(facade, step=4, deadline_reference="closing", default_deadline_days=-10)
        await condo_review(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)

        result = await facade.load_condition_pack(
            purchase.id,
            OWNER_ID,
            acceptance_date=date(2026, 3, 1),
            closing_date=date(2026, 5, 1),
        )

        assert result.loaded == 2
        assert result.by_step == {1: 1, 4: 1}
        first, well = result.created
        assert first.template_id == inspection.id
        assert first.transaction_step_id == purchase.step_by_order(1).id
        assert first.due_date == date(2026, 3, 6)
        assert well.transaction_step_id == purchase.step_by_order(4).id
        assert well.due_date == date(2026, 4, 21)

        history = await facade.get_condition_history(well.id, OWNER_ID)
        assert history[0].metadata_json["packLoad"] is True
        assert history[0].metadata_json["dueDate"] == "2026-04-21"

    @pytest.mark.asyncio
    async def test_second_load_creates_nothing(self, facade, purchase) -> None:
        await well_test(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)
        await facade.load_condition_pack(purchase.id, OWNER_ID)

        result = await facade.load_condition_pack(purchase.id, OWNER_ID)
        assert result.loaded == 0
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_pack_then_step_enter_does_not_duplicate(self, facade, purchase) -> None:
        await well_test(facade)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)
        await facade.load_condition_pack(purchase.id, OWNER_ID)

        transition = await facade.advance_step(purchase.id, OWNER_ID)
        assert transition.automation.created == []

    @pytest.mark.asyncio
    async def test_missing_step_is_skipped(self, facade, purchase) -> None:
        await well_test(facade, step=9)
        await facade.set_transaction_profile(purchase.id, OWNER_ID, **RURAL_HOUSE)

        with capture_logs() as logs:
            result = await facade.load_condition_pack(purchase.id, OWNER_ID)

        assert result.loaded == 0
        assert result.skipped == 1
        assert any(
            log["event"] == "template.step_missing" and log["step_order"] == 9 for log in logs
        )

    @pytest.mark.asyncio
    async def test_requires_profile(self, facade, purchase) -> None:
        with pytest.raises(NotFoundError):
            await facade.load_condition_pack(purchase.id, OWNER_ID)
