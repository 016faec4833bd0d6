"""Condition packs: template-driven conditions.

Condition templates are grouped in packs (rural, condo, financed, ...) and
carry an ``applies_when`` filter over the transaction profile. This service
owns the profile and template data and turns matching templates into
conditions:

    on step enter   the templates of the entered step (see
                    automation/condition_templates.py)
    load_pack       every matching template of every step at once, with
                    relative deadlines resolved to due dates

Materialization is keyed by (transaction, template, step): a template that
already produced a live condition on a step is not materialized again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from transaction_engine.domain.enums import (
    AccessType,
    ConditionEventType,
    ConditionLevel,
    ConditionStatus,
    DeadlineReference,
    PropertyContext,
    PropertyType,
    SourceType,
)
from transaction_engine.domain.exceptions import ValidationError
from transaction_engine.infrastructure.database.orm_models import (
    Condition,
    ConditionTemplate,
    TransactionProfile,
)
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
    ConditionTemplateRepository,
    TransactionProfileRepository,
)
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.infrastructure.database.orm_models import (
        Transaction,
        TransactionStep,
    )

logger = get_logger(__name__)


@dataclass
class PackLoad:
    """Result of loading a condition pack into a transaction.

    Attributes:
        created: Conditions created by this load.
        by_step: Number of created conditions per step order.
        skipped: Templates skipped because their step does not exist or a
            live condition already came from them.
    """

    created: list[Condition] = field(default_factory=list)
    by_step: dict[int, int] = field(default_factory=dict)
    skipped: int = 0

    @property
    def loaded(self) -> int:
        return len(self.created)


def _parse(enum_cls: Any, value: Any, field_name: str, optional: bool = False) -> str | None:
    if value is None and optional:
        return None
    try:
        return enum_cls(value).value
    except ValueError as err:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Valid values: {valid}", field=field_name
        ) from err


class ConditionPackService:
    """Manages profiles and templates and materializes template conditions."""

    def __init__(self, session: AsyncSession, locale: str = "fr") -> None:
        self._session = session
        self._locale = locale
        self._profile_repo = TransactionProfileRepository(session)
        self._template_repo = ConditionTemplateRepository(session)
        self._condition_repo = ConditionRepository(session)
        self._event_repo = ConditionEventRepository(session)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, transaction_id: int) -> TransactionProfile | None:
        return await self._profile_repo.get(transaction_id)

    async def save_profile(
        self,
        transaction: Transaction,
        *,
        property_type: str,
        property_context: str,
        is_financed: bool,
        has_well: bool | None = None,
        has_septic: bool | None = None,
        access_type: str | None = None,
        condo_docs_required: bool | None = None,
        appraisal_required: bool | None = None,
    ) -> TransactionProfile:
        """Create or replace the profile of a transaction."""
        values = {
            "property_type": _parse(PropertyType, property_type, "property_type"),
            "property_context": _parse(PropertyContext, property_context, "property_context"),
            "is_financed": is_financed,
            "has_well": has_well,
            "has_septic": has_septic,
            "access_type": _parse(AccessType, access_type, "access_type", optional=True),
            "condo_docs_required": condo_docs_required,
            "appraisal_required": appraisal_required,
        }
        profile = await self._profile_repo.get(transaction.id)
        if profile is None:
            profile = TransactionProfile(transaction_id=transaction.id, **values)
        else:
            for name, value in values.items():
                setattr(profile, name, value)
        await self._profile_repo.save(profile)
        logger.info(
            "profile.saved",
            transaction_id=transaction.id,
            property_type=profile.property_type,
            property_context=profile.property_context,
        )
        return profile

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def create_template(
        self,
        *,
        label_fr: str,
        label_en: str,
        level: str = ConditionLevel.RECOMMENDED.value,
        source_type: str = SourceType.BEST_PRACTICE.value,
        description_fr: str | None = None,
        description_en: str | None = None,
        category: str | None = None,
        step: int | None = None,
        applies_when: dict | None = None,
        pack: str | None = None,
        sort_order: int = 0,
        is_default: bool = True,
        deadline_reference: str | None = None,
        default_deadline_days: int | None = None,
    ) -> ConditionTemplate:
        if not label_fr.strip() or not label_en.strip():
            raise ValidationError("Template labels are required", field="label")
        if step is not None and step < 1:
            raise ValidationError("Template step must be a step order (>= 1)", field="step")
        if (deadline_reference is None) != (default_deadline_days is None):
            raise ValidationError(
                "deadline_reference and default_deadline_days go together",
                field="deadline_reference",
            )
        unknown = set(applies_when or {}) - set(TransactionProfile.MATCH_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown profile fields in applies_when: {', '.join(sorted(unknown))}",
                field="applies_when",
            )

        template = await self._template_repo.create(
            ConditionTemplate(
                label_fr=label_fr.strip(),
                label_en=label_en.strip(),
                description_fr=description_fr,
                description_en=description_en,
                level=_parse(ConditionLevel, level, "level"),
                source_type=_parse(SourceType, source_type, "source_type"),
                category=category,
                step=step,
                applies_when=dict(applies_when or {}),
                pack=pack,
                sort_order=sort_order,
                is_default=is_default,
                is_active=True,
                deadline_reference=_parse(
                    DeadlineReference, deadline_reference, "deadline_reference", optional=True
                ),
                default_deadline_days=default_deadline_days,
            )
        )
        logger.info("template.created", template_id=template.id, pack=pack, step=step)
        return template

    async def list_templates(self, step: int | None = None) -> list[ConditionTemplate]:
        return await self._template_repo.list_active(step=step, defaults_only=False)

    async def applicable_templates(
        self, profile: TransactionProfile, step_order: int | None = None
    ) -> list[ConditionTemplate]:
        """Active default templates whose ``applies_when`` matches the profile."""
        match = profile.to_match_object()
        templates = await self._template_repo.list_active(step=step_order)
        return [template for template in templates if template.applies_to(match)]

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    async def materialize(
        self,
        transaction: Transaction,
        step: TransactionStep,
        template: ConditionTemplate,
        actor_id: int | None,
        *,
        due_date: date | None = None,
        rule_key: str | None = None,
        pack_load: bool = False,
    ) -> Condition | None:
        """Create the template's condition on ``step`` unless a live one exists."""
        existing = await self._condition_repo.find_active_for_template(
            transaction.id, template.id, step.id
        )
        if existing is not None:
            logger.debug(
                "template.condition_exists",
                transaction_id=transaction.id,
                template_id=template.id,
                condition_id=existing.id,
            )
            return None

        condition = await self._condition_repo.create(
            Condition(
                transaction_id=transaction.id,
                transaction_step_id=step.id,
                template_id=template.id,
                title=template.label(self._locale),
                label_fr=template.label_fr,
                label_en=template.label_en,
                description=template.localized_description(self._locale),
                level=template.level,
                status=ConditionStatus.PENDING.value,
                condition_type=template.category or template.source_type,
                due_date=due_date,
                step_when_created=step.step_order,
                rule_key=rule_key,
            )
        )
        metadata = {
            "source": "template",
            "templateId": template.id,
            "pack": template.pack,
            "level": template.level,
            "sourceType": template.source_type,
            "stepOrder": step.step_order,
        }
        if pack_load:
            metadata["packLoad"] = True
            metadata["dueDate"] = due_date.isoformat() if due_date else None
        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.CREATED,
            actor=actor_id,
            metadata=metadata,
        )
        return condition

    async def load_pack(
        self,
        transaction: Transaction,
        profile: TransactionProfile,
        actor_id: int,
        acceptance_date: date | None = None,
        closing_date: date | None = None,
    ) -> PackLoad:
        """Materialize every matching template on its step in one go.

        Step-agnostic templates land on the first step. Relative deadlines
        resolve against the given dates or the step's start date.
        """
        result = PackLoad()
        for template in await self.applicable_templates(profile):
            step_order = template.step or 1
            step = transaction.step_by_order(step_order)
            if step is None:
                logger.warning(
                    "template.step_missing",
                    transaction_id=transaction.id,
                    template_id=template.id,
                    step_order=step_order,
                )
                result.skipped += 1
                continue

            due_date = template.calculate_due_date(
                acceptance_date=acceptance_date,
                closing_date=closing_date,
                step_start=step.entered_at.date() if step.entered_at else None,
            )
            condition = await self.materialize(
                transaction, step, template, actor_id, due_date=due_date, pack_load=True
            )
            if condition is None:
                result.skipped += 1
                continue
            result.created.append(condition)
            result.by_step[step_order] = result.by_step.get(step_order, 0) + 1

        logger.info(
            "template.pack_loaded",
            transaction_id=transaction.id,
            loaded=result.loaded,
            by_step=result.by_step,
            skipped=result.skipped,
        )
        return result
