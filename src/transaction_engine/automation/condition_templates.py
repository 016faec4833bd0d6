"""Condition template automation rule.

When a transaction enters a step, every active default template of that
step whose ``applies_when`` matches the transaction profile is materialized
on the step. Step-agnostic templates belong to the first step. Transactions
without a profile get nothing: the templates cannot be matched.

Template conditions are not compliance conditions. Party events do not
concern them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from transaction_engine.automation.condition_packs import ConditionPackService
from transaction_engine.domain.enums import ActivityType
from transaction_engine.domain.rule_protocol import ActivityEntry, RuleOutcome
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.infrastructure.database.orm_models import (
        Transaction,
        TransactionParty,
        TransactionStep,
    )

logger = get_logger(__name__)

CONDITION_TEMPLATE_RULE_KEY = "condition_templates"


class ConditionTemplateRule:
    """Materializes matching condition templates on step enter."""

    key = CONDITION_TEMPLATE_RULE_KEY
    is_compliance = False

    def __init__(self, locale: str = "fr") -> None:
        self.locale = locale

    async def on_step_enter(
        self,
        session: AsyncSession,
        transaction: Transaction,
        step: TransactionStep,
        actor_id: int | None,
    ) -> RuleOutcome:
        outcome = RuleOutcome()
        if not transaction.auto_conditions_enabled:
            return outcome

        packs = ConditionPackService(session, locale=self.locale)
        profile = await packs.get_profile(transaction.id)
        if profile is None:
            logger.debug("automation.templates_no_profile", transaction_id=transaction.id)
            return outcome

        step_start = step.entered_at.date() if step.entered_at else None
        for template in await packs.applicable_templates(profile, step_order=step.step_order):
            condition = await packs.materialize(
                transaction,
                step,
                template,
                actor_id,
                due_date=template.calculate_due_date(step_start=step_start),
                rule_key=self.key,
            )
            if condition is None:
                continue
            outcome.created.append(condition)
            outcome.activities.append(
                ActivityEntry(
                    transaction_id=transaction.id,
                    actor_id=actor_id,
                    activity_type=ActivityType.CONDITION_CREATED,
                    metadata={
                        "conditionId": condition.id,
                        "title": condition.title,
                        "source": "template",
                        "templateId": template.id,
                    },
                )
            )

        if outcome.created:
            logger.info(
                "automation.templates_materialized",
                transaction_id=transaction.id,
                step_order=step.step_order,
                created=len(outcome.created),
            )
        return outcome

    async def on_party_added(
        self,
        session: AsyncSession,
        transaction: Transaction,
        party: TransactionParty,
        actor_id: int | None,
    ) -> RuleOutcome:
        return RuleOutcome()

    async def on_party_removed(
        self,
        session: AsyncSession,
        transaction: Transaction,
        party: TransactionParty,
        actor_id: int | None,
    ) -> RuleOutcome:
        return RuleOutcome()
