"""Automation rules and the engine that dispatches to them.

Two rules ship today:
    - IdentityVerificationRule: FINTRAC-style identity checks for the buyers
      (purchase) or sellers (sale) once the compliance step is reached.
    - ConditionTemplateRule: the condition templates of the entered step that
      match the transaction profile.

The AutomationEngine holds the registered rules and fans every step-enter,
party-added and party-removed event out to all of them. Each rule owns its
activation predicate, so adding a rule never touches the step service.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from transaction_engine.automation.condition_packs import ConditionPackService, PackLoad
from transaction_engine.automation.condition_templates import (
    CONDITION_TEMPLATE_RULE_KEY,
    ConditionTemplateRule,
)
from transaction_engine.automation.identity_verification import (
    IDENTITY_RULE_KEY,
    IdentityVerificationRule,
)
from transaction_engine.domain.rule_protocol import AutomationRule, RuleOutcome
from transaction_engine.infrastructure.database.repositories import ConditionRepository
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.config import Settings

logger = get_logger(__name__)


class AutomationEngine:
    """Registry of automation rules.

    Usage:
        engine = AutomationEngine.from_settings(get_settings())
        outcome = await engine.on_step_enter(session, transaction, step, actor_id)
        compliant = await engine.is_compliant(session, transaction.id)
    """

    def __init__(self, rules: Iterable[AutomationRule] = ()) -> None:
        self._rules: dict[str, AutomationRule] = {}
        for rule in rules:
            self.register(rule)

    @classmethod
    def from_settings(cls, settings: Settings) -> AutomationEngine:
        """Build the engine with the default rule set."""
        return cls(
            [
                IdentityVerificationRule(
                    activation_step_slug=settings.compliance_step_slug,
                    label=settings.compliance_rule_label,
                ),
                ConditionTemplateRule(locale=settings.default_locale),
            ]
        )

    def register(self, rule: AutomationRule) -> None:
        """Add a rule.

        Raises:
            TypeError: If the object does not satisfy the AutomationRule protocol.
            ValueError: If a rule with the same key is already registered.
        """
        if not isinstance(rule, AutomationRule):
            raise TypeError(f"{type(rule).__name__} does not implement AutomationRule")
        if rule.key in self._rules:
            raise ValueError(f"Automation rule '{rule.key}' is already registered")
        self._rules[rule.key] = rule

    def get_rule(self, key: str) -> AutomationRule | None:
        return self._rules.get(key)

    @property
    def rules(self) -> list[AutomationRule]:
        return list(self._rules.values())

    def get_rule_keys(self) -> list[str]:
        """Return the keys of all registered rules, in registration order."""
        return list(self._rules.keys())

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------

    async def on_step_enter(
        self, session: AsyncSession, transaction: Any, step: Any, actor_id: int | None
    ) -> RuleOutcome:
        outcome = RuleOutcome()
        for rule in self._rules.values():
            outcome.merge(await rule.on_step_enter(session, transaction, step, actor_id))
        self._log("step_enter", transaction, outcome)
        return outcome

    async def on_party_added(
        self, session: AsyncSession, transaction: Any, party: Any, actor_id: int | None
    ) -> RuleOutcome:
        outcome = RuleOutcome()
        for rule in self._rules.values():
            outcome.merge(await rule.on_party_added(session, transaction, party, actor_id))
        self._log("party_added", transaction, outcome)
        return outcome

    async def on_party_removed(
        self, session: AsyncSession, transaction: Any, party: Any, actor_id: int | None
    ) -> RuleOutcome:
        outcome = RuleOutcome()
        for rule in self._rules.values():
            outcome.merge(await rule.on_party_removed(session, transaction, party, actor_id))
        self._log("party_removed", transaction, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------

    async def is_compliant(self, session: AsyncSession, transaction_id: int) -> bool:
        """True iff no non-archived compliance condition is still pending.

        Vacuously true when compliance rules never created anything.
        """
        keys = [rule.key for rule in self._rules.values() if rule.is_compliance]
        pending = await ConditionRepository(session).count_pending_for_rules(transaction_id, keys)
        return pending == 0

    @staticmethod
    def _log(source: str, transaction: Any, outcome: RuleOutcome) -> None:
        if outcome.changed:
            logger.info(
                "automation.applied",
                source=source,
                transaction_id=transaction.id,
                created=len(outcome.created),
                archived=len(outcome.archived),
            )


__all__ = [
    "CONDITION_TEMPLATE_RULE_KEY",
    "IDENTITY_RULE_KEY",
    "AutomationEngine",
    "ConditionPackService",
    "ConditionTemplateRule",
    "IdentityVerificationRule",
    "PackLoad",
]
