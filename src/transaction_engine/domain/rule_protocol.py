"""Automation Rule Protocol.

Defines the interface that every automation rule must implement. This is a
Protocol (structural subtyping) so concrete rules don't need to inherit from
a base class — they just need to match the shape.

Each hook receives the caller's database session, performs its own
activation check, and returns a RuleOutcome describing what it changed plus
the activity-feed entries to emit once the surrounding unit of work
succeeds. Hooks must be idempotent: at-least-once delivery is assumed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class ActivityEntry:
    """One fire-and-forget activity-feed write."""

    transaction_id: int
    actor_id: int | None
    activity_type: str
    metadata: dict = field(default_factory=dict)


@dataclass
class RuleOutcome:
    """What a rule hook did.

    Attributes:
        created: Conditions materialized by the hook.
        archived: Conditions archived by the hook.
        resolved: Conditions resolved by the hook.
        activities: Activity-feed entries to emit after commit.
    """

    created: list[Any] = field(default_factory=list)
    archived: list[Any] = field(default_factory=list)
    resolved: list[Any] = field(default_factory=list)
    activities: list[ActivityEntry] = field(default_factory=list)

    def merge(self, other: RuleOutcome) -> RuleOutcome:
        self.created.extend(other.created)
        self.archived.extend(other.archived)
        self.resolved.extend(other.resolved)
        self.activities.extend(other.activities)
        return self

    @property
    def changed(self) -> bool:
        return bool(self.created or self.archived or self.resolved)


@runtime_checkable
class AutomationRule(Protocol):
    """Protocol that all automation rules must satisfy.

    Attributes:
        key: Stable identifier stored on every condition the rule creates.
        is_compliance: Whether the rule's conditions count toward
            ``AutomationEngine.is_compliant``.
    """

    key: str
    is_compliance: bool

    async def on_step_enter(
        self, session: AsyncSession, transaction: Any, step: Any, actor_id: int | None
    ) -> RuleOutcome:
        """Called for every step the transaction enters."""
        ...

    async def on_party_added(
        self, session: AsyncSession, transaction: Any, party: Any, actor_id: int | None
    ) -> RuleOutcome:
        """Called after a party joined the transaction."""
        ...

    async def on_party_removed(
        self, session: AsyncSession, transaction: Any, party: Any, actor_id: int | None
    ) -> RuleOutcome:
        """Called before a party row is deleted from the transaction."""
        ...
