"""Conditions gate for step advancement.

Pure function over condition-like objects (ORM rows in production, simple
dataclasses in tests). It never raises for a closed gate: the caller gets a
GateCheck value and decides how to surface it.

Ordering contract: blocking conditions are always reported before required
ones and recommended conditions never appear in either list. Within a level,
conditions keep creation order.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from transaction_engine.domain.enums import ConditionLevel, ConditionStatus


class GateCondition(Protocol):
    id: int
    title: str
    level: str
    status: str
    archived: bool
    transaction_step_id: int | None


@dataclass(frozen=True)
class GateCheck:
    """Outcome of evaluating the conditions attached to one step.

    Attributes:
        step_id: The TransactionStep the gate was evaluated for.
        blocking: Pending blocking-level conditions (prevent advancement).
        required: Pending required-level conditions (prevent advancement,
            reported separately).
        recommended: Pending recommended-level conditions (advisory only).
    """

    step_id: int | None
    blocking: list[Any] = field(default_factory=list)
    required: list[Any] = field(default_factory=list)
    recommended: list[Any] = field(default_factory=list)

    @property
    def can_advance(self) -> bool:
        return not self.blocking and not self.required

    def to_dict(self) -> dict:
        return {
            "stepId": self.step_id,
            "canAdvance": self.can_advance,
            "blockingConditions": [c.id for c in self.blocking],
            "requiredConditions": [c.id for c in self.required],
            "recommendedConditions": [c.id for c in self.recommended],
        }


def _creation_key(condition: GateCondition) -> int:
    # ids are allocated in insertion order
    return condition.id


def evaluate_gate(conditions: Iterable[GateCondition], step_id: int | None) -> GateCheck:
    """Split the pending, non-archived conditions of ``step_id`` by level."""
    pending = sorted(
        (
            c
            for c in conditions
            if c.transaction_step_id == step_id
            and not c.archived
            and c.status == ConditionStatus.PENDING
        ),
        key=_creation_key,
    )
    return GateCheck(
        step_id=step_id,
        blocking=[c for c in pending if c.level == ConditionLevel.BLOCKING],
        required=[c for c in pending if c.level == ConditionLevel.REQUIRED],
        recommended=[c for c in pending if c.level == ConditionLevel.RECOMMENDED],
    )
