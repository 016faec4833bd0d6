"""Condition Service — user-driven condition lifecycle.

Covers everything except resolution (see resolution_service.py):
creation, field updates, hard deletion, evidence and history reads.
Every mutation appends to the condition's audit log, and archived
conditions are read-only for all of them.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any

from transaction_engine.domain.enums import (
    ConditionEventType,
    ConditionLevel,
    ConditionStatus,
    EvidenceType,
)
from transaction_engine.domain.exceptions import (
    ConditionArchivedError,
    NotFoundError,
    ValidationError,
)
from transaction_engine.infrastructure.database.orm_models import Condition, ConditionEvidence
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
    EvidenceRepository,
)
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.infrastructure.database.orm_models import (
        ConditionEvent,
        Transaction,
    )

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "label_fr",
        "label_en",
        "description",
        "level",
        "condition_type",
        "due_date",
        "transaction_step_id",
    }
)
NON_NULLABLE_FIELDS = frozenset({"title", "level", "condition_type"})


def _audit_value(value: Any) -> Any:
    return value.isoformat() if isinstance(value, date) else value


class ConditionService:
    """Creates, edits and deletes conditions and their evidence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._condition_repo = ConditionRepository(session)
        self._evidence_repo = EvidenceRepository(session)
        self._event_repo = ConditionEventRepository(session)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create(
        self,
        transaction: Transaction,
        actor_id: int,
        *,
        title: str,
        level: str = ConditionLevel.RECOMMENDED.value,
        description: str | None = None,
        condition_type: str = "other",
        due_date: date | None = None,
        label_fr: str | None = None,
        label_en: str | None = None,
        transaction_step_id: int | None = None,
    ) -> Condition:
        """Create a pending condition, attached to the current step by default."""
        if not title or not title.strip():
            raise ValidationError("Condition title is required", field="title")

        step_id = transaction_step_id or transaction.current_step_id
        step = self._step_of(transaction, step_id)

        condition = await self._condition_repo.create(
            Condition(
                transaction_id=transaction.id,
                transaction_step_id=step.id if step else None,
                title=title.strip(),
                label_fr=label_fr,
                label_en=label_en,
                description=description,
                level=level,
                status=ConditionStatus.PENDING.value,
                condition_type=condition_type,
                due_date=due_date,
                step_when_created=step.step_order if step else None,
            )
        )
        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.CREATED,
            actor=actor_id,
            metadata={
                "source": "user",
                "level": condition.level,
                "stepOrder": condition.step_when_created,
            },
        )
        logger.info(
            "condition.created",
            condition_id=condition.id,
            transaction_id=transaction.id,
            level=condition.level,
        )
        return condition

    async def update(
        self,
        transaction: Transaction,
        condition: Condition,
        actor_id: int,
        changes: dict[str, Any],
    ) -> Condition:
        """Apply field changes and record which fields moved.

        Status and resolution fields are not updatable here: a condition only
        reaches ``completed`` through the resolution policy.
        """
        self._ensure_mutable(condition)
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        for name in sorted(NON_NULLABLE_FIELDS & set(changes)):
            if changes[name] is None:
                raise ValidationError(f"Condition {name} cannot be null", field=name)
        if "title" in changes:
            if not changes["title"].strip():
                raise ValidationError("Condition title is required", field="title")
            changes = {**changes, "title": changes["title"].strip()}
        if "level" in changes and changes["level"] not in {lvl.value for lvl in ConditionLevel}:
            raise ValidationError(f"Invalid condition level '{changes['level']}'", field="level")
        if "transaction_step_id" in changes:
            step = self._step_of(transaction, changes["transaction_step_id"])
            changes = {**changes, "transaction_step_id": step.id if step else None}

        diff = {}
        for name, value in changes.items():
            old = getattr(condition, name)
            if old != value:
                diff[name] = {"from": _audit_value(old), "to": _audit_value(value)}
                setattr(condition, name, value)

        if not diff:
            return condition

        await self._condition_repo.save(condition)
        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.UPDATED,
            actor=actor_id,
            metadata={"changes": diff},
        )
        logger.info("condition.updated", condition_id=condition.id, fields=sorted(diff))
        return condition

    async def delete(self, condition: Condition) -> None:
        """Hard-delete a non-archived condition."""
        self._ensure_mutable(condition)
        await self._condition_repo.delete(condition)
        logger.info("condition.deleted", condition_id=condition.id)

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    async def add_evidence(
        self,
        condition: Condition,
        actor_id: int,
        *,
        evidence_type: str,
        url: str | None = None,
        note: str | None = None,
        title: str | None = None,
    ) -> ConditionEvidence:
        """Attach evidence. Files are stored elsewhere; only the resulting URL is kept."""
        self._ensure_mutable(condition)
        try:
            kind = EvidenceType(evidence_type)
        except ValueError as err:
            valid = ", ".join(t.value for t in EvidenceType)
            raise ValidationError(
                f"Unknown evidence type '{evidence_type}'. Valid types: {valid}", field="type"
            ) from err
        if kind in (EvidenceType.FILE, EvidenceType.LINK) and not url:
            raise ValidationError(f"A url is required for {kind.value} evidence", field="url")
        if kind is EvidenceType.NOTE and not (note or "").strip():
            raise ValidationError("A note is required for note evidence", field="note")

        evidence = await self._evidence_repo.create(
            ConditionEvidence(
                condition_id=condition.id,
                type=kind.value,
                url=url,
                note=note,
                title=title,
                created_by=actor_id,
            )
        )
        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.EVIDENCE_ADDED,
            actor=actor_id,
            metadata={"evidenceId": evidence.id, "type": kind.value, "title": title},
        )
        logger.info(
            "condition.evidence_added",
            condition_id=condition.id,
            evidence_id=evidence.id,
            type=kind.value,
        )
        return evidence

    async def remove_evidence(self, condition: Condition, evidence_id: int, actor_id: int) -> None:
        self._ensure_mutable(condition)
        evidence = await self._evidence_repo.get_by_id(evidence_id)
        if evidence is None or evidence.condition_id != condition.id:
            raise NotFoundError("ConditionEvidence", evidence_id)

        await self._evidence_repo.delete(evidence)
        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.EVIDENCE_REMOVED,
            actor=actor_id,
            metadata={"evidenceId": evidence_id, "type": evidence.type, "title": evidence.title},
        )
        logger.info(
            "condition.evidence_removed", condition_id=condition.id, evidence_id=evidence_id
        )

    async def list_evidence(self, condition_id: int) -> list[ConditionEvidence]:
        return await self._evidence_repo.list_by_condition(condition_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def history(self, condition_id: int) -> list[ConditionEvent]:
        """Audit trail of a condition, oldest first. Works for archived conditions."""
        return await self._event_repo.get_by_condition(condition_id)

    async def grouped_by_step(self, transaction_id: int) -> dict[int, list[Condition]]:
        return await self._condition_repo.group_by_step_order(transaction_id)

    async def active(self, transaction_id: int) -> list[Condition]:
        """Non-archived conditions, most severe level first, then by creation."""
        conditions = await self._condition_repo.list_by_transaction(transaction_id)
        return sorted(conditions, key=lambda c: (-ConditionLevel(c.level).severity, c.id))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_mutable(condition: Condition) -> None:
        if condition.archived:
            raise ConditionArchivedError(condition.id)

    @staticmethod
    def _step_of(transaction: Transaction, step_id: int | None):
        if step_id is None:
            return None
        for step in transaction.steps:
            if step.id == step_id:
                return step
        raise NotFoundError("TransactionStep", step_id)
