"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility): they add,
flush and query, and the surrounding unit of work commits or rolls back.

ConditionRepository together with EvidenceRepository and
ConditionEventRepository form the Condition Store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from transaction_engine.domain.enums import ConditionLevel, ConditionStatus
from transaction_engine.domain.exceptions import ValidationError
from transaction_engine.infrastructure.database.orm_models import (
    Condition,
    ConditionEvent,
    ConditionEvidence,
    ConditionTemplate,
    IdentityVerificationRecord,
    Transaction,
    TransactionParty,
    TransactionProfile,
    TransactionStep,
    WorkflowTemplate,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.domain.enums import ConditionEventType


class TransactionRepository:
    """Data access for transactions and their steps."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: Transaction) -> Transaction:
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_by_id(
        self, transaction_id: int, for_update: bool = False
    ) -> Transaction | None:
        """Fetch a transaction with its steps and parties.

        With ``for_update`` the row is locked (SELECT ... FOR UPDATE) until the
        unit of work ends, which serializes concurrent operations on the same
        transaction, and already-loaded state is refreshed from the database.
        """
        stmt = select(Transaction).where(Transaction.id == transaction_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class WorkflowTemplateRepository:
    """Read access to workflow templates."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, template: WorkflowTemplate) -> WorkflowTemplate:
        self._session.add(template)
        await self._session.flush()
        return template

    async def get_by_id(self, template_id: int) -> WorkflowTemplate | None:
        result = await self._session.execute(
            select(WorkflowTemplate).where(WorkflowTemplate.id == template_id)
        )
        return result.scalar_one_or_none()


class PartyRepository:
    """Data access for transaction parties."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_to(self, transaction: Transaction, party: TransactionParty) -> TransactionParty:
        """Attach a new party through the loaded roster so it stays in sync."""
        transaction.parties.append(party)
        await self._session.flush()
        return party

    async def remove_from(self, transaction: Transaction, party: TransactionParty) -> None:
        """Detach a party; the delete-orphan cascade removes the row on flush."""
        transaction.parties.remove(party)
        await self._session.flush()


class ConditionRepository:
    """Data access for conditions: CRUD plus the lookups automation relies on."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, condition: Condition) -> Condition:
        """Insert a new condition after checking its enumerated fields.

        Raises:
            ValidationError: If ``level`` or ``status`` is not an allowed value.
        """
        if condition.level not in {lvl.value for lvl in ConditionLevel}:
            raise ValidationError(f"Invalid condition level '{condition.level}'", field="level")
        if condition.status is None:
            condition.status = ConditionStatus.PENDING.value
        if condition.status not in {s.value for s in ConditionStatus}:
            raise ValidationError(
                f"Invalid condition status '{condition.status}'", field="status"
            )
        self._session.add(condition)
        await self._session.flush()
        return condition

    async def get_by_id(self, condition_id: int, refresh: bool = False) -> Condition | None:
        """Fetch a condition; ``refresh`` overwrites any state already in the session."""
        stmt = select(Condition).where(Condition.id == condition_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_by_title_and_step(
        self, transaction_id: int, title: str, step_id: int | None
    ) -> Condition | None:
        """Return the non-archived condition with this title on this step, if any."""
        stmt = select(Condition).where(
            Condition.transaction_id == transaction_id,
            Condition.title == title,
            Condition.archived.is_(False),
        )
        if step_id is None:
            stmt = stmt.where(Condition.transaction_step_id.is_(None))
        else:
            stmt = stmt.where(Condition.transaction_step_id == step_id)
        result = await self._session.execute(stmt.order_by(Condition.id.asc()).limit(1))
        return result.scalar_one_or_none()

    async def list_active_for_party(
        self, transaction_id: int, party_id: int, rule_key: str | None = None
    ) -> list[Condition]:
        """Non-archived conditions automation materialized for a party.

        Without ``rule_key`` every rule's conditions for the party match.
        """
        stmt = select(Condition).where(
            Condition.transaction_id == transaction_id,
            Condition.party_id == party_id,
            Condition.archived.is_(False),
        )
        if rule_key is None:
            stmt = stmt.where(Condition.rule_key.is_not(None))
        else:
            stmt = stmt.where(Condition.rule_key == rule_key)
        result = await self._session.execute(stmt.order_by(Condition.id.asc()))
        return list(result.scalars().all())

    async def find_active_for_rule(
        self, transaction_id: int, rule_key: str | None, party_id: int
    ) -> Condition | None:
        """Return the non-archived condition a rule materialized for a party.

        This is the anti-duplicate lookup keyed by (transaction, rule, party).
        """
        conditions = await self.list_active_for_party(transaction_id, party_id, rule_key)
        return conditions[0] if conditions else None

    async def find_active_for_template(
        self, transaction_id: int, template_id: int, step_id: int
    ) -> Condition | None:
        """Return the non-archived condition materialized from a template on a step."""
        result = await self._session.execute(
            select(Condition)
            .where(
                Condition.transaction_id == transaction_id,
                Condition.template_id == template_id,
                Condition.transaction_step_id == step_id,
                Condition.archived.is_(False),
            )
            .order_by(Condition.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_transaction(
        self, transaction_id: int, include_archived: bool = False
    ) -> list[Condition]:
        stmt = select(Condition).where(Condition.transaction_id == transaction_id)
        if not include_archived:
            stmt = stmt.where(Condition.archived.is_(False))
        result = await self._session.execute(stmt.order_by(Condition.id.asc()))
        return list(result.scalars().all())

    async def list_for_step(self, transaction_id: int, step_id: int) -> list[Condition]:
        """Non-archived conditions attached to one step (the gating surface)."""
        result = await self._session.execute(
            select(Condition)
            .where(
                Condition.transaction_id == transaction_id,
                Condition.transaction_step_id == step_id,
                Condition.archived.is_(False),
            )
            .order_by(Condition.id.asc())
        )
        return list(result.scalars().all())

    async def group_by_step_order(self, transaction_id: int) -> dict[int, list[Condition]]:
        """Group every condition (archived included) by the order of its step.

        Groups are ordered by step order and conditions inside a group by
        creation. A condition whose step is gone falls back to the order it
        was created at, or 0.
        """
        result = await self._session.execute(
            select(Condition, TransactionStep.step_order)
            .outerjoin(TransactionStep, TransactionStep.id == Condition.transaction_step_id)
            .where(Condition.transaction_id == transaction_id)
            .order_by(Condition.id.asc())
        )
        rows = [
            (step_order if step_order is not None else condition.step_when_created or 0, condition)
            for condition, step_order in result.all()
        ]
        grouped: dict[int, list[Condition]] = {}
        for step_order, condition in sorted(rows, key=lambda row: (row[0], row[1].id)):
            grouped.setdefault(step_order, []).append(condition)
        return grouped

    async def count_pending_for_rules(self, transaction_id: int, rule_keys: list[str]) -> int:
        if not rule_keys:
            return 0
        result = await self._session.execute(
            select(func.count(Condition.id)).where(
                Condition.transaction_id == transaction_id,
                Condition.rule_key.in_(rule_keys),
                Condition.archived.is_(False),
                Condition.status == ConditionStatus.PENDING.value,
            )
        )
        return int(result.scalar_one())

    async def save(self, condition: Condition) -> Condition:
        condition.updated_at = datetime.now(UTC)
        await self._session.flush()
        return condition

    async def archive(self, condition: Condition, at_step: int | None) -> Condition:
        """Take a condition off the gating surface while keeping it for history."""
        condition.archived = True
        condition.archived_step = at_step
        return await self.save(condition)

    async def delete(self, condition: Condition) -> None:
        """Hard-delete a condition together with its evidence and audit rows."""
        await self._session.execute(
            delete(ConditionEvidence).where(ConditionEvidence.condition_id == condition.id)
        )
        await self._session.execute(
            delete(ConditionEvent).where(ConditionEvent.condition_id == condition.id)
        )
        await self._session.delete(condition)
        await self._session.flush()


class EvidenceRepository:
    """Data access for condition evidence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, evidence: ConditionEvidence) -> ConditionEvidence:
        self._session.add(evidence)
        await self._session.flush()
        return evidence

    async def get_by_id(self, evidence_id: int) -> ConditionEvidence | None:
        result = await self._session.execute(
            select(ConditionEvidence).where(ConditionEvidence.id == evidence_id)
        )
        return result.scalar_one_or_none()

    async def list_by_condition(self, condition_id: int) -> list[ConditionEvidence]:
        result = await self._session.execute(
            select(ConditionEvidence)
            .where(ConditionEvidence.condition_id == condition_id)
            .order_by(ConditionEvidence.id.asc())
        )
        return list(result.scalars().all())

    async def count_by_condition(self, condition_id: int) -> int:
        result = await self._session.execute(
            select(func.count(ConditionEvidence.id)).where(
                ConditionEvidence.condition_id == condition_id
            )
        )
        return int(result.scalar_one())

    async def delete(self, evidence: ConditionEvidence) -> None:
        await self._session.delete(evidence)
        await self._session.flush()


class ConditionEventRepository:
    """Data access for the append-only condition audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        condition_id: int,
        event_type: ConditionEventType,
        actor: int | str | None = None,
        metadata: dict | None = None,
    ) -> ConditionEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = ConditionEvent(
            condition_id=condition_id,
            event_type=event_type.value,
            actor=str(actor) if actor is not None else "system",
            metadata_json=metadata or {},
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_condition(self, condition_id: int) -> list[ConditionEvent]:
        """Fetch all events for a condition in chronological order."""
        result = await self._session.execute(
            select(ConditionEvent)
            .where(ConditionEvent.condition_id == condition_id)
            .order_by(ConditionEvent.id.asc())
        )
        return list(result.scalars().all())


class IdentityRecordRepository:
    """Data access for identity verification records (identity rule only)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: IdentityVerificationRecord) -> IdentityVerificationRecord:
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_for_party(
        self, transaction_id: int, party_id: int
    ) -> IdentityVerificationRecord | None:
        result = await self._session.execute(
            select(IdentityVerificationRecord).where(
                IdentityVerificationRecord.transaction_id == transaction_id,
                IdentityVerificationRecord.party_id == party_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_transaction(self, transaction_id: int) -> list[IdentityVerificationRecord]:
        result = await self._session.execute(
            select(IdentityVerificationRecord)
            .where(IdentityVerificationRecord.transaction_id == transaction_id)
            .order_by(IdentityVerificationRecord.id.asc())
        )
        return list(result.scalars().all())

    async def delete(self, record: IdentityVerificationRecord) -> None:
        await self._session.delete(record)
        await self._session.flush()


class ConditionTemplateRepository:
    """Data access for condition templates (the condition packs)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, template: ConditionTemplate) -> ConditionTemplate:
        self._session.add(template)
        await self._session.flush()
        return template

    async def list_active(
        self, step: int | None = None, defaults_only: bool = True
    ) -> list[ConditionTemplate]:
        """Active templates ordered by step then pack order.

        With ``step`` only the templates of that step order are returned.
        Step-agnostic templates (``step`` NULL) belong to the first step.
        """
        stmt = select(ConditionTemplate).where(ConditionTemplate.is_active.is_(True))
        if defaults_only:
            stmt = stmt.where(ConditionTemplate.is_default.is_(True))
        if step is not None:
            stmt = stmt.where(func.coalesce(ConditionTemplate.step, 1) == step)
        result = await self._session.execute(
            stmt.order_by(
                func.coalesce(ConditionTemplate.step, 1).asc(),
                ConditionTemplate.sort_order.asc(),
                ConditionTemplate.id.asc(),
            )
        )
        return list(result.scalars().all())


class TransactionProfileRepository:
    """Data access for transaction profiles (one row per transaction)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, transaction_id: int) -> TransactionProfile | None:
        return await self._session.get(TransactionProfile, transaction_id)

    async def save(self, profile: TransactionProfile) -> TransactionProfile:
        self._session.add(profile)
        await self._session.flush()
        return profile
