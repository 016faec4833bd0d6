"""Identity verification (FINTRAC-style KYC) automation rule.

Materializes one blocking ``legal`` condition per target party once the
transaction reaches the compliance step:

    purchase -> every buyer
    sale     -> every seller

Two event sources can require the same condition: entering the compliance
step, and a matching party joining after that step was reached. Both go
through ``_materialize``, which looks up the (transaction, rule, party) key
first, so repeated or reordered delivery never creates a second condition.

Removing the party archives the condition (its audit trail is compliance
history) and deletes the party's identity verification record.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from transaction_engine.domain.enums import (
    ActivityType,
    ConditionEventType,
    ConditionLevel,
    ConditionStatus,
    IdentityDocumentType,
    PartyRole,
    StepStatus,
    TransactionType,
)
from transaction_engine.domain.exceptions import NotFoundError, ValidationError
from transaction_engine.domain.rule_protocol import ActivityEntry, RuleOutcome
from transaction_engine.infrastructure.database.orm_models import (
    Condition,
    IdentityVerificationRecord,
)
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
    IdentityRecordRepository,
)
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.infrastructure.database.orm_models import (
        Transaction,
        TransactionParty,
        TransactionStep,
    )

logger = get_logger(__name__)

IDENTITY_RULE_KEY = "identity_verification"


class IdentityVerificationRule:
    """Creates and retracts identity verification conditions."""

    key = IDENTITY_RULE_KEY
    is_compliance = True

    def __init__(self, activation_step_slug: str = "firm-pending", label: str = "FINTRAC") -> None:
        self.activation_step_slug = activation_step_slug
        self.label = label

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @staticmethod
    def target_role(transaction: Transaction) -> PartyRole:
        if transaction.type == TransactionType.SALE:
            return PartyRole.SELLER
        return PartyRole.BUYER

    def applies_to(self, transaction: Transaction, party: TransactionParty) -> bool:
        return party.role == self.target_role(transaction)

    def activation_step(self, transaction: Transaction) -> TransactionStep | None:
        for step in transaction.steps:
            if step.slug == self.activation_step_slug:
                return step
        return None

    def has_reached_activation(self, transaction: Transaction) -> bool:
        """True once the activation step is completed or the current step is at/after it."""
        activation = self.activation_step(transaction)
        if activation is None:
            return False
        if activation.status == StepStatus.COMPLETED:
            return True
        current = transaction.current_step
        return current is not None and current.step_order >= activation.step_order

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

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
        if step.slug != self.activation_step_slug:
            return outcome

        for party in list(transaction.parties):
            if self.applies_to(transaction, party):
                outcome.merge(await self._materialize(session, transaction, step, party, actor_id))
        return outcome

    async def on_party_added(
        self,
        session: AsyncSession,
        transaction: Transaction,
        party: TransactionParty,
        actor_id: int | None,
    ) -> RuleOutcome:
        if not transaction.auto_conditions_enabled or not self.applies_to(transaction, party):
            return RuleOutcome()
        if not self.has_reached_activation(transaction):
            return RuleOutcome()

        step = self.activation_step(transaction)
        return await self._materialize(session, transaction, step, party, actor_id)

    async def on_party_removed(
        self,
        session: AsyncSession,
        transaction: Transaction,
        party: TransactionParty,
        actor_id: int | None,
    ) -> RuleOutcome:
        outcome = RuleOutcome()
        condition_repo = ConditionRepository(session)
        event_repo = ConditionEventRepository(session)
        record_repo = IdentityRecordRepository(session)

        activation = self.activation_step(transaction)
        for condition in await condition_repo.list_active_for_party(
            transaction.id, party.id, self.key
        ):
            archived_step = (
                activation.step_order if activation is not None else condition.step_when_created
            )
            await condition_repo.archive(condition, at_step=archived_step)
            await event_repo.record(
                condition_id=condition.id,
                event_type=ConditionEventType.ARCHIVED,
                actor=actor_id,
                metadata={
                    "reason": "party_removed",
                    "ruleKey": self.key,
                    "partyId": party.id,
                    "partyName": party.full_name,
                    "archivedStep": archived_step,
                },
            )
            outcome.archived.append(condition)
            outcome.activities.append(
                ActivityEntry(
                    transaction_id=transaction.id,
                    actor_id=actor_id,
                    activity_type=ActivityType.CONDITION_ARCHIVED,
                    metadata={"conditionId": condition.id, "title": condition.title},
                )
            )

        record = await record_repo.get_for_party(transaction.id, party.id)
        if record is not None:
            await record_repo.delete(record)

        if outcome.changed or record is not None:
            logger.info(
                "automation.identity_retracted",
                transaction_id=transaction.id,
                party_id=party.id,
                archived=len(outcome.archived),
                record_deleted=record is not None,
            )
        return outcome

    # ------------------------------------------------------------------
    # Identity verification records
    # ------------------------------------------------------------------

    async def complete_identity_record(
        self,
        session: AsyncSession,
        transaction: Transaction,
        party_id: int,
        actor_id: int,
        *,
        date_of_birth: date,
        id_type: str,
        id_number: str,
        occupation: str | None = None,
        source_of_funds: str | None = None,
        notes: str | None = None,
    ) -> IdentityVerificationRecord:
        """Fill in the identity data collected for a party and stamp it verified."""
        record_repo = IdentityRecordRepository(session)
        record = await record_repo.get_for_party(transaction.id, party_id)
        if record is None:
            raise NotFoundError("IdentityVerificationRecord", party_id)

        try:
            document = IdentityDocumentType(id_type)
        except ValueError as err:
            valid = ", ".join(t.value for t in IdentityDocumentType)
            raise ValidationError(
                f"Unknown identity document type '{id_type}'. Valid types: {valid}",
                field="idType",
            ) from err
        if not id_number.strip():
            raise ValidationError("Identity document number is required", field="idNumber")

        record.date_of_birth = date_of_birth
        record.id_type = document.value
        record.id_number = id_number.strip()
        record.occupation = occupation
        record.source_of_funds = source_of_funds
        record.notes = notes
        record.verified_at = datetime.now(UTC)
        record.verified_by = actor_id
        await session.flush()

        logger.info(
            "automation.identity_record_completed",
            transaction_id=transaction.id,
            party_id=party_id,
            id_type=document.value,
        )
        return record

    async def list_identity_records(
        self, session: AsyncSession, transaction_id: int
    ) -> list[IdentityVerificationRecord]:
        return await IdentityRecordRepository(session).list_by_transaction(transaction_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _title(self, party: TransactionParty) -> str:
        return f"{self.label} — {party.full_name}"

    async def _materialize(
        self,
        session: AsyncSession,
        transaction: Transaction,
        step: TransactionStep,
        party: TransactionParty,
        actor_id: int | None,
    ) -> RuleOutcome:
        """Create the party's condition and record unless they already exist."""
        condition_repo = ConditionRepository(session)
        record_repo = IdentityRecordRepository(session)
        outcome = RuleOutcome()

        existing = await condition_repo.find_active_for_rule(transaction.id, self.key, party.id)
        if existing is not None:
            logger.debug(
                "automation.identity_condition_exists",
                transaction_id=transaction.id,
                party_id=party.id,
                condition_id=existing.id,
            )
            return outcome

        condition = await condition_repo.create(
            Condition(
                transaction_id=transaction.id,
                transaction_step_id=step.id,
                title=self._title(party),
                label_fr=f"Vérification d'identité {self.label} — {party.full_name}",
                label_en=f"{self.label} identity verification — {party.full_name}",
                description=(
                    f"Verify the identity of {party.full_name} ({party.role}) with a "
                    f"government-issued photo ID and record it before the transaction closes."
                ),
                level=ConditionLevel.BLOCKING.value,
                status=ConditionStatus.PENDING.value,
                condition_type="legal",
                step_when_created=step.step_order,
                rule_key=self.key,
                party_id=party.id,
            )
        )
        await ConditionEventRepository(session).record(
            condition_id=condition.id,
            event_type=ConditionEventType.CREATED,
            actor=actor_id,
            metadata={
                "source": "automation",
                "ruleKey": self.key,
                "partyId": party.id,
                "stepOrder": step.step_order,
            },
        )

        if await record_repo.get_for_party(transaction.id, party.id) is None:
            await record_repo.create(
                IdentityVerificationRecord(transaction_id=transaction.id, party_id=party.id)
            )

        outcome.created.append(condition)
        outcome.activities.append(
            ActivityEntry(
                transaction_id=transaction.id,
                actor_id=actor_id,
                activity_type=ActivityType.CONDITION_CREATED,
                metadata={
                    "conditionId": condition.id,
                    "title": condition.title,
                    "source": "automation",
                },
            )
        )
        logger.info(
            "automation.identity_condition_created",
            transaction_id=transaction.id,
            party_id=party.id,
            condition_id=condition.id,
            step_order=step.step_order,
        )
        return outcome
