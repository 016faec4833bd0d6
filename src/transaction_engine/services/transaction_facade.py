"""Transaction Facade — the single entry point for external callers.

Every operation follows the same shape:

    1. Load the transaction, locking its row (SELECT ... FOR UPDATE) for
       mutations, and check the tenant scope. A transaction the actor may
       not see is reported exactly like a missing one.
    2. Delegate to the step, condition, resolution and automation services.
    3. Turn negative gate / resolution results into the typed errors of
       domain/exceptions.py.
    4. Queue fire-and-forget side effects; they are released only when the
       caller's unit of work commits and are never awaited here.

The caller owns the unit of work (``session_scope``),
so a step change and the conditions automation created for it are committed
together or not at all.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from transaction_engine.automation import (
    IDENTITY_RULE_KEY,
    AutomationEngine,
    ConditionPackService,
    IdentityVerificationRule,
    PackLoad,
)
from transaction_engine.config import Settings, get_settings
from transaction_engine.domain.enums import (
    ActivityType,
    ConditionLevel,
    PartyRole,
    ResolutionType,
    StepStatus,
    TransactionStatus,
    TransactionType,
)
from transaction_engine.domain.exceptions import (
    AcceptedOfferRequiredError,
    BlockingConditionsError,
    NotFoundError,
    RequiredResolutionsNeededError,
    ResolutionFailedError,
    ValidationError,
)
from transaction_engine.domain.resolution import RequiredResolution, ResolutionRequest
from transaction_engine.domain.rule_protocol import ActivityEntry, RuleOutcome
from transaction_engine.infrastructure.database.orm_models import (
    Transaction,
    TransactionParty,
    TransactionStep,
)
from transaction_engine.infrastructure.database.repositories import (
    ConditionRepository,
    PartyRepository,
    TransactionRepository,
    WorkflowTemplateRepository,
)
from transaction_engine.logging_config import get_logger
from transaction_engine.services.collaborators import (
    AcceptedOfferLookup,
    OwnerTenantScope,
    TenantScope,
)
from transaction_engine.services.condition_service import ConditionService
from transaction_engine.services.resolution_service import ResolutionService
from transaction_engine.services.side_effects import (
    EmailMessage,
    NotificationMessage,
    SideEffectDispatcher,
    get_side_effect_dispatcher,
)
from transaction_engine.services.step_service import StepService, StepTransition

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.domain.gate import GateCheck
    from transaction_engine.infrastructure.database.orm_models import (
        Condition,
        ConditionEvent,
        ConditionEvidence,
        ConditionTemplate,
        IdentityVerificationRecord,
        TransactionProfile,
    )

logger = get_logger(__name__)


@dataclass(frozen=True)
class StepCheck:
    """Preview of whether the active step can be left right now."""

    step: TransactionStep
    gate: GateCheck
    offer_required: bool = False
    has_accepted_offer: bool | None = None

    @property
    def can_advance(self) -> bool:
        return self.gate.can_advance and (not self.offer_required or bool(self.has_accepted_offer))


class TransactionFacade:
    """Orchestrates steps, conditions and automation for one unit of work."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        automation: AutomationEngine | None = None,
        side_effects: SideEffectDispatcher | None = None,
        tenant_scope: TenantScope | None = None,
        offer_lookup: AcceptedOfferLookup | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._automation = automation or AutomationEngine.from_settings(self._settings)
        self._side_effects = side_effects or get_side_effect_dispatcher()
        self._tenant_scope = tenant_scope or OwnerTenantScope()
        self._offer_lookup = offer_lookup

        self._transaction_repo = TransactionRepository(session)
        self._template_repo = WorkflowTemplateRepository(session)
        self._party_repo = PartyRepository(session)
        self._condition_repo = ConditionRepository(session)
        self._conditions = ConditionService(session)
        self._resolution = ResolutionService(
            session, escape_reason_min_length=self._settings.escape_reason_min_length
        )
        self._steps = StepService(session, self._automation, self._resolution)
        self._packs = ConditionPackService(session, locale=self._settings.default_locale)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        actor_id: int,
        workflow_template_id: int,
        transaction_type: str,
        organization_id: int | None = None,
        auto_conditions_enabled: bool = True,
    ) -> Transaction:
        """Instantiate a workflow template and activate its first step."""
        try:
            kind = TransactionType(transaction_type)
        except ValueError as err:
            raise ValidationError(
                f"Unknown transaction type '{transaction_type}'", field="type"
            ) from err

        template = await self._template_repo.get_by_id(workflow_template_id)
        if template is None:
            raise NotFoundError("WorkflowTemplate", workflow_template_id)
        if template.transaction_type != kind:
            raise ValidationError(
                f"Workflow template {template.id} is for {template.transaction_type} "
                f"transactions, not {kind.value}",
                field="workflowTemplateId",
            )
        if not template.steps:
            raise ValidationError(
                f"Workflow template {template.id} has no steps", field="workflowTemplateId"
            )

        transaction = await self._transaction_repo.create(
            Transaction(
                owner_user_id=actor_id,
                organization_id=organization_id,
                type=kind.value,
                status=TransactionStatus.ACTIVE.value,
                workflow_template_id=template.id,
                auto_conditions_enabled=auto_conditions_enabled,
                steps=[
                    TransactionStep(
                        workflow_step=workflow_step,
                        step_order=workflow_step.step_order,
                        status=StepStatus.PENDING.value,
                    )
                    for workflow_step in template.steps
                ],
                parties=[],
            )
        )
        transition = await self._steps.start(transaction, actor_id)

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.TRANSACTION_CREATED, {
                    "type": transaction.type,
                    "workflowTemplateId": template.id,
                }),
                self._activity(transaction, actor_id, ActivityType.STEP_ENTERED, {
                    "stepOrder": transition.new_step.step_order,
                    "stepName": transition.new_step.name,
                }),
                *transition.automation.activities,
            ],
        )
        logger.info(
            "transaction.created",
            transaction_id=transaction.id,
            type=transaction.type,
            steps=len(transaction.steps),
        )
        return transaction

    async def get_transaction(self, transaction_id: int, actor_id: int) -> Transaction:
        return await self._load_transaction(transaction_id, actor_id, for_update=False)

    async def get_current_status(self, transaction_id: int, actor_id: int) -> dict:
        """Progress summary of the workflow."""
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        return StepService.summarize(transaction)

    async def is_compliant(self, transaction_id: int, actor_id: int) -> bool:
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        return await self._automation.is_compliant(self._session, transaction.id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def check_step_advancement(self, transaction_id: int, actor_id: int) -> StepCheck:
        """Evaluate both gates of the active step without mutating anything."""
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        step = self._steps.require_active_step(transaction)
        gate = await self._steps.check_gate(transaction)
        offer_required = self._offer_required(step)
        has_offer = await self._has_accepted_offer(transaction) if offer_required else None
        return StepCheck(
            step=step,
            gate=gate,
            offer_required=offer_required,
            has_accepted_offer=has_offer,
        )

    async def advance_step(
        self,
        transaction_id: int,
        actor_id: int,
        note: str | None = None,
        notify_email: bool = False,
        required_resolutions: Sequence[RequiredResolution] = (),
    ) -> StepTransition:
        """Complete the active step and enter the next one.

        ``required_resolutions`` resolve pending required conditions of the
        active step in the same unit of work; every pending required
        condition must be covered. The step's leftover recommended
        conditions are resolved as not_applicable and all of its conditions
        are archived.

        Raises:
            NotFoundError: Unknown or inaccessible transaction.
            NoActiveStepError / StepNotActiveError: Nothing to advance.
            BlockingConditionsError: Blocking conditions pending (checked first).
            RequiredResolutionsNeededError: Required conditions pending and
                not covered by ``required_resolutions``.
            ValidationError: A resolution names a condition that is not a
                pending required condition of the step.
            ResolutionFailedError: The policy refused an inline resolution.
            AcceptedOfferRequiredError: Offer-gated step without accepted offer.
        """
        return await self._move(
            transaction_id, actor_id, False, note, notify_email, required_resolutions
        )

    async def skip_step(
        self,
        transaction_id: int,
        actor_id: int,
        note: str | None = None,
        notify_email: bool = False,
        required_resolutions: Sequence[RequiredResolution] = (),
    ) -> StepTransition:
        """Like advance_step, but the outgoing step is recorded as skipped."""
        return await self._move(
            transaction_id, actor_id, True, note, notify_email, required_resolutions
        )

    async def go_to_step(
        self, transaction_id: int, target_step_order: int, actor_id: int
    ) -> StepTransition:
        """Administrative jump to any step. The conditions gate is not evaluated."""
        transaction = await self._load_transaction(transaction_id, actor_id)
        transition = await self._steps.go_to(transaction, target_step_order, actor_id)

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.STEP_ENTERED, {
                    "stepOrder": transition.new_step.step_order,
                    "stepName": transition.new_step.name,
                    "via": "goto",
                    "fromOrder": (
                        transition.previous_step.step_order if transition.previous_step else None
                    ),
                }),
                *transition.automation.activities,
            ],
            self._condition_notifications(transaction, transition.automation),
        )
        return transition

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    async def add_party(
        self,
        transaction_id: int,
        actor_id: int,
        *,
        role: str,
        full_name: str,
        email: str | None = None,
        phone: str | None = None,
        is_primary: bool = False,
    ) -> TransactionParty:
        try:
            party_role = PartyRole(role)
        except ValueError as err:
            valid = ", ".join(r.value for r in PartyRole)
            raise ValidationError(
                f"Unknown party role '{role}'. Valid roles: {valid}", field="role"
            ) from err
        if not full_name or not full_name.strip():
            raise ValidationError("Party name is required", field="fullName")

        transaction = await self._load_transaction(transaction_id, actor_id)
        party = await self._party_repo.add_to(
            transaction,
            TransactionParty(
                role=party_role.value,
                full_name=full_name.strip(),
                email=email,
                phone=phone,
                is_primary=is_primary,
            ),
        )
        outcome = await self._automation.on_party_added(
            self._session, transaction, party, actor_id
        )

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.PARTY_ADDED, {
                    "partyId": party.id,
                    "role": party.role,
                    "fullName": party.full_name,
                }),
                *outcome.activities,
            ],
            self._condition_notifications(transaction, outcome),
        )
        logger.info(
            "party.added", transaction_id=transaction.id, party_id=party.id, role=party.role
        )
        return party

    async def remove_party(self, transaction_id: int, party_id: int, actor_id: int) -> RuleOutcome:
        """Remove a party; automation archives the conditions created for it."""
        transaction = await self._load_transaction(transaction_id, actor_id)
        party = next((p for p in transaction.parties if p.id == party_id), None)
        if party is None:
            raise NotFoundError("TransactionParty", party_id)

        outcome = await self._automation.on_party_removed(
            self._session, transaction, party, actor_id
        )
        await self._party_repo.remove_from(transaction, party)

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.PARTY_REMOVED, {
                    "partyId": party_id,
                    "role": party.role,
                    "fullName": party.full_name,
                }),
                *outcome.activities,
            ]
        )
        logger.info(
            "party.removed",
            transaction_id=transaction.id,
            party_id=party_id,
            archived=len(outcome.archived),
        )
        return outcome

    # ------------------------------------------------------------------
    # Identity verification
    # ------------------------------------------------------------------

    async def complete_identity_record(
        self,
        transaction_id: int,
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
        """Record a party's identity data, then close its condition if evidence exists."""
        transaction = await self._load_transaction(transaction_id, actor_id)
        rule = self._identity_rule()
        record = await rule.complete_identity_record(
            self._session,
            transaction,
            party_id,
            actor_id,
            date_of_birth=date_of_birth,
            id_type=id_type,
            id_number=id_number,
            occupation=occupation,
            source_of_funds=source_of_funds,
            notes=notes,
        )
        outcome = await self._resolution.resolve_condition_for_party(
            transaction.id, party_id, actor_id, rule_key=rule.key
        )
        if outcome.resolved:
            self._emit(
                [
                    self._activity(transaction, actor_id, ActivityType.CONDITION_COMPLETED, {
                        "conditionId": outcome.condition.id,
                        "resolutionType": outcome.condition.resolution_type,
                        "source": "identity_record",
                    })
                ]
            )
        return record

    async def list_identity_records(
        self, transaction_id: int, actor_id: int
    ) -> list[IdentityVerificationRecord]:
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        return await self._identity_rule().list_identity_records(self._session, transaction.id)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    async def create_condition(
        self,
        transaction_id: int,
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
        transaction = await self._load_transaction(transaction_id, actor_id)
        condition = await self._conditions.create(
            transaction,
            actor_id,
            title=title,
            level=level,
            description=description,
            condition_type=condition_type,
            due_date=due_date,
            label_fr=label_fr,
            label_en=label_en,
            transaction_step_id=transaction_step_id,
        )
        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_CREATED, {
                    "conditionId": condition.id,
                    "title": condition.title,
                    "level": condition.level,
                })
            ]
        )
        return condition

    async def update_condition(
        self, condition_id: int, actor_id: int, changes: dict[str, Any]
    ) -> Condition:
        transaction, condition = await self._load_condition(condition_id, actor_id)
        condition = await self._conditions.update(transaction, condition, actor_id, changes)
        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_UPDATED, {
                    "conditionId": condition.id,
                    "fields": sorted(changes),
                })
            ]
        )
        return condition

    async def complete_condition(
        self, condition_id: int, actor_id: int, note: str | None = None
    ) -> Condition:
        """Shortcut for resolving as ``completed``; the evidence policy still applies."""
        return await self.resolve_condition(
            condition_id, actor_id, ResolutionType.COMPLETED.value, note=note
        )

    async def delete_condition(self, condition_id: int, actor_id: int) -> None:
        transaction, condition = await self._load_condition(condition_id, actor_id)
        title = condition.title
        await self._conditions.delete(condition)
        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_DELETED, {
                    "conditionId": condition_id,
                    "title": title,
                })
            ]
        )

    async def resolve_condition(
        self,
        condition_id: int,
        actor_id: int,
        resolution_type: str,
        *,
        note: str | None = None,
        has_evidence: bool | None = None,
        evidence_id: int | None = None,
        evidence_filename: str | None = None,
        escaped_without_proof: bool = False,
        escape_reason: str | None = None,
    ) -> Condition:
        """Close a condition under the evidence / escape-hatch policy.

        Raises:
            ConditionArchivedError: The condition is archived.
            ValidationError: Unknown resolution type.
            ResolutionFailedError: The policy refused the resolution; the
                condition stays pending.
        """
        transaction, condition = await self._load_condition(condition_id, actor_id)
        outcome = await self._resolution.resolve_condition(
            condition,
            ResolutionRequest(
                resolution_type=resolution_type,
                note=note,
                has_evidence=has_evidence,
                evidence_id=evidence_id,
                evidence_filename=evidence_filename,
                escaped_without_proof=escaped_without_proof,
                escape_reason=escape_reason,
            ),
            actor_id,
        )
        if not outcome.resolved:
            raise ResolutionFailedError(condition.id, outcome.reason or "resolution refused")

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_COMPLETED, {
                    "conditionId": condition.id,
                    "title": condition.title,
                    "resolutionType": condition.resolution_type,
                    "escapedWithoutProof": outcome.escaped,
                })
            ]
        )
        return condition

    async def add_evidence(
        self,
        condition_id: int,
        actor_id: int,
        *,
        evidence_type: str,
        url: str | None = None,
        note: str | None = None,
        title: str | None = None,
    ) -> ConditionEvidence:
        _, condition = await self._load_condition(condition_id, actor_id)
        return await self._conditions.add_evidence(
            condition, actor_id, evidence_type=evidence_type, url=url, note=note, title=title
        )

    async def remove_evidence(self, condition_id: int, evidence_id: int, actor_id: int) -> None:
        _, condition = await self._load_condition(condition_id, actor_id)
        await self._conditions.remove_evidence(condition, evidence_id, actor_id)

    async def list_evidence(self, condition_id: int, actor_id: int) -> list[ConditionEvidence]:
        _, condition = await self._load_condition(condition_id, actor_id, for_update=False)
        return await self._conditions.list_evidence(condition.id)

    async def get_condition_history(
        self, condition_id: int, actor_id: int
    ) -> list[ConditionEvent]:
        _, condition = await self._load_condition(condition_id, actor_id, for_update=False)
        return await self._conditions.history(condition.id)

    async def get_conditions_grouped_by_step(
        self, transaction_id: int, actor_id: int
    ) -> dict[int, list[Condition]]:
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        return await self._conditions.grouped_by_step(transaction.id)

    async def get_active_conditions(self, transaction_id: int, actor_id: int) -> list[Condition]:
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        return await self._conditions.active(transaction.id)

    # ------------------------------------------------------------------
    # Profiles and condition packs
    # ------------------------------------------------------------------

    async def get_transaction_profile(
        self, transaction_id: int, actor_id: int
    ) -> TransactionProfile:
        transaction = await self._load_transaction(transaction_id, actor_id, for_update=False)
        profile = await self._packs.get_profile(transaction.id)
        if profile is None:
            raise NotFoundError("TransactionProfile", transaction_id)
        return profile

    async def set_transaction_profile(
        self, transaction_id: int, actor_id: int, **fields: Any
    ) -> TransactionProfile:
        """Create or replace the profile the condition templates are matched against."""
        transaction = await self._load_transaction(transaction_id, actor_id)
        return await self._packs.save_profile(transaction, **fields)

    async def load_condition_pack(
        self,
        transaction_id: int,
        actor_id: int,
        acceptance_date: date | None = None,
        closing_date: date | None = None,
    ) -> PackLoad:
        """Materialize every profile-matching template on its step at once.

        Raises:
            NotFoundError: Unknown transaction, or it has no profile yet.
        """
        transaction = await self._load_transaction(transaction_id, actor_id)
        profile = await self._packs.get_profile(transaction.id)
        if profile is None:
            raise NotFoundError("TransactionProfile", transaction_id)

        result = await self._packs.load_pack(
            transaction,
            profile,
            actor_id,
            acceptance_date=acceptance_date,
            closing_date=closing_date,
        )
        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_CREATED, {
                    "conditionId": condition.id,
                    "title": condition.title,
                    "source": "pack",
                })
                for condition in result.created
            ]
        )
        return result

    async def create_condition_template(self, **fields: Any) -> ConditionTemplate:
        return await self._packs.create_template(**fields)

    async def list_condition_templates(self, step: int | None = None) -> list[ConditionTemplate]:
        return await self._packs.list_templates(step=step)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load_transaction(
        self, transaction_id: int, actor_id: int, for_update: bool = True
    ) -> Transaction:
        transaction = await self._transaction_repo.get_by_id(transaction_id, for_update=for_update)
        if transaction is None or not self._tenant_scope.can_access(transaction, actor_id):
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def _load_condition(
        self, condition_id: int, actor_id: int, for_update: bool = True
    ) -> tuple[Transaction, Condition]:
        condition = await self._condition_repo.get_by_id(condition_id)
        if condition is None:
            raise NotFoundError("Condition", condition_id)
        try:
            transaction = await self._load_transaction(
                condition.transaction_id, actor_id, for_update=for_update
            )
        except NotFoundError as err:
            raise NotFoundError("Condition", condition_id) from err
        if for_update:
            # re-read under the transaction lock
            condition = await self._condition_repo.get_by_id(condition_id, refresh=True)
            if condition is None:
                raise NotFoundError("Condition", condition_id)
        return transaction, condition

    async def _move(
        self,
        transaction_id: int,
        actor_id: int,
        skip: bool,
        note: str | None,
        notify_email: bool,
        required_resolutions: Sequence[RequiredResolution] = (),
    ) -> StepTransition:
        transaction = await self._load_transaction(transaction_id, actor_id)
        step = self._steps.require_active_step(transaction)

        gate = await self._steps.check_gate(transaction)
        if gate.blocking:
            raise BlockingConditionsError(gate.blocking)
        resolved: list[Condition] = []
        if required_resolutions:
            resolved = await self._resolve_required(gate, required_resolutions, actor_id)
            gate = await self._steps.check_gate(transaction)
        self._raise_for_gate(gate)
        if self._offer_required(step) and not await self._has_accepted_offer(transaction):
            raise AcceptedOfferRequiredError(step.slug)

        transition = await self._steps.advance(transaction, actor_id, skip=skip, gate=gate)
        if not transition.advanced:
            self._raise_for_gate(transition.gate)

        self._emit(
            [
                self._activity(transaction, actor_id, ActivityType.CONDITION_COMPLETED, {
                    "conditionId": condition.id,
                    "title": condition.title,
                    "resolutionType": condition.resolution_type,
                    "via": "step_change",
                })
                for condition in resolved
            ]
        )
        self._emit_step_effects(transition, actor_id, skip, note, notify_email)
        return transition

    async def _resolve_required(
        self,
        gate: GateCheck,
        resolutions: Sequence[RequiredResolution],
        actor_id: int,
    ) -> list[Condition]:
        """Apply inline resolutions to the pending required conditions of the gate."""
        pending = {condition.id: condition for condition in gate.required}
        supplied = {resolution.condition_id: resolution for resolution in resolutions}

        unknown = sorted(set(supplied) - set(pending))
        if unknown:
            raise ValidationError(
                f"Not pending required conditions of the active step: "
                f"{', '.join(str(i) for i in unknown)}",
                field="requiredResolutions",
            )
        missing = [condition for condition in gate.required if condition.id not in supplied]
        if missing:
            raise RequiredResolutionsNeededError(missing)

        resolved = []
        for condition in gate.required:
            outcome = await self._resolution.resolve_condition(
                condition, supplied[condition.id].to_request(), actor_id
            )
            if not outcome.resolved:
                raise ResolutionFailedError(condition.id, outcome.reason or "resolution refused")
            resolved.append(condition)
        return resolved

    @staticmethod
    def _raise_for_gate(gate: GateCheck) -> None:
        if gate.blocking:
            raise BlockingConditionsError(gate.blocking)
        if gate.required:
            raise RequiredResolutionsNeededError(gate.required)

    def _offer_required(self, step: TransactionStep) -> bool:
        return step.slug in self._settings.offer_gate_slug_list

    async def _has_accepted_offer(self, transaction: Transaction) -> bool:
        if self._offer_lookup is None:
            logger.debug("offer_gate.not_configured", transaction_id=transaction.id)
            return True
        return await self._offer_lookup.has_accepted_offer(transaction.id)

    def _identity_rule(self) -> IdentityVerificationRule:
        rule = self._automation.get_rule(IDENTITY_RULE_KEY)
        if not isinstance(rule, IdentityVerificationRule):
            raise NotFoundError("AutomationRule", IDENTITY_RULE_KEY)
        return rule

    # --- Side effects ---

    @staticmethod
    def _activity(
        transaction: Transaction, actor_id: int | None, activity_type: ActivityType, metadata: dict
    ) -> ActivityEntry:
        return ActivityEntry(
            transaction_id=transaction.id,
            actor_id=actor_id,
            activity_type=activity_type,
            metadata=metadata,
        )

    def _emit(
        self,
        activities: Iterable[ActivityEntry] = (),
        notifications: Iterable[NotificationMessage] = (),
        emails: Iterable[EmailMessage] = (),
    ) -> None:
        dispatcher = self._side_effects
        effects = [dispatcher.activity(entry) for entry in activities]
        effects += [dispatcher.notification(message) for message in notifications]
        effects += [dispatcher.email(message) for message in emails]
        dispatcher.submit_after_commit(self._session, effects)

    @staticmethod
    def _condition_notifications(
        transaction: Transaction, outcome: RuleOutcome
    ) -> list[NotificationMessage]:
        return [
            NotificationMessage(
                user_id=transaction.owner_user_id,
                transaction_id=transaction.id,
                type="condition_created",
                title=f"New {condition.level} condition: {condition.title}",
                link=f"/transactions/{transaction.id}/conditions",
                severity="warning" if condition.level == ConditionLevel.BLOCKING else "info",
            )
            for condition in outcome.created
        ]

    def _emit_step_effects(
        self,
        transition: StepTransition,
        actor_id: int,
        skip: bool,
        note: str | None,
        notify_email: bool,
    ) -> None:
        transaction = transition.transaction
        previous, new_step = transition.previous_step, transition.new_step

        activities = [
            self._activity(
                transaction,
                actor_id,
                ActivityType.STEP_SKIPPED if skip else ActivityType.STEP_COMPLETED,
                {"stepOrder": previous.step_order, "stepName": previous.name, "note": note},
            )
        ]
        if new_step is not None:
            activities.append(
                self._activity(transaction, actor_id, ActivityType.STEP_ENTERED, {
                    "stepOrder": new_step.step_order,
                    "stepName": new_step.name,
                })
            )
        activities.extend(transition.automation.activities)

        notifications = [
            NotificationMessage(
                user_id=transaction.owner_user_id,
                transaction_id=transaction.id,
                type="step_advanced",
                title=(
                    f"Step '{new_step.name}' started"
                    if new_step is not None
                    else "Transaction workflow completed"
                ),
                link=f"/transactions/{transaction.id}",
            ),
            *self._condition_notifications(transaction, transition.automation),
        ]

        emails = []
        if notify_email:
            emails = [
                EmailMessage(
                    template="step_advanced",
                    locale=self._settings.default_locale,
                    to=party.email,
                    context={
                        "transactionId": transaction.id,
                        "partyName": party.full_name,
                        "previousStep": previous.name,
                        "newStep": new_step.name if new_step is not None else None,
                        "note": note,
                    },
                )
                for party in transaction.parties
                if party.email
            ]

        self._emit(activities, notifications, emails)
