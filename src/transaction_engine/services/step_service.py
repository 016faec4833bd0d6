"""Step Service — moves a transaction through its workflow steps.

Every status change of a TransactionStep goes through the StepStateMachine
guard. Operations:

    start     activate the first step of a new transaction
    advance   complete (or skip) the active step, activate the next one
    go_to     administrative jump to any step order, bypassing the gate

``advance`` evaluates the conditions gate itself and returns a StepTransition
with ``advanced=False`` when it is closed; nothing is mutated in that case.
Once the gate is open, the conditions of the step being left are closed:
pending recommended ones are resolved as not_applicable, then every one of
them is archived with the order of the step that follows. ``go_to`` leaves
conditions alone.
Each successful move fires the automation engine's step-enter hook for the
step that became active, inside the same unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from transaction_engine.domain.enums import (
    ConditionEventType,
    ConditionLevel,
    ConditionStatus,
    ResolutionType,
    StepStatus,
    TransactionStatus,
)
from transaction_engine.domain.exceptions import (
    BlockingConditionsError,
    GoToStepFailedError,
    InvalidStepTransitionError,
    NoActiveStepError,
    RequiredResolutionsNeededError,
    StepNotActiveError,
)
from transaction_engine.domain.gate import GateCheck, evaluate_gate
from transaction_engine.domain.resolution import ResolutionRequest
from transaction_engine.domain.rule_protocol import RuleOutcome
from transaction_engine.domain.state_machine import validate_transition
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
)
from transaction_engine.logging_config import get_logger
from transaction_engine.services.resolution_service import ResolutionService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.automation import AutomationEngine
    from transaction_engine.infrastructure.database.orm_models import (
        Condition,
        Transaction,
        TransactionStep,
    )

logger = get_logger(__name__)


@dataclass
class StepTransition:
    """Result of a step move.

    Attributes:
        transaction: The transaction that was moved.
        previous_step: The step that was active before the move.
        new_step: The step that is active now (None once the workflow is done).
        advanced: False when the gate refused the move.
        gate: The gate evaluated for ``previous_step`` (advance/skip only).
        automation: What the automation rules did for ``new_step``.
        closed: Conditions of ``previous_step`` archived by the move.
    """

    transaction: Transaction
    previous_step: TransactionStep | None
    new_step: TransactionStep | None
    advanced: bool = True
    gate: GateCheck | None = None
    automation: RuleOutcome = field(default_factory=RuleOutcome)
    closed: list[Condition] = field(default_factory=list)


class StepService:
    """Drives the per-step state machines of one transaction."""

    def __init__(
        self,
        session: AsyncSession,
        automation: AutomationEngine,
        resolution: ResolutionService | None = None,
    ) -> None:
        self._session = session
        self._automation = automation
        self._resolution = resolution or ResolutionService(session)
        self._condition_repo = ConditionRepository(session)
        self._event_repo = ConditionEventRepository(session)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def require_active_step(self, transaction: Transaction) -> TransactionStep:
        """Return the active current step.

        Raises:
            NoActiveStepError: If the transaction has no current step.
            StepNotActiveError: If the current step is no longer active.
        """
        step = transaction.current_step
        if step is None:
            raise NoActiveStepError(transaction.id)
        if step.status != StepStatus.ACTIVE:
            raise StepNotActiveError(transaction.id, step.status)
        return step

    async def check_gate(self, transaction: Transaction) -> GateCheck:
        """Evaluate the conditions gate of the active step without mutating anything."""
        step = self.require_active_step(transaction)
        conditions = await self._condition_repo.list_for_step(transaction.id, step.id)
        return evaluate_gate(conditions, step.id)

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    async def start(self, transaction: Transaction, actor_id: int | None) -> StepTransition:
        """Activate the lowest step of a freshly instantiated transaction."""
        if not transaction.steps:
            raise NoActiveStepError(transaction.id)
        first = transaction.steps[0]
        self._fire(first, "activate")
        first.entered_at = datetime.now(UTC)
        transaction.current_step_id = first.id
        await self._session.flush()

        automation = await self._automation.on_step_enter(
            self._session, transaction, first, actor_id
        )
        logger.info("step.started", transaction_id=transaction.id, step_order=first.step_order)
        return StepTransition(
            transaction=transaction, previous_step=None, new_step=first, automation=automation
        )

    async def advance(
        self,
        transaction: Transaction,
        actor_id: int | None,
        skip: bool = False,
        gate: GateCheck | None = None,
    ) -> StepTransition:
        """Conclude the active step and activate the next-higher one.

        Args:
            skip: Record the outgoing step as skipped instead of completed.
                The conditions gate applies either way.
            gate: A gate already evaluated for the active step in this unit
                of work; evaluated here when omitted.
        """
        current = self.require_active_step(transaction)
        if gate is None or gate.step_id != current.id:
            gate = await self.check_gate(transaction)
        if not gate.can_advance:
            logger.info(
                "step.gate_closed",
                transaction_id=transaction.id,
                step_order=current.step_order,
                blocking=len(gate.blocking),
                required=len(gate.required),
            )
            return StepTransition(
                transaction=transaction,
                previous_step=current,
                new_step=None,
                advanced=False,
                gate=gate,
            )

        next_step = self._next_step(transaction, current)
        archived_step = next_step.step_order if next_step else current.step_order + 1
        closed = await self._close_conditions(transaction, current, archived_step, actor_id)

        now = datetime.now(UTC)
        self._fire(current, "skip" if skip else "complete")
        current.completed_at = now

        if next_step is None:
            transaction.current_step_id = None
            transaction.status = TransactionStatus.COMPLETED.value
        else:
            self._fire(next_step, "activate")
            next_step.entered_at = now
            transaction.current_step_id = next_step.id
        await self._session.flush()

        automation = RuleOutcome()
        if next_step is not None:
            automation = await self._automation.on_step_enter(
                self._session, transaction, next_step, actor_id
            )

        logger.info(
            "step.skipped" if skip else "step.advanced",
            transaction_id=transaction.id,
            from_order=current.step_order,
            to_order=next_step.step_order if next_step else None,
            completed=next_step is None,
            closed=len(closed),
        )
        return StepTransition(
            transaction=transaction,
            previous_step=current,
            new_step=next_step,
            gate=gate,
            automation=automation,
            closed=closed,
        )

    async def go_to(
        self, transaction: Transaction, target_step_order: int, actor_id: int | None
    ) -> StepTransition:
        """Jump to ``target_step_order`` without evaluating the gate.

        Lower steps still pending or active are completed, lower steps that
        already concluded keep their status, higher steps return to pending.
        """
        target = transaction.step_by_order(target_step_order)
        if target is None:
            raise GoToStepFailedError(transaction.id, target_step_order)

        previous = transaction.current_step
        now = datetime.now(UTC)
        for step in transaction.steps:
            if step.step_order < target.step_order:
                if step.status in (StepStatus.PENDING, StepStatus.ACTIVE):
                    self._fire(step, "fast_forward")
                    step.completed_at = now
            elif step.step_order == target.step_order:
                self._fire(step, "activate" if step.status == StepStatus.PENDING else "reopen")
                step.entered_at = now
                step.completed_at = None
            elif step.status != StepStatus.PENDING:
                self._fire(step, "rewind")
                step.entered_at = None
                step.completed_at = None

        transaction.current_step_id = target.id
        if transaction.status == TransactionStatus.COMPLETED:
            transaction.status = TransactionStatus.ACTIVE.value
        await self._session.flush()

        automation = await self._automation.on_step_enter(
            self._session, transaction, target, actor_id
        )
        logger.info(
            "step.goto",
            transaction_id=transaction.id,
            from_order=previous.step_order if previous else None,
            to_order=target.step_order,
        )
        return StepTransition(
            transaction=transaction, previous_step=previous, new_step=target, automation=automation
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @staticmethod
    def summarize(transaction: Transaction) -> dict:
        """Progress summary: current step, totals and percent done."""
        total = len(transaction.steps)
        done = sum(
            1
            for step in transaction.steps
            if step.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)
        )
        current = transaction.current_step
        return {
            "transaction_id": transaction.id,
            "status": transaction.status,
            "current_step_id": current.id if current else None,
            "current_step_order": current.step_order if current else None,
            "current_step_name": current.name if current else None,
            "current_step_slug": current.slug if current else None,
            "total_steps": total,
            "completed_steps": done,
            "progress_percent": round(done * 100 / total) if total else 0,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _close_conditions(
        self,
        transaction: Transaction,
        step: TransactionStep,
        archived_step: int,
        actor_id: int | None,
    ) -> list[Condition]:
        """Resolve the leftover recommended conditions of ``step`` and archive them all.

        Raises:
            BlockingConditionsError: A blocking condition is still pending.
            RequiredResolutionsNeededError: A required condition is still pending.
        """
        conditions = await self._condition_repo.list_for_step(transaction.id, step.id)
        pending = [c for c in conditions if c.status == ConditionStatus.PENDING]
        blocking = [c for c in pending if c.level == ConditionLevel.BLOCKING]
        if blocking:
            raise BlockingConditionsError(blocking)
        required = [c for c in pending if c.level == ConditionLevel.REQUIRED]
        if required:
            raise RequiredResolutionsNeededError(required)

        for condition in pending:
            await self._resolution.resolve_condition(
                condition,
                ResolutionRequest(
                    resolution_type=ResolutionType.NOT_APPLICABLE.value,
                    note="Auto-archived on step change",
                ),
                None,
            )

        for condition in conditions:
            await self._condition_repo.archive(condition, at_step=archived_step)
            await self._event_repo.record(
                condition_id=condition.id,
                event_type=ConditionEventType.ARCHIVED,
                actor=actor_id,
                metadata={
                    "reason": "step_change",
                    "fromStep": step.step_order,
                    "archivedStep": archived_step,
                },
            )
        return conditions

    @staticmethod
    def _next_step(transaction: Transaction, current: TransactionStep) -> TransactionStep | None:
        for step in transaction.steps:
            if step.step_order > current.step_order:
                return step
        return None

    @staticmethod
    def _fire(step: TransactionStep, event_name: str) -> None:
        """Validate and apply a step status change.

        Raises InvalidStepTransitionError if the transition is illegal.
        """
        try:
            step.status = validate_transition(step.status, event_name)
        except TransitionNotAllowed as err:
            raise InvalidStepTransitionError(step.status, event_name) from err
