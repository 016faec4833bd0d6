"""Domain exceptions for the transaction workflow engine.

These exceptions are framework-agnostic and represent business rule outcomes.
They are raised by the TransactionFacade and translated to the inbound error
payload by the API layer's middleware::

    {"success": False, "error": {"message": ..., "code": ..., **extra}}

Gate failures and resolution failures are expected outcomes that carry data;
they are never logged as errors.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def summarize_conditions(conditions: Iterable[Any]) -> list[dict]:
    """Render conditions as ``[{id, title, dueDate}]`` for error payloads."""
    summary = []
    for condition in conditions:
        due_date = getattr(condition, "due_date", None)
        summary.append(
            {
                "id": condition.id,
                "title": condition.title,
                "level": str(condition.level),
                "dueDate": due_date.isoformat() if due_date is not None else None,
            }
        )
    return summary


class WorkflowError(Exception):
    """Base exception for all domain errors."""

    http_status: int = 400

    def __init__(self, message: str, code: str = "E_WORKFLOW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    def extra(self) -> dict:
        """Structured fields merged into the error payload."""
        return {}

    def to_payload(self) -> dict:
        return {
            "success": False,
            "error": {"message": self.message, "code": self.code, **self.extra()},
        }


# --- Input / lookup errors ---


class ValidationError(WorkflowError):
    """Malformed input: bad enum value, missing required field."""

    http_status = 422

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="E_VALIDATION_FAILED")
        self.field = field

    def extra(self) -> dict:
        return {"field": self.field} if self.field else {}


class NotFoundError(WorkflowError):
    """Raised when a referenced entity does not exist or is not visible to the actor.

    Tenant isolation failures use the same error so they stay
    indistinguishable from true absence.
    """

    http_status = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="E_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


# --- Condition errors ---


class ConditionArchivedError(WorkflowError):
    """Raised on any attempt to mutate an archived (read-only) condition."""

    http_status = 409

    def __init__(self, condition_id: int) -> None:
        super().__init__(
            message=f"Condition {condition_id} is archived and cannot be modified",
            code="E_CONDITION_ARCHIVED",
        )
        self.condition_id = condition_id


class ResolutionFailedError(WorkflowError):
    """The evidence policy was not satisfied. Expected outcome, not a defect."""

    http_status = 422

    def __init__(self, condition_id: int, reason: str) -> None:
        super().__init__(
            message=f"Condition {condition_id} could not be resolved: {reason}",
            code="E_RESOLUTION_FAILED",
        )
        self.condition_id = condition_id
        self.reason = reason

    def extra(self) -> dict:
        return {"conditionId": self.condition_id, "reason": self.reason}


# --- Step advancement errors ---


class StepNotActiveError(WorkflowError):
    """The current step is no longer active (e.g. advanced concurrently)."""

    http_status = 409

    def __init__(self, transaction_id: int, step_status: str) -> None:
        super().__init__(
            message=(
                f"Step is no longer active for transaction {transaction_id} "
                f"(status: {step_status}) — possible duplicate request"
            ),
            code="E_STEP_NOT_ACTIVE",
        )
        self.transaction_id = transaction_id
        self.step_status = step_status


class NoActiveStepError(WorkflowError):
    """The transaction has no current step (closed or never started)."""

    http_status = 409

    def __init__(self, transaction_id: int) -> None:
        super().__init__(
            message=f"No active step found for transaction {transaction_id}",
            code="E_NO_ACTIVE_STEP",
        )
        self.transaction_id = transaction_id


class BlockingConditionsError(WorkflowError):
    """Blocking-level conditions are still pending on the active step."""

    http_status = 422

    def __init__(self, conditions: list) -> None:
        titles = ", ".join(c.title for c in conditions)
        super().__init__(
            message=(
                f"Cannot advance: {len(conditions)} blocking condition(s) pending: {titles}"
            ),
            code="E_BLOCKING_CONDITIONS",
        )
        self.conditions = conditions
        # Summarized now: the rows detach once the unit of work rolls back.
        self.summary = summarize_conditions(conditions)

    def extra(self) -> dict:
        return {"blockingConditions": self.summary}


class RequiredResolutionsNeededError(WorkflowError):
    """Required-level conditions are still pending on the active step."""

    http_status = 422

    def __init__(self, conditions: list) -> None:
        titles = ", ".join(c.title for c in conditions)
        super().__init__(
            message=(
                f"Cannot advance: {len(conditions)} required condition(s) "
                f"need explicit resolution: {titles}"
            ),
            code="E_REQUIRED_RESOLUTIONS_NEEDED",
        )
        self.conditions = conditions
        self.summary = summarize_conditions(conditions)

    def extra(self) -> dict:
        return {"requiredConditions": self.summary}


class AcceptedOfferRequiredError(WorkflowError):
    """The step is offer-gated and no accepted offer exists yet."""

    http_status = 422

    def __init__(self, step_slug: str) -> None:
        super().__init__(
            message=(
                f"Cannot advance: an accepted offer is required to complete "
                f"the '{step_slug}' step"
            ),
            code="E_ACCEPTED_OFFER_REQUIRED",
        )
        self.step_slug = step_slug


class GoToStepFailedError(WorkflowError):
    """The administrative go-to target does not exist."""

    def __init__(self, transaction_id: int, target_step_order: int) -> None:
        super().__init__(
            message=(
                f"Go to step failed: transaction {transaction_id} has no step "
                f"with order {target_step_order}"
            ),
            code="E_GOTO_FAILED",
        )
        self.transaction_id = transaction_id
        self.target_step_order = target_step_order


class InvalidStepTransitionError(WorkflowError):
    """Raised when a step status change is not allowed by the StepStateMachine.

    Example: pending -> skipped (a step must be active before it concludes).
    """

    http_status = 409

    def __init__(self, current_state: str, event_name: str) -> None:
        super().__init__(
            message=f"Invalid step transition: '{event_name}' from {current_state}",
            code="E_INVALID_STEP_TRANSITION",
        )
        self.current_state = current_state
        self.event_name = event_name
