"""Transaction Step State Machine Guard.

Uses python-statemachine to enforce legal status changes of a single
TransactionStep. No matter what the facade or the API does, an illegal
change (e.g. pending -> skipped) raises TransitionNotAllowed before the ORM
row is touched.

The machine is instantiated per step from the persisted status, fired, and
its resulting value is written back by the step service.

Transition table:
    pending    -> active     (activate)      normal progression
    active     -> completed  (complete)      advanceStep
    active     -> skipped    (skip)          skipStep
    pending    -> completed  (fast_forward)  goToStep, lower steps
    active     -> completed  (fast_forward)  goToStep, lower steps
    completed  -> active     (reopen)        goToStep target
    skipped    -> active     (reopen)        goToStep target
    active     -> active     (reopen)        goToStep onto the current step
    active     -> pending    (rewind)        goToStep, higher steps
    completed  -> pending    (rewind)        goToStep, higher steps
    skipped    -> pending    (rewind)        goToStep, higher steps

completed and skipped are terminal for normal progression: only the
administrative go-to events leave them.
"""

from __future__ import annotations

from statemachine import State, StateMachine


STEP_EVENTS = frozenset(
    {"activate", "complete", "skip", "fast_forward", "reopen", "rewind"}
)


class StepStateMachine(StateMachine):
    """State machine that guards a transaction step's status.

    Usage:
        sm = StepStateMachine(current_status="active")
        sm.complete()
        sm.status   # "completed"
    """

    # --- States ---
    pending = State("Pending", value="pending", initial=True)
    active = State("Active", value="active")
    completed = State("Completed", value="completed")
    skipped = State("Skipped", value="skipped")

    # --- Normal progression ---
    activate = pending.to(active)
    complete = active.to(completed)
    skip = active.to(skipped)

    # --- Administrative go-to ---
    fast_forward = pending.to(completed) | active.to(completed)
    reopen = completed.to(active) | skipped.to(active) | active.to.itself()
    rewind = active.to(pending) | completed.to(pending) | skipped.to(pending)

    def __init__(self, current_status: str = "pending") -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown step status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches StepStatus)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return the identifiers of the events that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a step status change and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = StepStateMachine(current_status=current_status)

    if event_name not in STEP_EVENTS:
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    getattr(sm, event_name)()
    return sm.status
