"""Tests for the StepStateMachine domain guard.

These tests verify that:
    1. Normal progression (activate, complete, skip) is allowed.
    2. The administrative go-to events reach every state they should.
    3. Illegal transitions are blocked.
    4. The convenience function validate_transition works.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from transaction_engine.domain.state_machine import (
    STEP_EVENTS,
    StepStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Test the normal lifecycle: pending -> active -> completed."""

    def test_full_lifecycle(self) -> None:
        sm = StepStateMachine("pending")
        assert sm.status == "pending"

        sm.activate()
        assert sm.status == "active"

        sm.complete()
        assert sm.status == "completed"

    def test_skip(self) -> None:
        sm = StepStateMachine("active")
        sm.skip()
        assert sm.status == "skipped"

    def test_default_is_pending(self) -> None:
        assert StepStateMachine().status == "pending"


class TestGoToPath:
    """Test the administrative go-to transitions."""

    def test_fast_forward_pending(self) -> None:
        sm = StepStateMachine("pending")
        sm.fast_forward()
        assert sm.status == "completed"

    def test_fast_forward_active(self) -> None:
        sm = StepStateMachine("active")
        sm.fast_forward()
        assert sm.status == "completed"

    def test_reopen_completed(self) -> None:
        sm = StepStateMachine("completed")
        sm.reopen()
        assert sm.status == "active"

    def test_reopen_skipped(self) -> None:
        sm = StepStateMachine("skipped")
        sm.reopen()
        assert sm.status == "active"

    def test_reopen_active_stays_active(self) -> None:
        sm = StepStateMachine("active")
        sm.reopen()
        assert sm.status == "active"

    @pytest.mark.parametrize("status", ["active", "completed", "skipped"])
    def test_rewind_to_pending(self, status: str) -> None:
        sm = StepStateMachine(status)
        sm.rewind()
        assert sm.status == "pending"


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_pending_to_skipped(self) -> None:
        sm = StepStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.skip()

    def test_pending_to_completed_without_goto(self) -> None:
        sm = StepStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.complete()

    def test_completed_cannot_complete_again(self) -> None:
        sm = StepStateMachine("completed")
        with pytest.raises(TransitionNotAllowed):
            sm.complete()

    def test_completed_cannot_activate(self) -> None:
        sm = StepStateMachine("completed")
        with pytest.raises(TransitionNotAllowed):
            sm.activate()

    def test_pending_cannot_rewind(self) -> None:
        sm = StepStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.rewind()


class TestAllowedEvents:
    """Test the get_allowed_events helper."""

    def test_pending_allowed(self) -> None:
        allowed = StepStateMachine("pending").get_allowed_events()
        assert "activate" in allowed
        assert "fast_forward" in allowed
        assert "complete" not in allowed
        assert "skip" not in allowed

    def test_active_allowed(self) -> None:
        allowed = StepStateMachine("active").get_allowed_events()
        assert {"complete", "skip", "fast_forward", "reopen", "rewind"} <= set(allowed)
        assert "activate" not in allowed

    def test_completed_only_leaves_through_goto(self) -> None:
        allowed = set(StepStateMachine("completed").get_allowed_events())
        assert allowed == {"reopen", "rewind"}

    @pytest.mark.parametrize("status", ["pending", "active", "completed", "skipped"])
    def test_allowed_events_are_fireable_identifiers(self, status) -> None:
        allowed = StepStateMachine(status).get_allowed_events()
        assert allowed
        assert set(allowed) <= STEP_EVENTS
        for event in allowed:
            assert validate_transition(status, event) in {
                "pending",
                "active",
                "completed",
                "skipped",
            }


class TestValidateTransitionFunction:
    """Test the convenience function."""

    def test_valid_transition(self) -> None:
        assert validate_transition("active", "complete") == "completed"

    def test_invalid_transition(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("pending", "skip")

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("active", "nonexistent_event")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown step status"):
            StepStateMachine("INVALID_STATUS")
