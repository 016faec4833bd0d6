"""Test doubles and constants shared by the test modules.

The recording collaborators capture what the side-effect dispatcher
delivered so tests can assert on it after ``dispatcher.drain()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from transaction_engine.infrastructure.database.orm_models import WorkflowStep, WorkflowTemplate
from transaction_engine.services.side_effects import NotificationMessage

OWNER_ID = 1
OTHER_USER_ID = 99

# (order, slug, name); step 2 is offer-gated, step 5 activates identity checks
WORKFLOW_STEPS = [
    (1, "consultation", "Consultation"),
    (2, "negotiation", "Negotiation"),
    (3, "offer-accepted", "Offer accepted"),
    (4, "conditional-period", "Conditional period"),
    (5, "firm-pending", "Firm pending"),
    (6, "closing", "Closing"),
]


def build_template(transaction_type: str) -> WorkflowTemplate:
    return WorkflowTemplate(
        name=f"Standard {transaction_type}",
        transaction_type=transaction_type,
        steps=[
            WorkflowStep(step_order=order, slug=slug, name=name)
            for order, slug, name in WORKFLOW_STEPS
        ],
    )


@dataclass
class RecordingActivityFeed:
    entries: list[tuple[int, int | None, str, dict]] = field(default_factory=list)

    async def log(
        self, transaction_id: int, actor_id: int | None, activity_type: str, metadata: dict
    ) -> None:
        self.entries.append((transaction_id, actor_id, activity_type, metadata))

    @property
    def types(self) -> list[str]:
        return [entry[2] for entry in self.entries]


@dataclass
class RecordingNotifier:
    messages: list[NotificationMessage] = field(default_factory=list)

    async def notify(self, message: NotificationMessage) -> None:
        self.messages.append(message)


@dataclass
class RecordingEmailSender:
    sent: list[tuple[str, str, str, dict]] = field(default_factory=list)

    async def send(self, template: str, locale: str, to: str, context: dict) -> None:
        self.sent.append((template, locale, to, context))


class FakeOfferLookup:
    """AcceptedOfferLookup answering a fixed value."""

    def __init__(self, accepted: bool) -> None:
        self.accepted = accepted
        self.calls: list[int] = []

    async def has_accepted_offer(self, transaction_id: int) -> bool:
        self.calls.append(transaction_id)
        return self.accepted
