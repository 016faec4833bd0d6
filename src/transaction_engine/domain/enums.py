"""Domain enumerations for the transaction workflow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TransactionType(enum.StrEnum):
    """The two kinds of real-estate transaction a workflow can drive."""

    PURCHASE = "purchase"
    SALE = "sale"


class TransactionStatus(enum.StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"
    COMPLETED = "completed"


class StepStatus(enum.StrEnum):
    """Lifecycle states of a TransactionStep.

    Transitions are enforced by the StepStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class ConditionLevel(enum.StrEnum):
    """Enforcement severity of a condition: blocking > required > recommended."""

    BLOCKING = "blocking"
    REQUIRED = "required"
    RECOMMENDED = "recommended"

    @property
    def severity(self) -> int:
        return _LEVEL_SEVERITY[self]


_LEVEL_SEVERITY = {
    ConditionLevel.BLOCKING: 3,
    ConditionLevel.REQUIRED: 2,
    ConditionLevel.RECOMMENDED: 1,
}


class ConditionStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class ResolutionType(enum.StrEnum):
    """How a condition reached its terminal state.

    SKIPPED_WITH_RISK is always what gets persisted when a blocking condition
    is closed through the escape hatch, whatever type the caller asked for.
    """

    COMPLETED = "completed"
    WAIVED = "waived"
    NOT_APPLICABLE = "not_applicable"
    SKIPPED_WITH_RISK = "skipped_with_risk"


class EvidenceType(enum.StrEnum):
    FILE = "file"
    LINK = "link"
    NOTE = "note"


class ConditionEventType(enum.StrEnum):
    """Types of audit events recorded in the condition_events table.

    The table is append-only: one row per significant lifecycle action.
    """

    CREATED = "created"
    UPDATED = "condition_updated"
    EVIDENCE_ADDED = "evidence_added"
    EVIDENCE_REMOVED = "evidence_removed"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class PartyRole(enum.StrEnum):
    BUYER = "buyer"
    SELLER = "seller"
    LAWYER = "lawyer"
    NOTARY = "notary"
    AGENT = "agent"
    BROKER = "broker"
    OTHER = "other"


class ActivityType(enum.StrEnum):
    """Activity-feed entry types emitted by the engine (fire-and-forget)."""

    TRANSACTION_CREATED = "transaction_created"
    STEP_ENTERED = "step_entered"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    CONDITION_CREATED = "condition_created"
    CONDITION_UPDATED = "condition_updated"
    CONDITION_COMPLETED = "condition_completed"
    CONDITION_ARCHIVED = "condition_archived"
    CONDITION_DELETED = "condition_deleted"
    PARTY_ADDED = "party_added"
    PARTY_REMOVED = "party_removed"


class IdentityDocumentType(enum.StrEnum):
    """Identity documents accepted by the identity verification rule."""

    DRIVERS_LICENSE = "drivers_license"
    CANADIAN_PASSPORT = "canadian_passport"
    FOREIGN_PASSPORT = "foreign_passport"
    CITIZENSHIP_CARD = "citizenship_card"
    OTHER_GOVERNMENT_ID = "other_government_id"


class SourceType(enum.StrEnum):
    """Where a condition template's requirement comes from."""

    LEGAL = "legal"
    GOVERNMENT = "government"
    INDUSTRY = "industry"
    BEST_PRACTICE = "best_practice"


class DeadlineReference(enum.StrEnum):
    """Date a condition template's relative deadline counts from."""

    ACCEPTANCE = "acceptance"
    CLOSING = "closing"
    STEP_START = "step_start"


class PropertyType(enum.StrEnum):
    HOUSE = "house"
    CONDO = "condo"
    LAND = "land"


class PropertyContext(enum.StrEnum):
    URBAN = "urban"
    SUBURBAN = "suburban"
    RURAL = "rural"


class AccessType(enum.StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    RIGHT_OF_WAY = "right_of_way"
