"""Domain layer — pure business logic with zero framework dependencies."""

from transaction_engine.domain.enums import (
    ActivityType,
    ConditionEventType,
    ConditionLevel,
    ConditionStatus,
    EvidenceType,
    IdentityDocumentType,
    PartyRole,
    ResolutionType,
    StepStatus,
    TransactionStatus,
    TransactionType,
)
from transaction_engine.domain.exceptions import (
    AcceptedOfferRequiredError,
    BlockingConditionsError,
    ConditionArchivedError,
    GoToStepFailedError,
    InvalidStepTransitionError,
    NoActiveStepError,
    NotFoundError,
    RequiredResolutionsNeededError,
    ResolutionFailedError,
    StepNotActiveError,
    ValidationError,
    WorkflowError,
)
from transaction_engine.domain.gate import GateCheck, evaluate_gate
from transaction_engine.domain.resolution import (
    ResolutionDecision,
    ResolutionRequest,
    decide_resolution,
)
from transaction_engine.domain.rule_protocol import ActivityEntry, AutomationRule, RuleOutcome
from transaction_engine.domain.state_machine import StepStateMachine, validate_transition

__all__ = [
    "ActivityType",
    "ConditionEventType",
    "ConditionLevel",
    "ConditionStatus",
    "EvidenceType",
    "IdentityDocumentType",
    "PartyRole",
    "ResolutionType",
    "StepStatus",
    "TransactionStatus",
    "TransactionType",
    "AcceptedOfferRequiredError",
    "BlockingConditionsError",
    "ConditionArchivedError",
    "GoToStepFailedError",
    "InvalidStepTransitionError",
    "NoActiveStepError",
    "NotFoundError",
    "RequiredResolutionsNeededError",
    "ResolutionFailedError",
    "StepNotActiveError",
    "ValidationError",
    "WorkflowError",
    "GateCheck",
    "evaluate_gate",
    "ResolutionDecision",
    "ResolutionRequest",
    "decide_resolution",
    "ActivityEntry",
    "AutomationRule",
    "RuleOutcome",
    "StepStateMachine",
    "validate_transition",
]
