"""Database infrastructure — engine, ORM models, and repositories."""

from transaction_engine.infrastructure.database.engine import (
    close_db,
    init_db,
    session_scope,
)
from transaction_engine.infrastructure.database.orm_models import (
    Base,
    Condition,
    ConditionEvent,
    ConditionEvidence,
    ConditionTemplate,
    IdentityVerificationRecord,
    Transaction,
    TransactionParty,
    TransactionProfile,
    TransactionStep,
    WorkflowStep,
    WorkflowTemplate,
)
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
    ConditionTemplateRepository,
    EvidenceRepository,
    IdentityRecordRepository,
    PartyRepository,
    TransactionProfileRepository,
    TransactionRepository,
    WorkflowTemplateRepository,
)

__all__ = [
    "Base",
    "Condition",
    "ConditionEvent",
    "ConditionEvidence",
    "ConditionTemplate",
    "IdentityVerificationRecord",
    "Transaction",
    "TransactionParty",
    "TransactionProfile",
    "TransactionStep",
    "WorkflowStep",
    "WorkflowTemplate",
    "ConditionEventRepository",
    "ConditionRepository",
    "ConditionTemplateRepository",
    "EvidenceRepository",
    "IdentityRecordRepository",
    "PartyRepository",
    "TransactionProfileRepository",
    "TransactionRepository",
    "WorkflowTemplateRepository",
    "session_scope",
    "init_db",
    "close_db",
]
