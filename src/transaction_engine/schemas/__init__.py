"""Pydantic API schemas."""

from transaction_engine.schemas.workflow import (
    AddEvidenceRequest,
    AddPartyRequest,
    AdvanceStepRequest,
    CompleteConditionRequest,
    ComplianceResponse,
    ConditionEventResponse,
    ConditionResponse,
    ConditionSummary,
    ConditionTemplateRequest,
    ConditionTemplateResponse,
    CreateConditionRequest,
    CreateTransactionRequest,
    EvidenceResponse,
    GoToStepRequest,
    HealthResponse,
    IdentityRecordRequest,
    IdentityRecordResponse,
    LoadPackRequest,
    PackLoadResponse,
    PartyRemovalResponse,
    PartyResponse,
    RequiredResolutionItem,
    ResolveConditionRequest,
    StepCheckResponse,
    StepConditionsResponse,
    StepTransitionResponse,
    TransactionProfileRequest,
    TransactionProfileResponse,
    TransactionResponse,
    TransactionStepResponse,
    UpdateConditionRequest,
    WorkflowStatusResponse,
)

__all__ = [
    "AddEvidenceRequest",
    "AddPartyRequest",
    "AdvanceStepRequest",
    "CompleteConditionRequest",
    "ComplianceResponse",
    "ConditionEventResponse",
    "ConditionResponse",
    "ConditionSummary",
    "ConditionTemplateRequest",
    "ConditionTemplateResponse",
    "CreateConditionRequest",
    "CreateTransactionRequest",
    "EvidenceResponse",
    "GoToStepRequest",
    "HealthResponse",
    "IdentityRecordRequest",
    "IdentityRecordResponse",
    "LoadPackRequest",
    "PackLoadResponse",
    "PartyRemovalResponse",
    "PartyResponse",
    "RequiredResolutionItem",
    "ResolveConditionRequest",
    "StepCheckResponse",
    "StepConditionsResponse",
    "StepTransitionResponse",
    "TransactionProfileRequest",
    "TransactionProfileResponse",
    "TransactionResponse",
    "TransactionStepResponse",
    "UpdateConditionRequest",
    "WorkflowStatusResponse",
]
