"""Application services — use case orchestration."""

from transaction_engine.services.collaborators import (
    AcceptedOfferLookup,
    OwnerTenantScope,
    TenantScope,
)
from transaction_engine.services.condition_service import ConditionService
from transaction_engine.services.resolution_service import ResolutionOutcome, ResolutionService
from transaction_engine.services.side_effects import (
    EmailMessage,
    NotificationMessage,
    SideEffectDispatcher,
    get_side_effect_dispatcher,
)
from transaction_engine.services.step_service import StepService, StepTransition
from transaction_engine.services.transaction_facade import StepCheck, TransactionFacade

__all__ = [
    "AcceptedOfferLookup",
    "ConditionService",
    "EmailMessage",
    "NotificationMessage",
    "OwnerTenantScope",
    "ResolutionOutcome",
    "ResolutionService",
    "SideEffectDispatcher",
    "StepCheck",
    "StepService",
    "StepTransition",
    "TenantScope",
    "TransactionFacade",
    "get_side_effect_dispatcher",
]
