"""Transaction workflow REST API routes.

Thin HTTP surface over the TransactionFacade. Routing policy and
authentication belong to the surrounding application; the acting user
arrives in the X-Actor-Id header.

Routes:
    POST   /api/v1/transactions                           — Instantiate a workflow
    GET    /api/v1/transactions/{id}                      — Transaction with steps/parties
    GET    /api/v1/transactions/{id}/status               — Progress summary
    GET    /api/v1/transactions/{id}/step-check           — Gate preview
    POST   /api/v1/transactions/{id}/advance              — Advance the active step
    POST   /api/v1/transactions/{id}/skip                 — Skip the active step
    POST   /api/v1/transactions/{id}/goto                 — Administrative go-to
    POST   /api/v1/transactions/{id}/parties              — Add a party
    DELETE /api/v1/transactions/{id}/parties/{party_id}   — Remove a party
    GET    /api/v1/transactions/{id}/compliance           — Compliance status
    GET    /api/v1/transactions/{id}/identity-records     — Identity records
    PUT    /api/v1/transactions/{id}/identity-records/{party_id}
    GET    /api/v1/transactions/{id}/conditions           — Active conditions
    GET    /api/v1/transactions/{id}/conditions/by-step   — Conditions grouped by step
    POST   /api/v1/transactions/{id}/conditions           — Create a condition
    POST   /api/v1/transactions/{id}/conditions/load-pack — Load the condition pack
    GET    /api/v1/transactions/{id}/profile              — Transaction profile
    PUT    /api/v1/transactions/{id}/profile              — Set the transaction profile
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from transaction_engine.api.deps import get_actor_id, get_facade
from transaction_engine.domain.resolution import RequiredResolution
from transaction_engine.logging_config import get_logger
from transaction_engine.schemas.workflow import (
    AddPartyRequest,
    AdvanceStepRequest,
    ComplianceResponse,
    ConditionResponse,
    ConditionSummary,
    CreateConditionRequest,
    CreateTransactionRequest,
    GoToStepRequest,
    IdentityRecordRequest,
    IdentityRecordResponse,
    LoadPackRequest,
    PackLoadResponse,
    PartyRemovalResponse,
    PartyResponse,
    StepCheckResponse,
    StepConditionsResponse,
    StepTransitionResponse,
    TransactionProfileRequest,
    TransactionProfileResponse,
    TransactionResponse,
    TransactionStepResponse,
    WorkflowStatusResponse,
)
from transaction_engine.services.step_service import StepTransition
from transaction_engine.services.transaction_facade import TransactionFacade

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])
logger = get_logger(__name__)


def _transition_response(transition: StepTransition) -> StepTransitionResponse:
    return StepTransitionResponse(
        transaction=TransactionResponse.model_validate(transition.transaction),
        previous_step=(
            TransactionStepResponse.model_validate(transition.previous_step)
            if transition.previous_step is not None
            else None
        ),
        new_step=(
            TransactionStepResponse.model_validate(transition.new_step)
            if transition.new_step is not None
            else None
        ),
        created_condition_ids=[c.id for c in transition.automation.created],
        archived_condition_ids=[c.id for c in transition.closed],
    )


def _required_resolutions(request: AdvanceStepRequest) -> list[RequiredResolution]:
    return [
        RequiredResolution(
            condition_id=item.condition_id,
            resolution_type=item.resolution_type,
            note=item.note,
        )
        for item in request.required_resolutions
    ]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Instantiate a transaction from a workflow template",
)
async def create_transaction(
    request: CreateTransactionRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> TransactionResponse:
    transaction = await facade.create_transaction(
        actor_id=actor_id,
        workflow_template_id=request.workflow_template_id,
        transaction_type=request.type,
        organization_id=request.organization_id,
        auto_conditions_enabled=request.auto_conditions_enabled,
    )
    return TransactionResponse.model_validate(transaction)


@router.get("/{transaction_id}", response_model=TransactionResponse, summary="Get a transaction")
async def get_transaction(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> TransactionResponse:
    transaction = await facade.get_transaction(transaction_id, actor_id)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/{transaction_id}/status",
    response_model=WorkflowStatusResponse,
    summary="Workflow progress summary",
)
async def get_status(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> WorkflowStatusResponse:
    return WorkflowStatusResponse(**await facade.get_current_status(transaction_id, actor_id))


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/step-check",
    response_model=StepCheckResponse,
    summary="Preview whether the active step can be left",
)
async def check_step(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> StepCheckResponse:
    check = await facade.check_step_advancement(transaction_id, actor_id)
    return StepCheckResponse(
        step_id=check.step.id,
        step_order=check.step.step_order,
        can_advance=check.can_advance,
        blocking_conditions=[ConditionSummary.model_validate(c) for c in check.gate.blocking],
        required_conditions=[ConditionSummary.model_validate(c) for c in check.gate.required],
        recommended_conditions=[
            ConditionSummary.model_validate(c) for c in check.gate.recommended
        ],
        offer_required=check.offer_required,
        has_accepted_offer=check.has_accepted_offer,
    )


@router.post(
    "/{transaction_id}/advance",
    response_model=StepTransitionResponse,
    summary="Advance to the next step",
)
async def advance_step(
    transaction_id: int,
    request: AdvanceStepRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> StepTransitionResponse:
    """Complete the active step.

    Refused while blocking conditions are pending, or required ones that
    ``required_resolutions`` does not resolve.
    """
    transition = await facade.advance_step(
        transaction_id,
        actor_id,
        note=request.note,
        notify_email=request.notify_email,
        required_resolutions=_required_resolutions(request),
    )
    return _transition_response(transition)


@router.post(
    "/{transaction_id}/skip",
    response_model=StepTransitionResponse,
    summary="Skip the active step",
)
async def skip_step(
    transaction_id: int,
    request: AdvanceStepRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> StepTransitionResponse:
    """Record the active step as skipped. The conditions gate still applies."""
    transition = await facade.skip_step(
        transaction_id,
        actor_id,
        note=request.note,
        notify_email=request.notify_email,
        required_resolutions=_required_resolutions(request),
    )
    return _transition_response(transition)


@router.post(
    "/{transaction_id}/goto",
    response_model=StepTransitionResponse,
    summary="Jump to a step (administrative override)",
)
async def go_to_step(
    transaction_id: int,
    request: GoToStepRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> StepTransitionResponse:
    transition = await facade.go_to_step(transaction_id, request.target_step_order, actor_id)
    return _transition_response(transition)


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/parties",
    response_model=PartyResponse,
    status_code=201,
    summary="Add a party",
)
async def add_party(
    transaction_id: int,
    request: AddPartyRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> PartyResponse:
    party = await facade.add_party(
        transaction_id,
        actor_id,
        role=request.role,
        full_name=request.full_name,
        email=request.email,
        phone=request.phone,
        is_primary=request.is_primary,
    )
    return PartyResponse.model_validate(party)


@router.delete(
    "/{transaction_id}/parties/{party_id}",
    response_model=PartyRemovalResponse,
    summary="Remove a party",
)
async def remove_party(
    transaction_id: int,
    party_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> PartyRemovalResponse:
    outcome = await facade.remove_party(transaction_id, party_id, actor_id)
    return PartyRemovalResponse(
        party_id=party_id, archived_condition_ids=[c.id for c in outcome.archived]
    )


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/compliance",
    response_model=ComplianceResponse,
    summary="Compliance status",
)
async def get_compliance(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> ComplianceResponse:
    compliant = await facade.is_compliant(transaction_id, actor_id)
    return ComplianceResponse(transaction_id=transaction_id, is_compliant=compliant)


@router.get(
    "/{transaction_id}/identity-records",
    response_model=list[IdentityRecordResponse],
    summary="List identity verification records",
)
async def list_identity_records(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> list[IdentityRecordResponse]:
    records = await facade.list_identity_records(transaction_id, actor_id)
    return [IdentityRecordResponse.model_validate(r) for r in records]


@router.put(
    "/{transaction_id}/identity-records/{party_id}",
    response_model=IdentityRecordResponse,
    summary="Complete a party's identity verification record",
)
async def complete_identity_record(
    transaction_id: int,
    party_id: int,
    request: IdentityRecordRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> IdentityRecordResponse:
    record = await facade.complete_identity_record(
        transaction_id,
        party_id,
        actor_id,
        date_of_birth=request.date_of_birth,
        id_type=request.id_type,
        id_number=request.id_number,
        occupation=request.occupation,
        source_of_funds=request.source_of_funds,
        notes=request.notes,
    )
    return IdentityRecordResponse.model_validate(record)


# ---------------------------------------------------------------------------
# Conditions of a transaction
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/conditions",
    response_model=list[ConditionResponse],
    summary="Active (non-archived) conditions",
)
async def get_active_conditions(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> list[ConditionResponse]:
    conditions = await facade.get_active_conditions(transaction_id, actor_id)
    return [ConditionResponse.model_validate(c) for c in conditions]


@router.get(
    "/{transaction_id}/conditions/by-step",
    response_model=list[StepConditionsResponse],
    summary="All conditions grouped by step order",
)
async def get_conditions_by_step(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> list[StepConditionsResponse]:
    grouped = await facade.get_conditions_grouped_by_step(transaction_id, actor_id)
    return [
        StepConditionsResponse(
            step_order=step_order,
            conditions=[ConditionResponse.model_validate(c) for c in conditions],
        )
        for step_order, conditions in grouped.items()
    ]


@router.post(
    "/{transaction_id}/conditions",
    response_model=ConditionResponse,
    status_code=201,
    summary="Create a condition",
)
async def create_condition(
    transaction_id: int,
    request: CreateConditionRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> ConditionResponse:
    condition = await facade.create_condition(transaction_id, actor_id, **request.model_dump())
    return ConditionResponse.model_validate(condition)


@router.post(
    "/{transaction_id}/conditions/load-pack",
    response_model=PackLoadResponse,
    summary="Materialize every profile-matching condition template",
)
async def load_condition_pack(
    transaction_id: int,
    request: LoadPackRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> PackLoadResponse:
    result = await facade.load_condition_pack(
        transaction_id,
        actor_id,
        acceptance_date=request.acceptance_date,
        closing_date=request.closing_date,
    )
    return PackLoadResponse(
        loaded=result.loaded,
        skipped=result.skipped,
        by_step=result.by_step,
        condition_ids=[c.id for c in result.created],
    )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get(
    "/{transaction_id}/profile",
    response_model=TransactionProfileResponse,
    summary="Get the transaction profile",
)
async def get_profile(
    transaction_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> TransactionProfileResponse:
    profile = await facade.get_transaction_profile(transaction_id, actor_id)
    return TransactionProfileResponse.model_validate(profile)


@router.put(
    "/{transaction_id}/profile",
    response_model=TransactionProfileResponse,
    summary="Create or replace the transaction profile",
)
async def set_profile(
    transaction_id: int,
    request: TransactionProfileRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> TransactionProfileResponse:
    profile = await facade.set_transaction_profile(
        transaction_id, actor_id, **request.model_dump()
    )
    return TransactionProfileResponse.model_validate(profile)
