"""Condition REST API routes.

Routes:
    PATCH  /api/v1/conditions/{id}                        — Update fields
    DELETE /api/v1/conditions/{id}                        — Hard delete (non-archived only)
    POST   /api/v1/conditions/{id}/complete               — Resolve as completed
    POST   /api/v1/conditions/{id}/resolve                — Resolve with a resolution type
    GET    /api/v1/conditions/{id}/evidence               — List evidence
    POST   /api/v1/conditions/{id}/evidence               — Attach evidence
    DELETE /api/v1/conditions/{id}/evidence/{evidence_id} — Remove evidence
    GET    /api/v1/conditions/{id}/history                — Audit trail
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from transaction_engine.api.deps import get_actor_id, get_facade
from transaction_engine.logging_config import get_logger
from transaction_engine.schemas.workflow import (
    AddEvidenceRequest,
    CompleteConditionRequest,
    ConditionEventResponse,
    ConditionResponse,
    EvidenceResponse,
    ResolveConditionRequest,
    UpdateConditionRequest,
)
from transaction_engine.services.transaction_facade import TransactionFacade

router = APIRouter(prefix="/api/v1/conditions", tags=["Conditions"])
logger = get_logger(__name__)


@router.patch("/{condition_id}", response_model=ConditionResponse, summary="Update a condition")
async def update_condition(
    condition_id: int,
    request: UpdateConditionRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> ConditionResponse:
    condition = await facade.update_condition(
        condition_id, actor_id, request.model_dump(exclude_unset=True)
    )
    return ConditionResponse.model_validate(condition)


@router.delete("/{condition_id}", status_code=204, summary="Delete a condition")
async def delete_condition(
    condition_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> Response:
    await facade.delete_condition(condition_id, actor_id)
    return Response(status_code=204)


@router.post(
    "/{condition_id}/complete",
    response_model=ConditionResponse,
    summary="Complete a condition",
)
async def complete_condition(
    condition_id: int,
    request: CompleteConditionRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> ConditionResponse:
    """Resolve as ``completed``; blocking conditions still need evidence."""
    condition = await facade.complete_condition(condition_id, actor_id, note=request.note)
    return ConditionResponse.model_validate(condition)


@router.post(
    "/{condition_id}/resolve",
    response_model=ConditionResponse,
    summary="Resolve a condition",
)
async def resolve_condition(
    condition_id: int,
    request: ResolveConditionRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> ConditionResponse:
    """Resolve under the evidence policy.

    A refused resolution answers 422 with code E_RESOLUTION_FAILED and a reason.
    """
    condition = await facade.resolve_condition(
        condition_id,
        actor_id,
        request.resolution_type,
        note=request.note,
        has_evidence=request.has_evidence,
        evidence_id=request.evidence_id,
        evidence_filename=request.evidence_filename,
        escaped_without_proof=request.escaped_without_proof,
        escape_reason=request.escape_reason,
    )
    return ConditionResponse.model_validate(condition)


@router.get(
    "/{condition_id}/evidence",
    response_model=list[EvidenceResponse],
    summary="List evidence",
)
async def list_evidence(
    condition_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> list[EvidenceResponse]:
    evidence = await facade.list_evidence(condition_id, actor_id)
    return [EvidenceResponse.model_validate(e) for e in evidence]


@router.post(
    "/{condition_id}/evidence",
    response_model=EvidenceResponse,
    status_code=201,
    summary="Attach evidence",
)
async def add_evidence(
    condition_id: int,
    request: AddEvidenceRequest,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> EvidenceResponse:
    evidence = await facade.add_evidence(
        condition_id,
        actor_id,
        evidence_type=request.type,
        url=request.url,
        note=request.note,
        title=request.title,
    )
    return EvidenceResponse.model_validate(evidence)


@router.delete(
    "/{condition_id}/evidence/{evidence_id}",
    status_code=204,
    summary="Remove evidence",
)
async def remove_evidence(
    condition_id: int,
    evidence_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> Response:
    await facade.remove_evidence(condition_id, evidence_id, actor_id)
    return Response(status_code=204)


@router.get(
    "/{condition_id}/history",
    response_model=list[ConditionEventResponse],
    summary="Get audit trail",
)
async def get_history(
    condition_id: int,
    actor_id: int = Depends(get_actor_id),
    facade: TransactionFacade = Depends(get_facade),
) -> list[ConditionEventResponse]:
    """Return the full audit trail, archived conditions included."""
    events = await facade.get_condition_history(condition_id, actor_id)
    return [ConditionEventResponse.model_validate(e) for e in events]
