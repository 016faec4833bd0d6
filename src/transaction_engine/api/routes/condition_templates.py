"""Condition template REST API routes.

Templates are shared by every transaction; the actor header is still
required.

Routes:
    POST   /api/v1/condition-templates        — Add a template to a pack
    GET    /api/v1/condition-templates        — Active templates (optionally of one step)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from transaction_engine.api.deps import get_actor_id, get_facade
from transaction_engine.schemas.workflow import (
    ConditionTemplateRequest,
    ConditionTemplateResponse,
)
from transaction_engine.services.transaction_facade import TransactionFacade

router = APIRouter(
    prefix="/api/v1/condition-templates",
    tags=["Condition templates"],
    dependencies=[Depends(get_actor_id)],
)


@router.post(
    "",
    response_model=ConditionTemplateResponse,
    status_code=201,
    summary="Create a condition template",
)
async def create_template(
    request: ConditionTemplateRequest,
    facade: TransactionFacade = Depends(get_facade),
) -> ConditionTemplateResponse:
    template = await facade.create_condition_template(**request.model_dump())
    return ConditionTemplateResponse.model_validate(template)


@router.get(
    "",
    response_model=list[ConditionTemplateResponse],
    summary="List active condition templates",
)
async def list_templates(
    step: int | None = Query(default=None, ge=1, description="Step order"),
    facade: TransactionFacade = Depends(get_facade),
) -> list[ConditionTemplateResponse]:
    templates = await facade.list_condition_templates(step=step)
    return [ConditionTemplateResponse.model_validate(t) for t in templates]
