"""Pydantic schemas for the workflow and conditions API.

These schemas define the request/response shapes of the REST surface. They
are separate from the ORM models to keep the API and database layers apart.
Enumerated values are plain strings here: the domain validates them and
reports failures with the engine's own error payload.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransactionRequest(BaseModel):
    """Request body for instantiating a transaction from a workflow template."""

    workflow_template_id: int = Field(..., ge=1, description="Workflow template to instantiate")
    type: str = Field(..., description="purchase or sale", examples=["purchase"])
    organization_id: int | None = Field(default=None, description="Owning organization")
    auto_conditions_enabled: bool = Field(
        default=True,
        description="Let automation rules create conditions for this transaction",
    )


class AddPartyRequest(BaseModel):
    """Request body for adding a party to a transaction."""

    role: str = Field(..., description="buyer, seller, lawyer, notary, ...", examples=["buyer"])
    full_name: str = Field(..., min_length=1, max_length=200, examples=["John Buyer"])
    email: str | None = Field(default=None, max_length=254)
    phone: str | None = Field(default=None, max_length=40)
    is_primary: bool = False


class RequiredResolutionItem(BaseModel):
    """Inline resolution of one pending required condition."""

    condition_id: int = Field(..., ge=1)
    resolution_type: str = Field(..., examples=["not_applicable"])
    note: str | None = Field(default=None, max_length=2000)


class AdvanceStepRequest(BaseModel):
    """Request body for advancing or skipping the active step."""

    note: str | None = Field(default=None, max_length=2000)
    notify_email: bool = Field(default=False, description="Email every party with an address")
    required_resolutions: list[RequiredResolutionItem] = Field(
        default_factory=list,
        description="Resolutions for every pending required condition of the step",
    )


class GoToStepRequest(BaseModel):
    """Request body for the administrative go-to-step override."""

    target_step_order: int = Field(..., ge=1, description="Step order to make active")


class CreateConditionRequest(BaseModel):
    """Request body for creating a condition."""

    title: str = Field(..., min_length=1, max_length=255)
    level: str = Field(default="recommended", description="blocking, required or recommended")
    description: str | None = None
    condition_type: str = Field(default="other", max_length=40, examples=["financing"])
    due_date: date | None = None
    label_fr: str | None = Field(default=None, max_length=255)
    label_en: str | None = Field(default=None, max_length=255)
    transaction_step_id: int | None = Field(
        default=None, description="Step to attach to; defaults to the current step"
    )


class UpdateConditionRequest(BaseModel):
    """Partial update of a condition. Only the fields sent are applied.

    ``title``, ``level`` and ``condition_type`` cannot be cleared; an explicit
    null for them is rejected by the condition service.
    """

    title: str | None = Field(default=None, min_length=1, max_length=255)
    level: str | None = None
    description: str | None = None
    condition_type: str | None = Field(default=None, max_length=40)
    due_date: date | None = None
    label_fr: str | None = Field(default=None, max_length=255)
    label_en: str | None = Field(default=None, max_length=255)
    transaction_step_id: int | None = None


class CompleteConditionRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class ResolveConditionRequest(BaseModel):
    """Request body for resolving a condition."""

    resolution_type: str = Field(
        ...,
        description="completed, waived, not_applicable or skipped_with_risk",
        examples=["completed"],
    )
    note: str | None = Field(default=None, max_length=2000)
    has_evidence: bool | None = None
    evidence_id: int | None = None
    evidence_filename: str | None = None
    escaped_without_proof: bool = Field(
        default=False, description="Close a blocking condition without evidence"
    )
    escape_reason: str | None = Field(
        default=None, description="Justification recorded with the escape hatch"
    )


class AddEvidenceRequest(BaseModel):
    """Request body for attaching evidence. Files are uploaded elsewhere."""

    type: str = Field(..., description="file, link or note", examples=["link"])
    url: str | None = Field(default=None, description="Stored file URL or external link")
    note: str | None = None
    title: str | None = Field(default=None, max_length=255)


class IdentityRecordRequest(BaseModel):
    """Identity data collected for a party."""

    date_of_birth: date
    id_type: str = Field(..., examples=["drivers_license"])
    id_number: str = Field(..., min_length=1, max_length=80)
    occupation: str | None = Field(default=None, max_length=120)
    source_of_funds: str | None = None
    notes: str | None = None


class TransactionProfileRequest(BaseModel):
    """Property facts the condition templates are matched against."""

    property_type: str = Field(..., description="house, condo or land", examples=["house"])
    property_context: str = Field(
        ..., description="urban, suburban or rural", examples=["rural"]
    )
    is_financed: bool
    has_well: bool | None = None
    has_septic: bool | None = None
    access_type: str | None = Field(default=None, description="public, private or right_of_way")
    condo_docs_required: bool | None = None
    appraisal_required: bool | None = None


class ConditionTemplateRequest(BaseModel):
    """Request body for adding a condition template to a pack."""

    label_fr: str = Field(..., min_length=1, max_length=255)
    label_en: str = Field(..., min_length=1, max_length=255)
    description_fr: str | None = None
    description_en: str | None = None
    level: str = Field(default="recommended", description="blocking, required or recommended")
    source_type: str = Field(
        default="best_practice", description="legal, government, industry or best_practice"
    )
    category: str | None = Field(default=None, max_length=40, examples=["inspection"])
    step: int | None = Field(default=None, ge=1, description="Step order; none means the first")
    applies_when: dict = Field(
        default_factory=dict,
        description="Profile fields that must all match",
        examples=[{"property_context": "rural", "has_well": True}],
    )
    pack: str | None = Field(default=None, max_length=40, examples=["rural"])
    sort_order: int = 0
    is_default: bool = True
    deadline_reference: str | None = Field(
        default=None, description="acceptance, closing or step_start"
    )
    default_deadline_days: int | None = None


class LoadPackRequest(BaseModel):
    """Reference dates for the templates' relative deadlines."""

    acceptance_date: date | None = None
    closing_date: date | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransactionStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    step_order: int
    slug: str
    name: str
    status: str
    entered_at: datetime | None
    completed_at: datetime | None


class PartyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    role: str
    full_name: str
    email: str | None
    phone: str | None
    is_primary: bool


class TransactionResponse(BaseModel):
    """Response schema for a transaction with its steps and parties."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_user_id: int
    organization_id: int | None
    type: str
    status: str
    workflow_template_id: int
    current_step_id: int | None
    auto_conditions_enabled: bool
    steps: list[TransactionStepResponse]
    parties: list[PartyResponse]
    created_at: datetime
    updated_at: datetime


class ConditionResponse(BaseModel):
    """Response schema for a condition."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    transaction_step_id: int | None
    title: str
    label_fr: str | None
    label_en: str | None
    description: str | None
    level: str
    status: str
    condition_type: str
    due_date: date | None
    step_when_created: int | None
    archived: bool
    archived_step: int | None
    resolution_type: str | None
    resolution_note: str | None
    resolved_at: datetime | None
    resolved_by: int | None
    escaped_without_proof: bool
    escape_reason: str | None
    rule_key: str | None
    party_id: int | None
    template_id: int | None
    created_at: datetime
    updated_at: datetime


class ConditionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    level: str
    due_date: date | None


class StepConditionsResponse(BaseModel):
    """Conditions attached to one step order."""

    step_order: int
    conditions: list[ConditionResponse]


class EvidenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    condition_id: int
    type: str
    url: str | None
    note: str | None
    title: str | None
    created_by: int
    created_at: datetime


class ConditionEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    condition_id: int
    event_type: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class StepTransitionResponse(BaseModel):
    """Result of advance / skip / go-to."""

    transaction: TransactionResponse
    previous_step: TransactionStepResponse | None
    new_step: TransactionStepResponse | None
    created_condition_ids: list[int] = Field(
        default_factory=list, description="Conditions materialized by automation rules"
    )
    archived_condition_ids: list[int] = Field(
        default_factory=list, description="Conditions of the step left, archived by the move"
    )


class StepCheckResponse(BaseModel):
    """Preview of the gates of the active step."""

    step_id: int
    step_order: int
    can_advance: bool
    blocking_conditions: list[ConditionSummary]
    required_conditions: list[ConditionSummary]
    recommended_conditions: list[ConditionSummary]
    offer_required: bool
    has_accepted_offer: bool | None


class WorkflowStatusResponse(BaseModel):
    transaction_id: int
    status: str
    current_step_id: int | None
    current_step_order: int | None
    current_step_name: str | None
    current_step_slug: str | None
    total_steps: int
    completed_steps: int
    progress_percent: int


class ComplianceResponse(BaseModel):
    transaction_id: int
    is_compliant: bool


class PartyRemovalResponse(BaseModel):
    party_id: int
    archived_condition_ids: list[int]


class IdentityRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    party_id: int
    date_of_birth: date | None
    id_type: str | None
    id_number: str | None
    occupation: str | None
    source_of_funds: str | None
    notes: str | None
    verified_at: datetime | None
    verified_by: int | None
    is_complete: bool


class TransactionProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: int
    property_type: str
    property_context: str
    is_financed: bool
    has_well: bool | None
    has_septic: bool | None
    access_type: str | None
    condo_docs_required: bool | None
    appraisal_required: bool | None


class ConditionTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label_fr: str
    label_en: str
    description_fr: str | None
    description_en: str | None
    level: str
    source_type: str
    category: str | None
    step: int | None
    applies_when: dict
    pack: str | None
    sort_order: int
    is_default: bool
    is_active: bool
    deadline_reference: str | None
    default_deadline_days: int | None


class PackLoadResponse(BaseModel):
    """Result of loading the condition pack of a transaction."""

    loaded: int
    skipped: int
    by_step: dict[int, int]
    condition_ids: list[int]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
