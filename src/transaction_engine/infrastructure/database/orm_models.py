"""SQLAlchemy 2.0 ORM models for the transaction workflow engine.

Tables:
    1. workflow_templates / workflow_steps    — immutable workflow metadata.
    2. transactions / transaction_steps       — per-transaction instantiation.
    3. transaction_parties                    — roster driving automation rules.
    4. conditions                             — tasks gating step advancement.
    5. condition_evidence                     — proof attached to conditions.
    6. condition_events                       — append-only audit log.
    7. identity_verification_records          — private to the identity rule.
    8. condition_templates                    — condition packs matched to profiles.
    9. transaction_profiles                   — property facts templates match on.

Design decisions:
    - Integer primary keys; ids are allocated in insertion order, which the
      gate relies on for ordering within a level.
    - ``transactions.current_step_id`` is a weak reference (no FK) to avoid a
      foreign-key cycle with transaction_steps.
    - JSON columns become JSONB on PostgreSQL.
    - CHECK constraints on enumerated columns reject invalid values at DB level.
    - condition_events is append-only: no UPDATE or DELETE at the application
      level (rows only go away with a hard-deleted condition).
    - Condition children are reached through repositories, never through
      lazy relationship collections, so nothing loads implicitly under asyncio.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. workflow_templates / workflow_steps
# ---------------------------------------------------------------------------
class WorkflowTemplate(Base):
    """An ordered list of workflow steps for one kind of transaction."""

    __tablename__ = "workflow_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    steps: Mapped[list[WorkflowStep]] = relationship(
        "WorkflowStep",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order.asc()",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate id={self.id} name={self.name!r}>"


class WorkflowStep(Base):
    """Immutable template metadata: order, slug and display name."""

    __tablename__ = "workflow_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    slug: Mapped[str] = mapped_column(String(80), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    template: Mapped[WorkflowTemplate] = relationship(
        "WorkflowTemplate", back_populates="steps"
    )

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_workflow_step_order"),
        CheckConstraint("step_order >= 1", name="ck_workflow_step_order_positive"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep order={self.step_order} slug={self.slug}>"


# ---------------------------------------------------------------------------
# 2. transactions / transaction_steps
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A purchase or sale driven through its workflow steps."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    organization_id: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    workflow_template_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workflow_templates.id"), nullable=False
    )
    current_step_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        comment="Weak reference to the active transaction_steps row",
    )
    auto_conditions_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    steps: Mapped[list[TransactionStep]] = relationship(
        "TransactionStep",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionStep.step_order.asc()",
        lazy="selectin",
    )
    parties: Mapped[list[TransactionParty]] = relationship(
        "TransactionParty",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionParty.id.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("type IN ('purchase', 'sale')", name="ck_transaction_type"),
        CheckConstraint(
            "status IN ('active', 'cancelled', 'archived', 'completed')",
            name="ck_transaction_status",
        ),
        Index("idx_transaction_owner", "owner_user_id"),
    )

    @property
    def current_step(self) -> TransactionStep | None:
        for step in self.steps:
            if step.id == self.current_step_id:
                return step
        return None

    def step_by_order(self, step_order: int) -> TransactionStep | None:
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} type={self.type} status={self.status} "
            f"current_step={self.current_step_id}>"
        )


class TransactionStep(Base):
    """Per-transaction instantiation of a workflow step."""

    __tablename__ = "transaction_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    workflow_step_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workflow_steps.id"), nullable=False
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Guarded by StepStateMachine",
    )
    entered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="steps")
    workflow_step: Mapped[WorkflowStep] = relationship("WorkflowStep", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("transaction_id", "step_order", name="uq_transaction_step_order"),
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'skipped')",
            name="ck_transaction_step_status",
        ),
        Index("idx_transaction_step_transaction", "transaction_id"),
    )

    @property
    def slug(self) -> str:
        return self.workflow_step.slug if self.workflow_step else ""

    @property
    def name(self) -> str:
        return self.workflow_step.name if self.workflow_step else ""

    def __repr__(self) -> str:
        return f"<TransactionStep id={self.id} order={self.step_order} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. transaction_parties
# ---------------------------------------------------------------------------
class TransactionParty(Base):
    """A person taking part in a transaction (buyer, seller, lawyer, ...)."""

    __tablename__ = "transaction_parties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True, default=None)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True, default=None)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="parties")

    __table_args__ = (Index("idx_party_transaction_role", "transaction_id", "role"),)

    def __repr__(self) -> str:
        return f"<TransactionParty id={self.id} role={self.role} name={self.full_name!r}>"


# ---------------------------------------------------------------------------
# 4. conditions
# ---------------------------------------------------------------------------
class Condition(Base):
    """A task attached to a step that must be resolved before it can be left."""

    __tablename__ = "conditions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_step_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("transaction_steps.id", ondelete="SET NULL"),
        nullable=True,
        comment="Step the condition gates (defaults to the current step)",
    )

    # --- Labels ---
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    label_fr: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    label_en: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    # --- Classification ---
    level: Mapped[str] = mapped_column(String(20), nullable=False, default="recommended")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    condition_type: Mapped[str] = mapped_column(
        "type", String(40), nullable=False, default="other"
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, default=None)
    step_when_created: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    # --- Archival ---
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archived_step: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        comment="Step order the condition was archived at/for",
    )

    # --- Resolution ---
    resolution_type: Mapped[str | None] = mapped_column(String(30), nullable=True, default=None)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    resolved_by: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    escaped_without_proof: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escape_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    # --- Automation provenance ---
    rule_key: Mapped[str | None] = mapped_column(
        String(60),
        nullable=True,
        default=None,
        comment="Automation rule that materialized the condition",
    )
    party_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        comment="Party the automation rule created the condition for (weak reference)",
    )
    template_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("condition_templates.id", ondelete="SET NULL"),
        nullable=True,
        default=None,
        comment="Condition template the condition was materialized from",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "level IN ('blocking', 'required', 'recommended')",
            name="ck_condition_level",
        ),
        CheckConstraint("status IN ('pending', 'completed')", name="ck_condition_status"),
        CheckConstraint(
            "resolution_type IS NULL OR resolution_type IN "
            "('completed', 'waived', 'not_applicable', 'skipped_with_risk')",
            name="ck_condition_resolution_type",
        ),
        Index("idx_condition_transaction", "transaction_id"),
        Index("idx_condition_step", "transaction_step_id"),
        Index("idx_condition_title", "transaction_id", "title"),
        Index("idx_condition_rule_party", "transaction_id", "rule_key", "party_id"),
        Index("idx_condition_template", "transaction_id", "template_id"),
    )

    def label(self, locale: str = "fr") -> str:
        """Return the label in ``locale``, falling back to the title."""
        if locale == "en" and self.label_en:
            return self.label_en
        if locale == "fr" and self.label_fr:
            return self.label_fr
        return self.title

    def __repr__(self) -> str:
        return (
            f"<Condition id={self.id} level={self.level} status={self.status} "
            f"archived={self.archived}>"
        )


class ConditionEvidence(Base):
    """A file, link or note backing a condition's resolution."""

    __tablename__ = "condition_evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    condition_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conditions.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    note: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("type IN ('file', 'link', 'note')", name="ck_evidence_type"),
        Index("idx_evidence_condition", "condition_id"),
    )

    def __repr__(self) -> str:
        return f"<ConditionEvidence id={self.id} type={self.type} condition={self.condition_id}>"


# ---------------------------------------------------------------------------
# 5. condition_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class ConditionEvent(Base):
    """Immutable audit record of one significant action on a condition.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "condition_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    condition_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conditions.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="system",
        comment="User id or 'system'",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_condition_event_condition", "condition_id"),
        Index("idx_condition_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<ConditionEvent id={self.id} type={self.event_type} condition={self.condition_id}>"


# ---------------------------------------------------------------------------
# 6. identity_verification_records
# ---------------------------------------------------------------------------
class IdentityVerificationRecord(Base):
    """Identity data collected for one party by the identity verification rule."""

    __tablename__ = "identity_verification_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    party_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True, default=None)
    id_type: Mapped[str | None] = mapped_column(String(40), nullable=True, default=None)
    id_number: Mapped[str | None] = mapped_column(String(80), nullable=True, default=None)
    occupation: Mapped[str | None] = mapped_column(String(120), nullable=True, default=None)
    source_of_funds: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    verified_by: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "party_id", name="uq_identity_record_party"),
    )

    @property
    def is_complete(self) -> bool:
        return bool(self.date_of_birth and self.id_type and self.id_number and self.verified_at)

    def __repr__(self) -> str:
        return (
            f"<IdentityVerificationRecord id={self.id} party={self.party_id} "
            f"complete={self.is_complete}>"
        )


# ---------------------------------------------------------------------------
# 8. condition_templates
# ---------------------------------------------------------------------------
class ConditionTemplate(Base):
    """A reusable condition from a condition pack (rural, condo, financed, ...).

    ``applies_when`` is a flat mapping of profile field to expected value;
    every entry must match the transaction profile. An empty mapping matches
    every profile. ``step`` is the step order the template belongs to, NULL
    meaning the first step.
    """

    __tablename__ = "condition_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label_fr: Mapped[str] = mapped_column(String(255), nullable=False)
    label_en: Mapped[str] = mapped_column(String(255), nullable=False)
    description_fr: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    description_en: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    level: Mapped[str] = mapped_column(String(20), nullable=False, default="recommended")
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="best_practice"
    )
    category: Mapped[str | None] = mapped_column(String(40), nullable=True, default=None)

    step: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    applies_when: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    pack: Mapped[str | None] = mapped_column(String(40), nullable=True, default=None)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    deadline_reference: Mapped[str | None] = mapped_column(
        String(20), nullable=True, default=None
    )
    default_deadline_days: Mapped[int | None] = mapped_column(
        Integer, nullable=True, default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "level IN ('blocking', 'required', 'recommended')",
            name="ck_condition_template_level",
        ),
        CheckConstraint(
            "source_type IN ('legal', 'government', 'industry', 'best_practice')",
            name="ck_condition_template_source_type",
        ),
        CheckConstraint(
            "deadline_reference IS NULL OR deadline_reference IN "
            "('acceptance', 'closing', 'step_start')",
            name="ck_condition_template_deadline_reference",
        ),
        Index("idx_condition_template_step", "step"),
    )

    def applies_to(self, profile: dict) -> bool:
        for key, expected in (self.applies_when or {}).items():
            if profile.get(key) != expected:
                return False
        return True

    def label(self, locale: str = "fr") -> str:
        return self.label_en if locale == "en" else self.label_fr

    def localized_description(self, locale: str = "fr") -> str | None:
        if locale == "en":
            return self.description_en or self.description_fr
        return self.description_fr or self.description_en

    def calculate_due_date(
        self,
        acceptance_date: date | None = None,
        closing_date: date | None = None,
        step_start: date | None = None,
    ) -> date | None:
        """Resolve the relative deadline, or None when its reference date is unknown."""
        if self.deadline_reference is None or self.default_deadline_days is None:
            return None
        reference = {
            "acceptance": acceptance_date,
            "closing": closing_date,
            "step_start": step_start,
        }.get(self.deadline_reference)
        if reference is None:
            return None
        return reference + timedelta(days=self.default_deadline_days)

    def __repr__(self) -> str:
        return f"<ConditionTemplate id={self.id} level={self.level} step={self.step}>"


# ---------------------------------------------------------------------------
# 9. transaction_profiles
# ---------------------------------------------------------------------------
class TransactionProfile(Base):
    """Property facts of one transaction, matched against condition templates."""

    __tablename__ = "transaction_profiles"

    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    property_type: Mapped[str] = mapped_column(String(20), nullable=False)
    property_context: Mapped[str] = mapped_column(String(20), nullable=False)
    is_financed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # rural
    has_well: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=None)
    has_septic: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=None)
    access_type: Mapped[str | None] = mapped_column(String(20), nullable=True, default=None)
    # condo
    condo_docs_required: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True, default=None
    )
    # financed
    appraisal_required: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True, default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "property_type IN ('house', 'condo', 'land')", name="ck_profile_property_type"
        ),
        CheckConstraint(
            "property_context IN ('urban', 'suburban', 'rural')",
            name="ck_profile_property_context",
        ),
        CheckConstraint(
            "access_type IS NULL OR access_type IN ('public', 'private', 'right_of_way')",
            name="ck_profile_access_type",
        ),
    )

    MATCH_FIELDS = (
        "property_type",
        "property_context",
        "is_financed",
        "has_well",
        "has_septic",
        "access_type",
        "condo_docs_required",
        "appraisal_required",
    )

    def to_match_object(self) -> dict:
        """Flat mapping the templates' ``applies_when`` entries are compared with."""
        return {name: getattr(self, name) for name in self.MATCH_FIELDS}

    def __repr__(self) -> str:
        return (
            f"<TransactionProfile transaction={self.transaction_id} "
            f"type={self.property_type} context={self.property_context}>"
        )
