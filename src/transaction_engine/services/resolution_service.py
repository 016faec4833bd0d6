"""Resolution Service — closes a pending condition under the evidence policy.

Coordinates between:
    - The resolution policy (domain/resolution.py), which decides
    - ConditionRepository / EvidenceRepository, which supply the facts
    - ConditionEventRepository, which records the ``resolved`` audit event

A refused resolution is an expected outcome: ``resolve`` returns a
ResolutionOutcome with ``resolved=False`` and a human-readable reason and
leaves the condition pending. Structural problems (unknown condition,
archived condition, unknown resolution type) raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from transaction_engine.domain.enums import ConditionEventType, ConditionStatus, ResolutionType
from transaction_engine.domain.exceptions import ConditionArchivedError, NotFoundError
from transaction_engine.domain.resolution import (
    DEFAULT_ESCAPE_REASON_MIN_LENGTH,
    ResolutionRequest,
    decide_resolution,
)
from transaction_engine.infrastructure.database.repositories import (
    ConditionEventRepository,
    ConditionRepository,
    EvidenceRepository,
)
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.infrastructure.database.orm_models import Condition

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of a resolution attempt.

    Attributes:
        condition: The condition, or None when no condition matched.
        resolved: Whether the condition was closed by this attempt.
        reason: Why it was not, when ``resolved`` is False.
        escaped: Whether the escape hatch was used.
    """

    condition: Condition | None
    resolved: bool
    reason: str | None = None
    escaped: bool = False


class ResolutionService:
    """Applies the evidence / escape-hatch policy and persists resolutions."""

    def __init__(
        self,
        session: AsyncSession,
        escape_reason_min_length: int = DEFAULT_ESCAPE_REASON_MIN_LENGTH,
    ) -> None:
        self._session = session
        self._escape_reason_min_length = escape_reason_min_length
        self._condition_repo = ConditionRepository(session)
        self._evidence_repo = EvidenceRepository(session)
        self._event_repo = ConditionEventRepository(session)

    async def resolve(
        self,
        condition_id: int,
        resolution_type: str,
        actor_id: int,
        *,
        note: str | None = None,
        has_evidence: bool | None = None,
        evidence_id: int | None = None,
        evidence_filename: str | None = None,
        escaped_without_proof: bool = False,
        escape_reason: str | None = None,
    ) -> ResolutionOutcome:
        """Try to close a condition.

        Raises:
            NotFoundError: If the condition does not exist.
            ConditionArchivedError: If the condition is archived.
            ValidationError: If ``resolution_type`` is not recognized.
        """
        condition = await self._condition_repo.get_by_id(condition_id)
        if condition is None:
            raise NotFoundError("Condition", condition_id)
        request = ResolutionRequest(
            resolution_type=resolution_type,
            note=note,
            has_evidence=has_evidence,
            evidence_id=evidence_id,
            evidence_filename=evidence_filename,
            escaped_without_proof=escaped_without_proof,
            escape_reason=escape_reason,
        )
        return await self.resolve_condition(condition, request, actor_id)

    async def resolve_condition(
        self, condition: Condition, request: ResolutionRequest, actor_id: int | None
    ) -> ResolutionOutcome:
        """Same as ``resolve`` for a condition that is already loaded."""
        if condition.archived:
            raise ConditionArchivedError(condition.id)
        request.parsed_type()

        if condition.status == ConditionStatus.COMPLETED:
            return self._refused(condition, "condition is already resolved")

        evidence_count = await self._evidence_repo.count_by_condition(condition.id)
        decision = decide_resolution(
            condition.level,
            request,
            evidence_count,
            escape_reason_min_length=self._escape_reason_min_length,
        )
        if not decision.allowed:
            return self._refused(condition, decision.reason)

        condition.status = ConditionStatus.COMPLETED.value
        condition.resolution_type = decision.resolution_type.value
        condition.resolution_note = request.note
        condition.resolved_at = datetime.now(UTC)
        condition.resolved_by = actor_id
        condition.escaped_without_proof = decision.escaped
        condition.escape_reason = (
            (request.escape_reason or "").strip() if decision.escaped else None
        )
        await self._condition_repo.save(condition)

        await self._event_repo.record(
            condition_id=condition.id,
            event_type=ConditionEventType.RESOLVED,
            actor=actor_id,
            metadata={
                **request.metadata(),
                "resolutionType": decision.resolution_type.value,
                "note": request.note,
                "evidenceCount": evidence_count,
            },
        )

        logger.info(
            "condition.resolved",
            condition_id=condition.id,
            level=condition.level,
            resolution_type=decision.resolution_type.value,
            escaped=decision.escaped,
        )
        return ResolutionOutcome(condition=condition, resolved=True, escaped=decision.escaped)

    async def resolve_condition_for_party(
        self,
        transaction_id: int,
        party_id: int,
        actor_id: int | None,
        rule_key: str | None = None,
    ) -> ResolutionOutcome:
        """Complete the automation condition attached to a party, if it is ready.

        "Not ready yet" (no such condition, already resolved, no evidence) is a
        no-op outcome, never an error. Only structural failures raise.
        """
        condition = await self._condition_repo.find_active_for_rule(
            transaction_id, rule_key, party_id
        )
        if condition is None:
            return ResolutionOutcome(
                condition=None, resolved=False, reason="no automation condition for party"
            )
        if condition.status == ConditionStatus.COMPLETED:
            return ResolutionOutcome(
                condition=condition, resolved=False, reason="condition is already resolved"
            )
        if await self._evidence_repo.count_by_condition(condition.id) == 0:
            logger.debug(
                "condition.party_resolution_deferred",
                condition_id=condition.id,
                party_id=party_id,
            )
            return ResolutionOutcome(
                condition=condition, resolved=False, reason="no evidence attached yet"
            )

        request = ResolutionRequest(
            resolution_type=ResolutionType.COMPLETED.value,
            has_evidence=True,
        )
        return await self.resolve_condition(condition, request, actor_id)

    @staticmethod
    def _refused(condition: Condition, reason: str | None) -> ResolutionOutcome:
        logger.info("condition.resolution_refused", condition_id=condition.id, reason=reason)
        return ResolutionOutcome(condition=condition, resolved=False, reason=reason)
