"""Condition resolution policy.

Decides whether a pending condition may be closed with the requested
resolution type, given its level and how much evidence is attached. The
decision is a value: the resolution service applies it or reports it.

Policy:
    blocking + completed       needs >= 1 evidence row, or a valid escape
                               hatch (persisted as skipped_with_risk)
    blocking + anything else   needs a valid escape hatch (persisted as
                               skipped_with_risk)
    required + completed       always allowed
    required + anything else   needs a resolution note
    recommended                always allowed

A valid escape hatch is ``escaped_without_proof=True`` with an escape reason
of at least ``escape_reason_min_length`` characters once stripped.
"""

from __future__ import annotations

from dataclasses import dataclass

from transaction_engine.domain.enums import ConditionLevel, ResolutionType
from transaction_engine.domain.exceptions import ValidationError

DEFAULT_ESCAPE_REASON_MIN_LENGTH = 10


@dataclass(frozen=True)
class ResolutionRequest:
    """Caller input to a resolution attempt.

    Attributes:
        resolution_type: Requested ResolutionType value.
        note: Free-form resolution note.
        has_evidence: Caller hint recorded in the audit event. The attached
            evidence rows are authoritative.
        evidence_id: Hint identifying the evidence backing the resolution.
        evidence_filename: Hint naming the uploaded proof.
        escaped_without_proof: Request the escape hatch.
        escape_reason: Justification recorded with the escape hatch.
    """

    resolution_type: str
    note: str | None = None
    has_evidence: bool | None = None
    evidence_id: int | None = None
    evidence_filename: str | None = None
    escaped_without_proof: bool = False
    escape_reason: str | None = None

    def parsed_type(self) -> ResolutionType:
        try:
            return ResolutionType(self.resolution_type)
        except ValueError as err:
            valid = ", ".join(t.value for t in ResolutionType)
            raise ValidationError(
                f"Unknown resolution type '{self.resolution_type}'. Valid types: {valid}",
                field="resolutionType",
            ) from err

    def metadata(self) -> dict:
        """Hints copied into the ``resolved`` audit event."""
        meta: dict = {"requestedType": self.resolution_type}
        if self.has_evidence is not None:
            meta["hasEvidence"] = self.has_evidence
        if self.evidence_id is not None:
            meta["evidenceId"] = self.evidence_id
        if self.evidence_filename:
            meta["evidenceFilename"] = self.evidence_filename
        if self.escaped_without_proof:
            meta["escapedWithoutProof"] = True
            meta["escapeReason"] = self.escape_reason
        return meta


@dataclass(frozen=True)
class RequiredResolution:
    """Inline resolution of a required condition, supplied with an advance or skip."""

    condition_id: int
    resolution_type: str
    note: str | None = None

    def to_request(self) -> ResolutionRequest:
        return ResolutionRequest(resolution_type=self.resolution_type, note=self.note)


@dataclass(frozen=True)
class ResolutionDecision:
    allowed: bool
    resolution_type: ResolutionType | None = None
    reason: str | None = None
    escaped: bool = False

    @classmethod
    def accept(cls, resolution_type: ResolutionType, escaped: bool = False) -> ResolutionDecision:
        return cls(allowed=True, resolution_type=resolution_type, escaped=escaped)

    @classmethod
    def refuse(cls, reason: str) -> ResolutionDecision:
        return cls(allowed=False, reason=reason)


def _escape_problem(request: ResolutionRequest, min_length: int) -> str | None:
    """Return why the escape hatch is unusable, or None when it is valid."""
    if not request.escaped_without_proof:
        return "no evidence attached and the escape hatch was not requested"
    reason = (request.escape_reason or "").strip()
    if len(reason) < min_length:
        return f"escape reason must be at least {min_length} characters"
    return None


def decide_resolution(
    level: str,
    request: ResolutionRequest,
    evidence_count: int,
    escape_reason_min_length: int = DEFAULT_ESCAPE_REASON_MIN_LENGTH,
) -> ResolutionDecision:
    """Apply the evidence / escape-hatch policy to one resolution attempt.

    Raises:
        ValidationError: If the resolution type or the level is not recognized.
    """
    requested = request.parsed_type()
    try:
        condition_level = ConditionLevel(level)
    except ValueError as err:
        raise ValidationError(f"Unknown condition level '{level}'", field="level") from err

    if condition_level is ConditionLevel.BLOCKING:
        if requested is ResolutionType.COMPLETED and evidence_count > 0:
            return ResolutionDecision.accept(ResolutionType.COMPLETED)
        problem = _escape_problem(request, escape_reason_min_length)
        if problem is not None:
            if requested is ResolutionType.COMPLETED:
                return ResolutionDecision.refuse(f"blocking condition requires evidence: {problem}")
            return ResolutionDecision.refuse(
                f"blocking condition cannot be resolved as '{requested.value}': {problem}"
            )
        return ResolutionDecision.accept(ResolutionType.SKIPPED_WITH_RISK, escaped=True)

    if condition_level is ConditionLevel.REQUIRED and requested is not ResolutionType.COMPLETED:
        if not (request.note or "").strip():
            return ResolutionDecision.refuse(
                f"a resolution note is required to resolve a required condition "
                f"as '{requested.value}'"
            )

    return ResolutionDecision.accept(requested)
