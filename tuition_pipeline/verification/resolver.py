"""
Confidence Scorer and Status Resolver.

Turns the extractor status, rule verdict, source report and (optionally)
an AI verdict into a VerificationResult.

States:
    verified           terminal, accepted
    needs_review       terminal, flagged for manual audit
    retry_recommended  internal, triggers one re-extraction
    failed             terminal, diagnostic only

The AI merge is a bounded walk on two lattices: status only moves up
(verified -> needs_review -> retry_recommended) and confidence moves at
most one step (Low <-> Medium <-> High).
"""

from datetime import datetime, timezone
from typing import Optional

from ..constants import (
    COMPLETENESS_EXCELLENT,
    COMPLETENESS_GOOD,
    FALLBACK_SEARCH_QUERY,
    PROGRAM_VARIATIONS,
    RETRY_ISSUE_THRESHOLD,
)
from ..models.extraction import CandidateStatus, Confidence, ExtractionCandidate
from ..models.verification import (
    AIVerdict,
    ConfidenceAdjustment,
    RuleVerdict,
    VerificationResult,
    VerificationStatus,
)

CONFIDENCE_ORDER = (Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH)

STATUS_SEVERITY = {
    VerificationStatus.VERIFIED: 0,
    VerificationStatus.NEEDS_REVIEW: 1,
    VerificationStatus.RETRY_RECOMMENDED: 2,
    VerificationStatus.FAILED: 3,
}

STATUS_TEXT = {
    VerificationStatus.VERIFIED: "Data verification passed.",
    VerificationStatus.NEEDS_REVIEW: "Data requires manual review due to minor issues.",
    VerificationStatus.RETRY_RECOMMENDED: "Data quality insufficient - retry recommended.",
    VerificationStatus.FAILED: "Extraction failed - retry with a stricter search recommended.",
}

NOT_FOUND_ISSUE = "Program not found at this school"
EXTRACTION_FAILED_ISSUE = "Extraction failed"


# =============================================================================
# Lattice helpers
# =============================================================================


def step_confidence(confidence: Confidence, adjustment: ConfidenceAdjustment) -> Confidence:
    """Move confidence exactly one ordinal step, clamped at Low and High."""
    index = CONFIDENCE_ORDER.index(confidence)
    if adjustment == ConfidenceAdjustment.INCREASE:
        index = min(index + 1, len(CONFIDENCE_ORDER) - 1)
    elif adjustment == ConfidenceAdjustment.DECREASE:
        index = max(index - 1, 0)
    return CONFIDENCE_ORDER[index]


def escalate_status(current: VerificationStatus, proposed: VerificationStatus) -> VerificationStatus:
    """The more severe of the two; never lower than current."""
    if STATUS_SEVERITY[proposed] > STATUS_SEVERITY[current]:
        return proposed
    return current


def completeness_label(score: int) -> str:
    if score >= COMPLETENESS_EXCELLENT:
        return "excellent"
    if score >= COMPLETENESS_GOOD:
        return "good"
    return "needs improvement"


def build_reasoning(
    status: VerificationStatus,
    confidence: Confidence,
    completeness_score: int,
    issue_count: int,
    validation_count: int,
) -> str:
    """Deterministic audit string: status, confidence, completeness bucket, counts."""
    parts = [
        STATUS_TEXT[status],
        f"Confidence: {confidence.value}.",
        f"Data completeness: {completeness_score}% ({completeness_label(completeness_score)}).",
    ]
    if issue_count:
        parts.append(f"Issues: {issue_count} found.")
    if validation_count:
        parts.append(f"Validations: {validation_count} passed.")
    return " ".join(parts)


# =============================================================================
# Search queries
# =============================================================================


def fallback_search_query(school: str, program: str) -> str:
    """Stricter query used after a failed extraction."""
    return FALLBACK_SEARCH_QUERY.format(school=school, program=program)


def program_variations(program: str) -> list[str]:
    """Alternative names for a program ("Part-Time MBA" -> "Professional MBA", ...)."""
    normalized = program.lower().strip()
    if normalized in PROGRAM_VARIATIONS:
        return list(PROGRAM_VARIATIONS[normalized])
    # Longest key first so "online mba" wins over "mba"
    for key in sorted(PROGRAM_VARIATIONS, key=len, reverse=True):
        if key in normalized or normalized in key:
            return list(PROGRAM_VARIATIONS[key])
    return []


def derive_alternative_query(school: str, program: str, current_year: Optional[int] = None) -> str:
    """Refined query after a rule-based retry recommendation.

    Pins the current academic year and, when known, searches under the
    program's first alternative name as well.
    """
    if current_year is None:
        current_year = datetime.now(timezone.utc).year
    variations = program_variations(program)
    names = f'"{program}"'
    if variations:
        names = f'("{program}" OR "{variations[0]}")'
    return f'"{school}" {names} tuition {current_year}-{current_year + 1} site:.edu'


# =============================================================================
# Resolution
# =============================================================================


def resolve_short_circuit(candidate: ExtractionCandidate, school: str, program: str) -> Optional[VerificationResult]:
    """Fixed results for Not Found and Failed candidates; None for everything else."""
    if candidate.status == CandidateStatus.NOT_FOUND:
        status = VerificationStatus.VERIFIED
        return VerificationResult(
            status=status,
            confidence=Confidence.LOW,
            issues=[NOT_FOUND_ISSUE],
            reasoning=build_reasoning(status, Confidence.LOW, 0, 1, 0),
            retry_recommended=False,
            completeness_score=0,
        )

    if candidate.status == CandidateStatus.FAILED:
        status = VerificationStatus.FAILED
        issue = EXTRACTION_FAILED_ISSUE
        if candidate.failure_reason:
            issue = f"{EXTRACTION_FAILED_ISSUE} ({candidate.failure_reason})"
        return VerificationResult(
            status=status,
            confidence=Confidence.LOW,
            issues=[issue],
            reasoning=build_reasoning(status, Confidence.LOW, 0, 1, 0),
            retry_recommended=True,
            suggested_search_query=fallback_search_query(school, program),
            completeness_score=0,
            issue_codes=[candidate.failure_reason] if candidate.failure_reason else [],
        )

    return None


def resolve_rule_verdict(
    candidate: ExtractionCandidate,
    rule_verdict: RuleVerdict,
    school: str,
    program: str,
    has_official_source: bool = True,
    source_notes: Optional[list[str]] = None,
    current_year: Optional[int] = None,
) -> VerificationResult:
    """
    Rule-only resolution.

    Verifier failed or >= 3 rule issues -> retry_recommended with a derived
    query; any issue -> needs_review; otherwise verified. Confidence starts
    from the extractor's field-based score and drops one step when no
    official source backs the candidate.
    """
    issues = rule_verdict.issues
    validations = rule_verdict.validations

    if not rule_verdict.passed or len(issues) >= RETRY_ISSUE_THRESHOLD:
        status = VerificationStatus.RETRY_RECOMMENDED
    elif issues:
        status = VerificationStatus.NEEDS_REVIEW
    else:
        status = VerificationStatus.VERIFIED

    confidence = candidate.confidence_score
    if not has_official_source:
        confidence = step_confidence(confidence, ConfidenceAdjustment.DECREASE)

    retry = status == VerificationStatus.RETRY_RECOMMENDED
    return VerificationResult(
        status=status,
        confidence=confidence,
        issues=list(issues),
        validations=list(validations),
        reasoning=build_reasoning(status, confidence, rule_verdict.completeness_score, len(issues), len(validations)),
        retry_recommended=retry,
        suggested_search_query=derive_alternative_query(school, program, current_year) if retry else None,
        completeness_score=rule_verdict.completeness_score,
        issue_codes=sorted({issue.code.value for issue in rule_verdict.findings}),
        source_notes=list(source_notes or []),
    )


def merge_ai_verdict(
    result: VerificationResult,
    ai_verdict: Optional[AIVerdict],
    school: str,
    program: str,
    current_year: Optional[int] = None,
) -> VerificationResult:
    """
    Fold an AI verdict into a rule-based result.

    Status can only escalate; confidence moves at most one step; the key
    finding becomes a validation or an issue depending on source support.
    An escalation to retry_recommended always carries a query: the AI's
    alternative, the rule query, or a derived one.
    """
    if ai_verdict is None:
        return result

    status = escalate_status(result.status, ai_verdict.verification_status)
    confidence = step_confidence(result.confidence, ai_verdict.confidence_adjustment)

    issues = list(result.issues)
    validations = list(result.validations)
    if ai_verdict.key_finding:
        if ai_verdict.source_supports_data:
            validations.append(f"AI verification: {ai_verdict.key_finding}")
        else:
            issues.append(f"AI verification: {ai_verdict.key_finding}")

    retry = status == VerificationStatus.RETRY_RECOMMENDED
    query = None
    if retry:
        query = (
            ai_verdict.alternative_search_query
            or result.suggested_search_query
            or derive_alternative_query(school, program, current_year)
        )

    corrections = ai_verdict.suggested_correction if isinstance(ai_verdict.suggested_correction, dict) else {}

    return VerificationResult.model_validate(
        {
            **result.model_dump(),
            "status": status,
            "confidence": confidence,
            "issues": issues,
            "validations": validations,
            "reasoning": build_reasoning(status, confidence, result.completeness_score, len(issues), len(validations)),
            "retry_recommended": retry,
            "suggested_search_query": query,
            "corrections": dict(corrections),
            "ai_verification_used": True,
        }
    )
