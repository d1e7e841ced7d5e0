"""Pydantic models for requests, candidates, verification results and quota state."""

from .extraction import (
    CandidateStatus,
    Confidence,
    ExtractionCandidate,
    ExtractionRequest,
    SourceClassification,
    Source,
    ValidatedSource,
    apply_corrections,
)
from .grounding import GroundingChunk, GroundingMetadata, GroundingSupport, InlineCitation
from .quota import QuotaDecision, QuotaStatus
from .verification import (
    AIVerdict,
    CheckResult,
    ConfidenceAdjustment,
    IssueCode,
    RuleVerdict,
    Severity,
    ValidationIssue,
    VerificationResult,
    VerificationStatus,
)

__all__ = [
    "AIVerdict",
    "CandidateStatus",
    "CheckResult",
    "Confidence",
    "ConfidenceAdjustment",
    "ExtractionCandidate",
    "ExtractionRequest",
    "GroundingChunk",
    "GroundingMetadata",
    "GroundingSupport",
    "InlineCitation",
    "IssueCode",
    "QuotaDecision",
    "QuotaStatus",
    "RuleVerdict",
    "Severity",
    "Source",
    "SourceClassification",
    "ValidatedSource",
    "ValidationIssue",
    "VerificationResult",
    "VerificationStatus",
    "apply_corrections",
]
