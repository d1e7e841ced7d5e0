"""
Verification result types.

Rule checks report ValidationIssue dataclasses (internal). The resolver
flattens them into the VerificationResult pydantic model that callers see
and that is persisted as verification_data.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .extraction import Confidence


class VerificationStatus(str, Enum):
    """Pipeline disposition of a candidate."""

    VERIFIED = "verified"  # Terminal, accepted
    NEEDS_REVIEW = "needs_review"  # Terminal, queued for manual audit
    RETRY_RECOMMENDED = "retry_recommended"  # Internal, triggers one re-extraction
    FAILED = "failed"  # Terminal, diagnostic only


class IssueCode(str, Enum):
    """Category of a rule-based finding."""

    MATH_INCONSISTENCY = "MathInconsistency"
    RANGE_IMPLAUSIBLE = "RangeImplausible"
    STALE_YEAR = "StaleYear"
    INCOMPLETE = "Incomplete"


class Severity(str, Enum):
    """Severity level for validation issues."""

    ERROR = "error"  # Fails the check
    WARNING = "warning"  # Counted as an issue, check still passes


class ConfidenceAdjustment(str, Enum):
    INCREASE = "increase"
    MAINTAIN = "maintain"
    DECREASE = "decrease"


@dataclass
class ValidationIssue:
    """A specific issue found by a rule check.

    Attributes:
        code: Finding category
        severity: ERROR fails the owning check, WARNING does not
        message: Human-readable description (goes into VerificationResult.issues)
        field: Candidate field the issue is about
    """

    code: IssueCode
    severity: Severity
    message: str
    field: Optional[str] = None

    @property
    def is_hard(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.field:
            result["field"] = self.field
        return result


@dataclass
class CheckResult:
    """Outcome of one rule check."""

    name: str
    issues: list[ValidationIssue] = field(default_factory=list)
    validations: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(issue.is_hard for issue in self.issues)


@dataclass
class RuleVerdict:
    """Combined outcome of the four math/plausibility checks."""

    checks: list[CheckResult]
    completeness_score: int

    @property
    def passed(self) -> bool:
        """The verifier passes only if every check passes."""
        return all(check.passed for check in self.checks)

    @property
    def findings(self) -> list[ValidationIssue]:
        return [issue for check in self.checks for issue in check.issues]

    @property
    def issues(self) -> list[str]:
        return [issue.message for issue in self.findings]

    @property
    def validations(self) -> list[str]:
        return [v for check in self.checks for v in check.validations]

    def check(self, name: str) -> CheckResult:
        for check in self.checks:
            if check.name == name:
                return check
        raise KeyError(name)


class AIVerdict(BaseModel):
    """Structured verdict returned by the AI cross-verifier."""

    verification_status: VerificationStatus
    confidence_adjustment: ConfidenceAdjustment = ConfidenceAdjustment.MAINTAIN
    key_finding: Optional[str] = None
    source_supports_data: bool = False
    suggested_correction: Optional[dict[str, Any]] = None
    alternative_search_query: Optional[str] = None

    @field_validator("verification_status")
    @classmethod
    def _no_failed(cls, value: VerificationStatus) -> VerificationStatus:
        if value == VerificationStatus.FAILED:
            raise ValueError("cross-verifier may not report failed")
        return value

    @field_validator("alternative_search_query", "key_finding", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_response(cls, data: Any) -> Optional["AIVerdict"]:
        """Validate a decoded JSON payload; None when it does not match the schema."""
        if not isinstance(data, dict):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None


class VerificationResult(BaseModel):
    """Final verification of one candidate."""

    model_config = ConfigDict(frozen=True)

    status: VerificationStatus
    confidence: Confidence
    issues: list[str] = Field(default_factory=list)
    validations: list[str] = Field(default_factory=list)
    reasoning: str = ""
    retry_recommended: bool = False
    suggested_search_query: Optional[str] = None
    corrections: dict[str, Any] = Field(default_factory=dict)
    completeness_score: int = Field(0, ge=0, le=100)
    ai_verification_used: bool = False
    issue_codes: list[str] = Field(default_factory=list)
    source_notes: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _retry_needs_query(self) -> "VerificationResult":
        if self.retry_recommended and not self.suggested_search_query:
            raise ValueError("retry_recommended requires suggested_search_query")
        return self
