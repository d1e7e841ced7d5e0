"""
Pydantic models for extraction requests and candidates.

A candidate is produced once per extraction attempt and is never edited
in place. Corrections proposed by verification are applied only through
apply_corrections(), which returns a new candidate.
"""

import hashlib
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..utils.text import is_missing, parse_currency
from .grounding import InlineCitation

logger = logging.getLogger(__name__)


class CandidateStatus(str, Enum):
    """Extractor disposition for one attempt."""

    SUCCESS = "Success"
    NOT_FOUND = "Not Found"
    PENDING = "Pending"
    FAILED = "Failed"


class Confidence(str, Enum):
    """Ordinal trust tag attached to an extracted value set."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class SourceClassification(str, Enum):
    """Source Validator verdict for one source URL."""

    OFFICIAL = "Official"  # .edu domain matching the target school
    UNVERIFIED = "Unverified"  # Anything else we cannot vouch for
    BLOCKED = "Blocked"  # Known low-quality aggregator


class ExtractionRequest(BaseModel):
    """Immutable input to one pipeline run."""

    model_config = ConfigDict(frozen=True)

    school: str = Field(..., min_length=1)
    program: str = Field(..., min_length=1)

    @field_validator("school", "program")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    def __str__(self) -> str:
        return f"{self.school} | {self.program}"


class Source(BaseModel):
    """A web source reported by grounding."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: Optional[str] = None
    domain: Optional[str] = None  # Domain reported by grounding (redirect URLs hide it)
    raw_content: Optional[str] = None


class ValidatedSource(Source):
    """A deduplicated source with its classification."""

    classification: SourceClassification = SourceClassification.UNVERIFIED


# Fields verification may propose corrections for
CORRECTABLE_FIELDS = (
    "tuition_amount",
    "tuition_period",
    "academic_year",
    "cost_per_credit",
    "total_credits",
    "program_length",
    "program_length_months",
    "actual_program_name",
    "is_stem",
    "additional_fees",
)


class ExtractionCandidate(BaseModel):
    """Structured tuition data from one extraction attempt."""

    model_config = ConfigDict(frozen=True)

    # Tuition fields
    tuition_amount: Optional[float] = Field(None, description="Total program tuition in USD")
    tuition_period: Optional[str] = Field(None, description="What tuition_amount covers, e.g. 'full program'")
    academic_year: Optional[str] = Field(None, description="Academic year of the rates, e.g. '2025-2026'")
    cost_per_credit: Optional[float] = None
    total_credits: Optional[float] = None
    program_length: Optional[str] = None
    program_length_months: Optional[int] = None
    actual_program_name: Optional[str] = None
    is_stem: Optional[bool] = None
    additional_fees: Optional[str] = None
    remarks: Optional[str] = None

    # Provenance
    source_url: Optional[str] = None
    validated_sources: tuple[ValidatedSource, ...] = ()
    inline_citations: tuple[InlineCitation, ...] = ()
    raw_content: Optional[str] = None
    search_query: Optional[str] = None

    # Disposition
    status: CandidateStatus = CandidateStatus.PENDING
    confidence_score: Confidence = Confidence.MEDIUM
    failure_reason: Optional[str] = None  # timeout | api_error | parse_error | quota_exceeded | invalid_request
    attempt: int = 1
    cost_usd: float = 0.0

    @field_validator("tuition_amount", "cost_per_credit", "total_credits", mode="before")
    @classmethod
    def _parse_numeric(cls, value: Any) -> Optional[float]:
        return parse_currency(value)

    @field_validator(
        "tuition_period",
        "academic_year",
        "program_length",
        "actual_program_name",
        "additional_fees",
        "remarks",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if is_missing(value):
            return None
        return str(value).strip()

    @field_validator("is_stem", mode="before")
    @classmethod
    def _parse_bool(cls, value: Any) -> Optional[bool]:
        if value is None or isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "yes", "y", "1"):
            return True
        if text in ("false", "no", "n", "0"):
            return False
        return None

    @property
    def official_sources(self) -> list[ValidatedSource]:
        return [s for s in self.validated_sources if s.classification == SourceClassification.OFFICIAL]

    def content_hash(self, school: str, program: str) -> str:
        """SHA-256 of the verification-relevant content, used as the cache key."""
        payload = self.model_dump_json(exclude={"attempt", "cost_usd"})
        digest = hashlib.sha256()
        digest.update(school.strip().lower().encode("utf-8"))
        digest.update(b"\x1f")
        digest.update(program.strip().lower().encode("utf-8"))
        digest.update(b"\x1f")
        digest.update(payload.encode("utf-8"))
        return digest.hexdigest()


def apply_corrections(candidate: ExtractionCandidate, corrections: Optional[dict[str, Any]]) -> ExtractionCandidate:
    """
    Build a new candidate with proposed corrections applied.

    Unknown field names are ignored, and so is any value the candidate
    schema rejects ("about two years" for program_length_months). The
    original candidate is left untouched.
    """
    updates = {k: v for k, v in (corrections or {}).items() if k in CORRECTABLE_FIELDS}
    if not updates:
        return candidate
    data = candidate.model_dump()
    for field_name, value in updates.items():
        trial = {**data, field_name: value}
        try:
            ExtractionCandidate.model_validate(trial)
        except ValidationError:
            logger.warning(f"Ignoring invalid correction {field_name}={value!r}")
            continue
        data = trial
    return ExtractionCandidate.model_validate(data)
