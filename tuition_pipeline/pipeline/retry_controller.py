"""
Retry Controller: bounded extract -> verify -> (retry once) loop.

State machine:

    EXTRACT --> VERIFY --(retry_recommended, budget left)--> EXTRACT
                  |
                  +--(anything else)--> DONE

A retry is only taken when the verification recommends one, the failure
was not a quota denial, and fewer than MAX_EXTRA_ATTEMPTS retries have
been made. A retry recommendation left over when the budget is spent
becomes needs_review, so retry_recommended never leaves this module.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..constants import MAX_EXTRA_ATTEMPTS
from ..models.extraction import ExtractionCandidate
from ..models.verification import VerificationResult, VerificationStatus
from ..verification.resolver import build_reasoning, fallback_search_query

logger = logging.getLogger(__name__)

QUOTA_FAILURE = "quota_exceeded"


class RetryState(str, Enum):
    EXTRACT = "extract"
    VERIFY = "verify"
    DONE = "done"


@dataclass
class AttemptRecord:
    """One extract + verify round. retry_count is 0 for the first attempt."""

    candidate: ExtractionCandidate
    verification: VerificationResult
    retry_count: int


@dataclass
class RetryOutcome:
    """Terminal result of the controller."""

    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def final(self) -> AttemptRecord:
        return self.attempts[-1]

    @property
    def candidate(self) -> ExtractionCandidate:
        return self.final.candidate

    @property
    def verification(self) -> VerificationResult:
        return self.final.verification

    @property
    def retry_count(self) -> int:
        return self.final.retry_count


def finalize(verification: VerificationResult) -> VerificationResult:
    """Close out a verification that will not be retried."""
    if verification.status == VerificationStatus.RETRY_RECOMMENDED:
        status = VerificationStatus.NEEDS_REVIEW
        return verification.model_copy(
            update={
                "status": status,
                "retry_recommended": False,
                "reasoning": build_reasoning(
                    status,
                    verification.confidence,
                    verification.completeness_score,
                    len(verification.issues),
                    len(verification.validations),
                ),
            }
        )
    if verification.retry_recommended:
        return verification.model_copy(update={"retry_recommended": False})
    return verification


class RetryController:
    """
    Drives one request through extraction, verification and at most one retry.

    Usage:
        controller = RetryController(extractor, verifier)
        outcome = controller.run("Northwestern University", "Executive MBA")
        outcome.verification.status  # never retry_recommended
    """

    def __init__(self, extractor, verifier, max_extra_attempts: int = MAX_EXTRA_ATTEMPTS):
        self.extractor = extractor
        self.verifier = verifier
        self.max_extra_attempts = max_extra_attempts

    def should_retry(
        self,
        candidate: ExtractionCandidate,
        verification: VerificationResult,
        retries_used: int,
    ) -> bool:
        if retries_used >= self.max_extra_attempts:
            return False
        if candidate.failure_reason == QUOTA_FAILURE:
            return False
        return verification.retry_recommended

    def run(self, school: str, program: str) -> RetryOutcome:
        outcome = RetryOutcome()
        state = RetryState.EXTRACT
        retries_used = 0
        query: Optional[str] = None
        candidate: Optional[ExtractionCandidate] = None

        while state != RetryState.DONE:
            if state == RetryState.EXTRACT:
                candidate = self.extractor.extract(school, program, refined_query=query, attempt=retries_used + 1)
                state = RetryState.VERIFY

            elif state == RetryState.VERIFY:
                verification = self.verifier.verify(candidate, school, program)

                if self.should_retry(candidate, verification, retries_used):
                    outcome.attempts.append(AttemptRecord(candidate, verification, retries_used))
                    query = verification.suggested_search_query or fallback_search_query(school, program)
                    retries_used += 1
                    logger.info(f"Retrying {school} - {program} ({verification.status.value}) with query: {query}")
                    state = RetryState.EXTRACT
                else:
                    outcome.attempts.append(AttemptRecord(candidate, finalize(verification), retries_used))
                    state = RetryState.DONE

        final = outcome.verification
        logger.info(
            f"Finished {school} - {program}: {final.status.value}, confidence {final.confidence.value}, "
            f"{outcome.retry_count} retries"
        )
        return outcome
