"""
Verification stage: rule checks, source review, optional AI corroboration.

Verifier.verify() never raises. Short-circuit statuses (Not Found, Failed)
skip the rule checks entirely; everything else runs the four math and
plausibility checks, the source review, and then the cross-verifier if
one is configured.
"""

import logging
from typing import Optional

from ..constants import VERIFICATION_CACHE_TTL_DAYS
from ..models.extraction import Confidence, ExtractionCandidate
from ..models.verification import VerificationResult, VerificationStatus
from ..validators.math_validator import run_rule_checks
from ..validators.source_validator import validate_sources
from .resolver import build_reasoning, merge_ai_verdict, resolve_rule_verdict, resolve_short_circuit

logger = logging.getLogger(__name__)


class Verifier:
    """
    Resolves a candidate into a VerificationResult.

    Usage:
        verifier = Verifier(cross_verifier=CrossVerifier(client, quota_guard=guard))
        result = verifier.verify(candidate, "Northwestern University", "Executive MBA")
    """

    def __init__(
        self,
        cross_verifier=None,
        cache_repository=None,
        current_year: Optional[int] = None,
        ai_verification: bool = True,
        cache_ttl_days: int = VERIFICATION_CACHE_TTL_DAYS,
    ):
        """
        Args:
            cross_verifier: CrossVerifier, or None for rule-only verification
            cache_repository: Store for AI-backed results keyed by content hash
            current_year: Fixed reference year for the recency check (defaults to the UTC year)
            ai_verification: Set False to skip the cross-verifier even when configured
            cache_ttl_days: Cached results older than this are ignored
        """
        self.cross_verifier = cross_verifier
        self.cache_repository = cache_repository
        self.current_year = current_year
        self.ai_verification = ai_verification
        self.cache_ttl_days = cache_ttl_days

    @property
    def uses_ai(self) -> bool:
        return self.ai_verification and self.cross_verifier is not None

    def verify(self, candidate: ExtractionCandidate, school: str, program: str) -> VerificationResult:
        """Verify one candidate. Internal errors degrade to a failed result, never an exception."""
        try:
            return self._verify(candidate, school, program)
        except Exception as e:
            logger.error(f"Verification error for {school} - {program}: {e}", exc_info=True)
            status = VerificationStatus.FAILED
            return VerificationResult(
                status=status,
                confidence=Confidence.LOW,
                issues=[f"Verification error: {e}"],
                reasoning=build_reasoning(status, Confidence.LOW, 0, 1, 0),
            )

    def _verify(self, candidate: ExtractionCandidate, school: str, program: str) -> VerificationResult:
        short_circuit = resolve_short_circuit(candidate, school, program)
        if short_circuit is not None:
            logger.debug(f"Short-circuit verification for {school} - {program}: {candidate.status.value}")
            return short_circuit

        cache_key = None
        if self.uses_ai and self.cache_repository is not None:
            cache_key = candidate.content_hash(school, program)
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.debug(f"Verification cache hit for {school} - {program}")
                return cached

        rule_verdict = run_rule_checks(candidate, self.current_year)
        report = validate_sources(candidate.validated_sources, school)

        result = resolve_rule_verdict(
            candidate,
            rule_verdict,
            school,
            program,
            has_official_source=report.has_official,
            source_notes=report.notes,
            current_year=self.current_year,
        )
        logger.debug(
            f"Rule verification for {school} - {program}: {result.status.value} "
            f"({len(result.issues)} issues, completeness {result.completeness_score})"
        )

        if not self.uses_ai:
            return result

        ai_verdict = self.cross_verifier.verify(candidate, school, program, rule_verdict)
        if ai_verdict is None:
            return result

        merged = merge_ai_verdict(result, ai_verdict, school, program, self.current_year)
        if cache_key is not None:
            self._cache_set(cache_key, school, program, merged)
        return merged

    def _cache_get(self, cache_key: str) -> Optional[VerificationResult]:
        try:
            data = self.cache_repository.get_valid(cache_key, self.cache_ttl_days)
        except Exception as e:
            logger.warning(f"Verification cache read failed: {e}")
            return None
        if not data:
            return None
        try:
            return VerificationResult.model_validate(data)
        except ValueError as e:
            logger.warning(f"Discarding malformed cached verification {cache_key[:12]}: {e}")
            return None

    def _cache_set(self, cache_key: str, school: str, program: str, result: VerificationResult) -> None:
        try:
            self.cache_repository.upsert(cache_key, school, program, result.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Verification cache write failed: {e}")
