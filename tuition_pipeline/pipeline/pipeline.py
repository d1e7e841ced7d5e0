"""
Tuition extraction pipeline.

Wires the Quota Guard, Extractor Agent, Verifier and Retry Controller
together and persists every attempt. Public entry points never raise:
every failure resolves to a well-formed candidate and verification.

Usage:
    pipeline = TuitionPipeline.from_config(PipelineConfig.from_env())
    outcome = pipeline.run(ExtractionRequest(school="Wharton", program="MBA"))
    outcomes = pipeline.run_batch(requests, batch_size=5)
"""

import logging
import time
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..agents.cross_verifier import CrossVerifier
from ..agents.extractor_agent import ExtractorAgent
from ..agents.gemini_search import GeminiSearchClient
from ..config import PipelineConfig
from ..db.repository import ExtractionResultRepository, QuotaRepository, VerificationCacheRepository
from ..models.extraction import (
    CandidateStatus,
    Confidence,
    ExtractionCandidate,
    ExtractionRequest,
    apply_corrections,
)
from ..models.quota import QuotaStatus
from ..models.verification import VerificationResult, VerificationStatus
from ..services.quota_guard import QuotaGuard
from ..utils.logger import PipelineLogger, PipelineRunContext, get_logger
from ..utils.worker_pool import BatchAborted, WorkerPool
from ..verification.resolver import build_reasoning
from ..verification.verifier import Verifier
from .retry_controller import RetryController, RetryOutcome

logger = logging.getLogger(__name__)


class PipelineOutcome(BaseModel):
    """Final state of one request."""

    model_config = ConfigDict(frozen=True)

    request: ExtractionRequest
    candidate: ExtractionCandidate
    verification: VerificationResult
    retry_count: int = 0
    extraction_version: Optional[int] = None
    cost_usd: float = 0.0
    duration_seconds: float = 0.0

    @property
    def corrected_candidate(self) -> ExtractionCandidate:
        """Candidate with the verifier's proposed corrections applied (a new object)."""
        return apply_corrections(self.candidate, self.verification.corrections)

    @property
    def succeeded(self) -> bool:
        return self.verification.status in (VerificationStatus.VERIFIED, VerificationStatus.NEEDS_REVIEW)


class TuitionPipeline:
    """
    Extraction -> verification -> bounded retry for (school, program) pairs.

    Any collaborator can be swapped (tests pass fakes for the Gemini client
    and the repositories).
    """

    def __init__(
        self,
        extractor: ExtractorAgent,
        verifier: Verifier,
        quota_guard: Optional[QuotaGuard] = None,
        result_repository=None,
        batch_size: int = 10,
        run_logger: Optional[PipelineLogger] = None,
    ):
        """
        Args:
            extractor: Extractor Agent (already wired to the quota guard)
            verifier: Verifier (already wired to the cross-verifier, if any)
            quota_guard: Used for quota reporting
            result_repository: ExtractionResultRepository, or None to skip persistence
            batch_size: Default concurrency for run_batch()
            run_logger: PipelineLogger for batch summaries
        """
        self.extractor = extractor
        self.verifier = verifier
        self.quota_guard = quota_guard
        self.result_repository = result_repository
        self.batch_size = batch_size
        self.run_logger = run_logger or get_logger()
        self.retry_controller = RetryController(extractor, verifier)
        self._pool: Optional[WorkerPool] = None
        self.last_batch_stats: dict = {}

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        quota_repository=None,
        result_repository=None,
        cache_repository=None,
        run_logger: Optional[PipelineLogger] = None,
    ) -> "TuitionPipeline":
        """Build a pipeline backed by Gemini and the database.

        Repositories default to the DoltDB-backed implementations.
        """
        if quota_repository is None:
            quota_repository = QuotaRepository()
        if config.persist_results and result_repository is None:
            result_repository = ExtractionResultRepository()
        if config.cache_verifications and cache_repository is None:
            cache_repository = VerificationCacheRepository()

        quota_guard = QuotaGuard(
            quota_repository,
            limit=config.daily_quota_limit,
            warning_threshold=config.quota_warning_threshold,
            critical_threshold=config.quota_critical_threshold,
        )

        search_client = GeminiSearchClient(
            model=config.model,
            api_key=config.api_key,
            timeout_seconds=config.extraction_timeout,
        )
        extractor = ExtractorAgent(
            search_client,
            quota_guard=quota_guard,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            max_retries=config.api_max_retries,
        )

        cross_verifier = None
        if config.ai_verification:
            verify_client = GeminiSearchClient(
                model=config.model,
                api_key=config.api_key,
                timeout_seconds=config.verification_timeout,
            )
            cross_verifier = CrossVerifier(
                verify_client,
                quota_guard=quota_guard,
                temperature=config.temperature,
                max_output_tokens=config.max_output_tokens,
            )

        verifier = Verifier(
            cross_verifier=cross_verifier,
            cache_repository=cache_repository if config.cache_verifications else None,
            ai_verification=config.ai_verification,
            cache_ttl_days=config.cache_ttl_days,
        )

        return cls(
            extractor,
            verifier,
            quota_guard=quota_guard,
            result_repository=result_repository if config.persist_results else None,
            batch_size=config.batch_size,
            run_logger=run_logger,
        )

    # =========================================================================
    # Single operations
    # =========================================================================

    def extract(self, school: str, program: str) -> ExtractionCandidate:
        """Final candidate after verification and the bounded retry. Never raises."""
        try:
            request = ExtractionRequest(school=school, program=program)
        except ValueError as e:
            return ExtractionCandidate(
                status=CandidateStatus.FAILED,
                confidence_score=Confidence.LOW,
                failure_reason="invalid_request",
                remarks=f"Invalid request: {e}",
            )
        return self.run(request).candidate

    def verify(self, candidate: ExtractionCandidate, school: str, program: str) -> VerificationResult:
        """Verify a candidate. May return retry_recommended, since no retry follows."""
        return self.verifier.verify(candidate, school, program)

    def get_quota_status(self) -> Optional[QuotaStatus]:
        if self.quota_guard is None:
            return None
        return self.quota_guard.get_quota_status()

    def get_quota_history(self, days: int = 30) -> list[QuotaStatus]:
        if self.quota_guard is None:
            return []
        return self.quota_guard.get_quota_history(days)

    def run(self, request: ExtractionRequest) -> PipelineOutcome:
        """Full extract -> verify -> retry for one request. Never raises."""
        start = time.monotonic()
        try:
            result = self.retry_controller.run(request.school, request.program)
        except Exception as e:
            logger.error(f"Pipeline error for {request}: {e}", exc_info=True)
            return self._error_outcome(request, e, time.monotonic() - start)

        version = self._persist(request, result)
        cost = sum(attempt.candidate.cost_usd for attempt in result.attempts)
        duration = time.monotonic() - start

        self.run_logger.log_extraction_complete(
            school=request.school,
            program=request.program,
            status=result.candidate.status.value,
            verification_status=result.verification.status.value,
            retry_count=result.retry_count,
            duration_seconds=duration,
            cost_usd=cost,
        )

        return PipelineOutcome(
            request=request,
            candidate=result.candidate,
            verification=result.verification,
            retry_count=result.retry_count,
            extraction_version=version,
            cost_usd=cost,
            duration_seconds=duration,
        )

    def _persist(self, request: ExtractionRequest, result: RetryOutcome) -> Optional[int]:
        """Write one row per attempt under a new extraction_version."""
        if self.result_repository is None:
            return None
        try:
            version = self.result_repository.next_version(request.school, request.program)
            for attempt in result.attempts:
                self.result_repository.save_attempt(
                    request.school,
                    request.program,
                    attempt.candidate,
                    attempt.verification,
                    retry_count=attempt.retry_count,
                    extraction_version=version,
                )
            return version
        except Exception as e:
            self.run_logger.error(f"Failed to persist results for {request}", exception=e)
            return None

    @staticmethod
    def _error_outcome(request: ExtractionRequest, error: Exception, duration: float) -> PipelineOutcome:
        status = VerificationStatus.FAILED
        return PipelineOutcome(
            request=request,
            candidate=ExtractionCandidate(
                status=CandidateStatus.FAILED,
                confidence_score=Confidence.LOW,
                failure_reason="api_error",
                remarks=f"Pipeline error: {error}",
            ),
            verification=VerificationResult(
                status=status,
                confidence=Confidence.LOW,
                issues=[f"Pipeline error: {error}"],
                reasoning=build_reasoning(status, Confidence.LOW, 0, 1, 0),
            ),
            duration_seconds=duration,
        )

    # =========================================================================
    # Batch
    # =========================================================================

    def run_batch(
        self,
        requests: list[ExtractionRequest],
        batch_size: Optional[int] = None,
    ) -> list[PipelineOutcome]:
        """
        Run many requests concurrently, bounded by batch_size.

        Returns:
            Outcomes in request order. Requests skipped by abort() are omitted.

        A KeyboardInterrupt cancels the requests that have not started and
        propagates once in-flight requests finish; last_batch_stats then
        holds the pool counters.
        """
        pool = WorkerPool(max_workers=batch_size or self.batch_size, logger=logger)
        self._pool = pool
        outcomes: dict[int, PipelineOutcome] = {}

        try:
            with PipelineRunContext(self.run_logger, num_targets=len(requests)) as ctx:
                results = pool.map(lambda indexed: self.run(indexed[1]), list(enumerate(requests)), desc="Extraction")
                for success, (index, request), value in results:
                    if success:
                        outcomes[index] = value
                        ctx.record(value.verification.status.value, value.cost_usd)
                    elif isinstance(value, BatchAborted):
                        ctx.record_cancelled()
                    else:
                        self.run_logger.error(f"Unhandled error for {request}", exception=value)
                        ctx.record(VerificationStatus.FAILED.value)
        finally:
            self._pool = None
            self.last_batch_stats = pool.get_stats()
        return [outcomes[i] for i in sorted(outcomes)]

    def abort(self) -> int:
        """Cancel requests of the running batch that have not started. Returns the number cancelled."""
        pool = self._pool
        if pool is None:
            return 0
        return pool.abort()
