"""Integration tests for TuitionPipeline with in-memory Gemini and database fakes."""

import _thread
import time

import pytest

from tests.conftest import (
    PROGRAM,
    SCHOOL,
    TODAY,
    InMemoryQuotaRepository,
    InMemoryResultRepository,
    make_candidate,
    success_result,
)
from tuition_pipeline.config import PipelineConfig
from tuition_pipeline.models.extraction import CandidateStatus, ExtractionRequest
from tuition_pipeline.models.verification import VerificationResult, VerificationStatus
from tuition_pipeline.pipeline.pipeline import PipelineOutcome, TuitionPipeline


class BrokenExtractor:
    def extract(self, school, program, refined_query=None, attempt=1):
        raise RuntimeError("extractor crashed")


class AbortingExtractor:
    """Aborts the running batch from inside the first task."""

    def __init__(self, inner):
        self.inner = inner
        self.pipeline = None

    def extract(self, *args, **kwargs):
        self.pipeline.abort()
        return self.inner.extract(*args, **kwargs)


class InterruptingExtractor:
    """Raises Ctrl-C in the main thread from inside the first task."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def extract(self, *args, **kwargs):
        self.calls += 1
        if self.calls == 1:
            _thread.interrupt_main()
        time.sleep(0.1)
        return self.inner.extract(*args, **kwargs)


class FailingResultRepository(InMemoryResultRepository):
    def save_attempt(self, *args, **kwargs):
        raise ConnectionError("database went away")


@pytest.fixture
def result_repo():
    return InMemoryResultRepository()


@pytest.fixture
def pipeline(extractor, rule_verifier, quota_guard, result_repo, run_logger):
    return TuitionPipeline(
        extractor,
        rule_verifier,
        quota_guard=quota_guard,
        result_repository=result_repo,
        run_logger=run_logger,
    )


REQUEST = ExtractionRequest(school=SCHOOL, program=PROGRAM)


# ─── Single request ───────────────────────────────────────────────────────────


class TestRun:
    def test_verified_outcome(self, pipeline, search_client):
        search_client.queue(success_result())
        outcome = pipeline.run(REQUEST)

        assert outcome.succeeded
        assert outcome.verification.status == VerificationStatus.VERIFIED
        assert outcome.candidate.tuition_amount == 90_000
        assert outcome.retry_count == 0
        assert outcome.cost_usd == pytest.approx(0.002)

    def test_persists_one_row_per_attempt(self, pipeline, search_client, result_repo):
        search_client.queue(
            success_result(tuition_amount="$36,000", cost_per_credit="$500", total_credits="60"),
            success_result(tuition_amount="$36,000", cost_per_credit="$500", total_credits="60"),
        )
        outcome = pipeline.run(REQUEST)

        assert outcome.verification.status == VerificationStatus.NEEDS_REVIEW
        assert outcome.retry_count == 1
        assert outcome.cost_usd == pytest.approx(0.004)
        assert [(r["retry_count"], r["verification_status"]) for r in result_repo.rows] == [
            (0, "retry_recommended"),
            (1, "needs_review"),
        ]
        assert {r["extraction_version"] for r in result_repo.rows} == {1}

    def test_versions_increment_per_run(self, pipeline, search_client, result_repo):
        search_client.queue(success_result(), success_result())
        first = pipeline.run(REQUEST)
        second = pipeline.run(REQUEST)
        assert (first.extraction_version, second.extraction_version) == (1, 2)

    def test_no_repository_no_version(self, extractor, rule_verifier, search_client, run_logger):
        search_client.queue(success_result())
        outcome = TuitionPipeline(extractor, rule_verifier, run_logger=run_logger).run(REQUEST)
        assert outcome.extraction_version is None

    def test_persistence_failure_does_not_fail_run(self, extractor, rule_verifier, search_client, run_logger):
        search_client.queue(success_result())
        pipeline = TuitionPipeline(
            extractor, rule_verifier, result_repository=FailingResultRepository(), run_logger=run_logger
        )
        outcome = pipeline.run(REQUEST)
        assert outcome.verification.status == VerificationStatus.VERIFIED
        assert outcome.extraction_version is None
        assert len(run_logger.errors) == 1

    def test_unexpected_error_becomes_failed_outcome(self, rule_verifier, run_logger):
        outcome = TuitionPipeline(BrokenExtractor(), rule_verifier, run_logger=run_logger).run(REQUEST)
        assert outcome.candidate.status == CandidateStatus.FAILED
        assert outcome.verification.status == VerificationStatus.FAILED
        assert not outcome.succeeded
        assert "extractor crashed" in outcome.verification.issues[0]


class TestPublicOperations:
    def test_extract_returns_final_candidate(self, pipeline, search_client):
        search_client.queue(success_result())
        candidate = pipeline.extract(SCHOOL, PROGRAM)
        assert candidate.status == CandidateStatus.SUCCESS

    def test_extract_blank_input(self, pipeline, search_client):
        candidate = pipeline.extract("   ", PROGRAM)
        assert candidate.status == CandidateStatus.FAILED
        assert candidate.failure_reason == "invalid_request"
        assert search_client.call_count == 0

    def test_extract_never_raises(self, rule_verifier, run_logger):
        candidate = TuitionPipeline(BrokenExtractor(), rule_verifier, run_logger=run_logger).extract(SCHOOL, PROGRAM)
        assert candidate.status == CandidateStatus.FAILED

    def test_verify_may_recommend_retry(self, pipeline):
        candidate = make_candidate(tuition_amount=36_000, cost_per_credit=500, total_credits=60)
        result = pipeline.verify(candidate, SCHOOL, PROGRAM)
        assert result.status == VerificationStatus.RETRY_RECOMMENDED
        assert result.retry_recommended

    def test_quota_reporting(self, pipeline, search_client):
        search_client.queue(success_result())
        pipeline.run(REQUEST)
        status = pipeline.get_quota_status()
        assert status.quota_date == TODAY
        assert status.used == 1
        assert [s.used for s in pipeline.get_quota_history(7)] == [1]

    def test_quota_reporting_without_guard(self, extractor, rule_verifier, run_logger):
        pipeline = TuitionPipeline(extractor, rule_verifier, run_logger=run_logger)
        assert pipeline.get_quota_status() is None
        assert pipeline.get_quota_history() == []


class TestPipelineOutcome:
    def test_corrected_candidate_is_new_object(self):
        candidate = make_candidate()
        outcome = PipelineOutcome(
            request=REQUEST,
            candidate=candidate,
            verification=VerificationResult(
                status=VerificationStatus.VERIFIED,
                confidence=candidate.confidence_score,
                corrections={"tuition_amount": 92_000, "unknown_field": 1},
            ),
        )
        assert outcome.corrected_candidate.tuition_amount == 92_000
        assert outcome.candidate.tuition_amount == 90_000

    def test_invalid_correction_ignored(self):
        candidate = make_candidate()
        outcome = PipelineOutcome(
            request=REQUEST,
            candidate=candidate,
            verification=VerificationResult(
                status=VerificationStatus.VERIFIED,
                confidence=candidate.confidence_score,
                corrections={"program_length_months": "about two years", "tuition_amount": 92_000},
            ),
        )
        corrected = outcome.corrected_candidate
        assert corrected.tuition_amount == 92_000
        assert corrected.program_length_months == candidate.program_length_months


# ─── Batch ────────────────────────────────────────────────────────────────────


class TestRunBatch:
    def test_results_in_request_order(self, pipeline, search_client):
        programs = ["Executive MBA", "Full-Time MBA", "Part-Time MBA", "MS Finance", "Online MBA"]
        requests = [ExtractionRequest(school=SCHOOL, program=p) for p in programs]
        search_client.queue(*[success_result() for _ in requests])

        outcomes = pipeline.run_batch(requests, batch_size=3)

        assert [o.request for o in outcomes] == requests
        assert all(o.succeeded for o in outcomes)
        assert pipeline.get_quota_status().used == 5

    def test_empty_batch(self, pipeline):
        assert pipeline.run_batch([]) == []

    def test_abort_skips_pending_requests(self, extractor, rule_verifier, search_client, run_logger):
        aborting = AbortingExtractor(extractor)
        pipeline = TuitionPipeline(aborting, rule_verifier, run_logger=run_logger)
        aborting.pipeline = pipeline
        search_client.queue(success_result())
        requests = [ExtractionRequest(school=SCHOOL, program=f"Program {i}") for i in range(4)]

        outcomes = pipeline.run_batch(requests, batch_size=1)

        assert len(outcomes) == 1
        assert outcomes[0].request == requests[0]
        assert search_client.call_count == 1

    def test_interrupt_stops_queued_requests(self, extractor, rule_verifier, search_client, run_logger):
        interrupting = InterruptingExtractor(extractor)
        pipeline = TuitionPipeline(interrupting, rule_verifier, run_logger=run_logger)
        search_client.queue(*[success_result() for _ in range(6)])
        requests = [ExtractionRequest(school=SCHOOL, program=f"Program {i}") for i in range(6)]

        with pytest.raises(KeyboardInterrupt):
            pipeline.run_batch(requests, batch_size=1)

        assert interrupting.calls <= 2
        assert pipeline.abort() == 0
        assert pipeline.last_batch_stats["total_submitted"] >= 1

    def test_abort_without_batch(self, pipeline):
        assert pipeline.abort() == 0


# ─── Construction ─────────────────────────────────────────────────────────────


class TestFromConfig:
    def test_rule_only_without_persistence(self, run_logger):
        config = PipelineConfig(
            api_key="test-key", ai_verification=False, persist_results=False, cache_verifications=False, batch_size=4
        )
        pipeline = TuitionPipeline.from_config(config, quota_repository=InMemoryQuotaRepository(), run_logger=run_logger)

        assert pipeline.result_repository is None
        assert not pipeline.verifier.uses_ai
        assert pipeline.batch_size == 4
        assert pipeline.extractor.client.timeout_seconds == config.extraction_timeout

    def test_ai_verification_wired(self, run_logger):
        config = PipelineConfig(api_key="test-key", persist_results=False, cache_verifications=False)
        pipeline = TuitionPipeline.from_config(config, quota_repository=InMemoryQuotaRepository(), run_logger=run_logger)

        assert pipeline.verifier.uses_ai
        assert pipeline.verifier.cross_verifier.client.timeout_seconds == config.verification_timeout
        assert pipeline.verifier.cross_verifier.quota_guard is pipeline.quota_guard
