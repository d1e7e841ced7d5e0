"""Tests for the Confidence Scorer and Status Resolver.

Short-circuits + rule-only resolution + bounded lattice merge of the AI verdict.
"""

import pytest

from tests.conftest import CURRENT_YEAR, PROGRAM, SCHOOL, make_candidate
from tuition_pipeline.models.extraction import CandidateStatus, Confidence
from tuition_pipeline.models.verification import (
    AIVerdict,
    ConfidenceAdjustment,
    VerificationResult,
    VerificationStatus,
)
from tuition_pipeline.validators.math_validator import run_rule_checks
from tuition_pipeline.verification.resolver import (
    build_reasoning,
    derive_alternative_query,
    escalate_status,
    fallback_search_query,
    merge_ai_verdict,
    program_variations,
    resolve_rule_verdict,
    resolve_short_circuit,
    step_confidence,
)


def _rule_result(candidate=None, has_official_source=True) -> VerificationResult:
    candidate = candidate or make_candidate()
    return resolve_rule_verdict(
        candidate,
        run_rule_checks(candidate, CURRENT_YEAR),
        SCHOOL,
        PROGRAM,
        has_official_source=has_official_source,
        current_year=CURRENT_YEAR,
    )


def _merge(base: VerificationResult, verdict) -> VerificationResult:
    return merge_ai_verdict(base, verdict, SCHOOL, PROGRAM, CURRENT_YEAR)


def _verdict(**overrides) -> AIVerdict:
    defaults = dict(
        verification_status=VerificationStatus.VERIFIED,
        confidence_adjustment=ConfidenceAdjustment.MAINTAIN,
        key_finding=None,
        source_supports_data=True,
    )
    defaults.update(overrides)
    return AIVerdict(**defaults)


# ─── Lattice helpers ──────────────────────────────────────────────────────────


class TestStepConfidence:
    @pytest.mark.parametrize(
        "start, adjustment, expected",
        [
            (Confidence.LOW, ConfidenceAdjustment.INCREASE, Confidence.MEDIUM),
            (Confidence.MEDIUM, ConfidenceAdjustment.INCREASE, Confidence.HIGH),
            (Confidence.HIGH, ConfidenceAdjustment.INCREASE, Confidence.HIGH),
            (Confidence.HIGH, ConfidenceAdjustment.DECREASE, Confidence.MEDIUM),
            (Confidence.MEDIUM, ConfidenceAdjustment.DECREASE, Confidence.LOW),
            (Confidence.LOW, ConfidenceAdjustment.DECREASE, Confidence.LOW),
            (Confidence.MEDIUM, ConfidenceAdjustment.MAINTAIN, Confidence.MEDIUM),
        ],
    )
    def test_one_step_clamped(self, start, adjustment, expected):
        assert step_confidence(start, adjustment) == expected


class TestEscalateStatus:
    def test_only_moves_up(self):
        assert escalate_status(VerificationStatus.VERIFIED, VerificationStatus.NEEDS_REVIEW) == (
            VerificationStatus.NEEDS_REVIEW
        )
        assert escalate_status(VerificationStatus.RETRY_RECOMMENDED, VerificationStatus.VERIFIED) == (
            VerificationStatus.RETRY_RECOMMENDED
        )
        assert escalate_status(VerificationStatus.NEEDS_REVIEW, VerificationStatus.NEEDS_REVIEW) == (
            VerificationStatus.NEEDS_REVIEW
        )


class TestBuildReasoning:
    def test_full_string(self):
        text = build_reasoning(VerificationStatus.NEEDS_REVIEW, Confidence.MEDIUM, 72, 2, 5)
        assert text == (
            "Data requires manual review due to minor issues. Confidence: Medium. "
            "Data completeness: 72% (good). Issues: 2 found. Validations: 5 passed."
        )

    @pytest.mark.parametrize("score, label", [(80, "excellent"), (79, "good"), (60, "good"), (59, "needs improvement")])
    def test_completeness_buckets(self, score, label):
        assert f"({label})" in build_reasoning(VerificationStatus.VERIFIED, Confidence.HIGH, score, 0, 0)

    def test_zero_counts_omitted(self):
        text = build_reasoning(VerificationStatus.VERIFIED, Confidence.HIGH, 100, 0, 0)
        assert "Issues" not in text
        assert "Validations" not in text


# ─── Queries ──────────────────────────────────────────────────────────────────


class TestQueries:
    def test_fallback_query(self):
        assert fallback_search_query("Yale University", "MBA") == '"Yale University" "MBA" tuition fees official site:.edu'

    def test_variations_direct_and_partial(self):
        assert program_variations("Part-Time MBA")[0] == "Professional MBA"
        assert program_variations("Kellogg Executive MBA")[0] == "EMBA"
        assert program_variations("Master of Fine Arts") == []

    def test_derived_query_uses_variation_and_year(self):
        query = derive_alternative_query(SCHOOL, "Executive MBA", current_year=2025)
        assert query == '"Northwestern University" ("Executive MBA" OR "EMBA") tuition 2025-2026 site:.edu'

    def test_derived_query_without_variation(self):
        query = derive_alternative_query("Juilliard", "Master of Music", current_year=2025)
        assert query == '"Juilliard" "Master of Music" tuition 2025-2026 site:.edu'


# ─── Short-circuits ───────────────────────────────────────────────────────────


class TestResolveShortCircuit:
    def test_not_found_is_verified_low_no_retry(self):
        """Whatever else the candidate holds, Not Found resolves to verified / Low / no retry."""
        candidate = make_candidate(status=CandidateStatus.NOT_FOUND, tuition_amount=1, academic_year="1999")
        result = resolve_short_circuit(candidate, SCHOOL, PROGRAM)
        assert result.status == VerificationStatus.VERIFIED
        assert result.confidence == Confidence.LOW
        assert result.retry_recommended is False
        assert result.issues == ["Program not found at this school"]

    def test_failed_recommends_strict_retry(self):
        candidate = make_candidate(status=CandidateStatus.FAILED, failure_reason="timeout")
        result = resolve_short_circuit(candidate, SCHOOL, PROGRAM)
        assert result.status == VerificationStatus.FAILED
        assert result.retry_recommended
        assert result.suggested_search_query == fallback_search_query(SCHOOL, PROGRAM)
        assert result.issue_codes == ["timeout"]

    @pytest.mark.parametrize("status", [CandidateStatus.SUCCESS, CandidateStatus.PENDING])
    def test_other_statuses_fall_through(self, status):
        assert resolve_short_circuit(make_candidate(status=status), SCHOOL, PROGRAM) is None


# ─── Rule-only resolution ─────────────────────────────────────────────────────


class TestResolveRuleVerdict:
    def test_clean_candidate_verified(self):
        result = _rule_result()
        assert result.status == VerificationStatus.VERIFIED
        assert result.confidence == Confidence.HIGH
        assert not result.retry_recommended
        assert result.suggested_search_query is None
        assert result.completeness_score == 100

    def test_soft_issue_needs_review(self):
        result = _rule_result(make_candidate(tuition_amount=33_000, cost_per_credit=500))
        assert result.status == VerificationStatus.NEEDS_REVIEW
        assert not result.retry_recommended

    def test_hard_failure_recommends_retry(self):
        result = _rule_result(make_candidate(tuition_amount=36_000, cost_per_credit=500))
        assert result.status == VerificationStatus.RETRY_RECOMMENDED
        assert result.retry_recommended
        assert "2025-2026" in result.suggested_search_query
        assert "MathInconsistency" in result.issue_codes

    def test_three_soft_issues_recommend_retry(self):
        """Aggregate issue count >= 3 forces a retry even when every check passes."""
        candidate = make_candidate(
            tuition_amount=350_000, cost_per_credit=6_000, total_credits=58, program_length=None
        )
        result = _rule_result(candidate)
        assert len(result.issues) == 3
        assert run_rule_checks(candidate, CURRENT_YEAR).passed
        assert result.status == VerificationStatus.RETRY_RECOMMENDED

    def test_no_official_source_lowers_confidence(self):
        result = _rule_result(has_official_source=False)
        assert result.confidence == Confidence.MEDIUM
        assert result.status == VerificationStatus.VERIFIED


# ─── AI merge ─────────────────────────────────────────────────────────────────


class TestMergeAIVerdict:
    def test_none_keeps_rule_result(self):
        base = _rule_result()
        assert _merge(base, None) is base

    def test_cannot_downgrade_status(self):
        """AI says verified, rules said needs_review → stays needs_review."""
        base = _rule_result(make_candidate(tuition_amount=33_000, cost_per_credit=500))
        merged = _merge(base, _verdict(verification_status=VerificationStatus.VERIFIED))
        assert merged.status == VerificationStatus.NEEDS_REVIEW
        assert merged.ai_verification_used

    def test_escalation_to_retry_uses_ai_query(self):
        base = _rule_result()
        merged = _merge(
            base,
            _verdict(
                verification_status=VerificationStatus.RETRY_RECOMMENDED,
                alternative_search_query='"Kellogg" EMBA tuition',
            ),
        )
        assert merged.status == VerificationStatus.RETRY_RECOMMENDED
        assert merged.retry_recommended
        assert merged.suggested_search_query == '"Kellogg" EMBA tuition'

    def test_escalation_without_ai_query_derives_one(self):
        base = _rule_result()
        merged = _merge(base, _verdict(verification_status=VerificationStatus.RETRY_RECOMMENDED))
        assert merged.retry_recommended
        assert merged.suggested_search_query == derive_alternative_query(SCHOOL, PROGRAM, CURRENT_YEAR)

    def test_escalation_from_needs_review_derives_query(self):
        base = _rule_result(make_candidate(tuition_amount=33_000, cost_per_credit=500))
        assert base.status == VerificationStatus.NEEDS_REVIEW
        assert base.suggested_search_query is None
        merged = _merge(base, _verdict(verification_status=VerificationStatus.RETRY_RECOMMENDED))
        assert merged.retry_recommended
        assert merged.suggested_search_query

    def test_rule_query_kept_when_ai_has_none(self):
        base = _rule_result(make_candidate(tuition_amount=36_000, cost_per_credit=500, total_credits=60))
        merged = _merge(base, _verdict(verification_status=VerificationStatus.RETRY_RECOMMENDED))
        assert merged.suggested_search_query == base.suggested_search_query

    def test_merged_result_is_validated(self):
        merged = _merge(_rule_result(), _verdict(verification_status=VerificationStatus.RETRY_RECOMMENDED))
        assert VerificationResult.model_validate(merged.model_dump()) == merged

    def test_confidence_moves_one_step(self):
        base = _rule_result(has_official_source=False)  # Medium
        up = _merge(base, _verdict(confidence_adjustment=ConfidenceAdjustment.INCREASE))
        down = _merge(base, _verdict(confidence_adjustment=ConfidenceAdjustment.DECREASE))
        assert up.confidence == Confidence.HIGH
        assert down.confidence == Confidence.LOW

    def test_key_finding_routing(self):
        base = _rule_result()
        supported = _merge(base, _verdict(key_finding="Matches the bursar page.", source_supports_data=True))
        unsupported = _merge(base, _verdict(key_finding="Page shows 2023 rates.", source_supports_data=False))
        assert "AI verification: Matches the bursar page." in supported.validations
        assert "AI verification: Page shows 2023 rates." in unsupported.issues
        assert len(unsupported.issues) == len(base.issues) + 1

    def test_rule_findings_preserved(self):
        base = _rule_result(make_candidate(tuition_amount=33_000, cost_per_credit=500))
        merged = _merge(base, _verdict())
        assert merged.issues[: len(base.issues)] == base.issues
        assert merged.validations[: len(base.validations)] == base.validations

    def test_corrections_carried(self):
        merged = _merge(_rule_result(), _verdict(suggested_correction={"tuition_amount": 92_000}))
        assert merged.corrections == {"tuition_amount": 92_000}

    def test_reasoning_rebuilt(self):
        base = _rule_result()
        merged = _merge(base, _verdict(verification_status=VerificationStatus.NEEDS_REVIEW))
        assert merged.reasoning.startswith("Data requires manual review")


class TestAIVerdictSchema:
    def test_failed_status_rejected(self):
        assert AIVerdict.from_response({"verification_status": "failed"}) is None

    def test_unknown_status_rejected(self):
        assert AIVerdict.from_response({"verification_status": "looks good"}) is None

    def test_non_dict_rejected(self):
        assert AIVerdict.from_response(["verified"]) is None

    def test_blank_query_is_none(self):
        verdict = AIVerdict.from_response({"verification_status": "verified", "alternative_search_query": "  "})
        assert verdict.alternative_search_query is None
