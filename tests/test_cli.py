"""Tests for CLI target parsing and rendering."""

import pytest

from tests.conftest import make_candidate
from tuition_pipeline.cli import display_outcomes, parse_targets
from tuition_pipeline.models.extraction import ExtractionRequest
from tuition_pipeline.models.verification import VerificationResult, VerificationStatus
from tuition_pipeline.pipeline.pipeline import PipelineOutcome


class TestParseTargets:
    def test_pairs_parsed(self):
        lines = [
            "# school | program",
            "",
            "Northwestern University | Executive MBA",
            "  Duke University|Weekend MBA  ",
        ]
        assert parse_targets(lines) == [
            ExtractionRequest(school="Northwestern University", program="Executive MBA"),
            ExtractionRequest(school="Duke University", program="Weekend MBA"),
        ]

    def test_missing_separator(self):
        with pytest.raises(ValueError, match="line 2"):
            parse_targets(["Yale | MBA", "Stanford MBA"])

    def test_blank_program(self):
        with pytest.raises(ValueError, match="line 1"):
            parse_targets(["Yale |   "])


class TestDisplayOutcomes:
    def test_renders_without_error(self, capsys):
        outcome = PipelineOutcome(
            request=ExtractionRequest(school="Northwestern University", program="Executive MBA"),
            candidate=make_candidate(),
            verification=VerificationResult(
                status=VerificationStatus.NEEDS_REVIEW,
                confidence=make_candidate().confidence_score,
                issues=["Minor discrepancy"],
                completeness_score=92,
            ),
            retry_count=1,
        )
        display_outcomes([outcome], verbose=True)
        out = capsys.readouterr().out
        assert "Extraction Summary" in out
        assert "Minor discrepancy" in out
