"""Tests for Gemini response handling: JSON recovery, error classification, backoff."""

import httpx
import pytest

from tuition_pipeline.agents.gemini_search import (
    _repair_truncated_json,
    call_with_backoff,
    extract_json_from_response,
    is_retryable_error,
    is_timeout_error,
    parse_json_object,
)
from tuition_pipeline.errors import ExtractionError, ExtractionParseError, ExtractionTimeout, QuotaExceeded

# ─── JSON extraction ──────────────────────────────────────────────────────────


class TestExtractJson:
    def test_plain(self):
        assert extract_json_from_response('{"a": 1}') == '{"a": 1}'

    def test_markdown_block(self):
        text = 'Result:\n```json\n{"status": "Success"}\n```\nDone.'
        assert extract_json_from_response(text) == '{"status": "Success"}'

    def test_trailing_content(self):
        text = '{"tuition_amount": "$90,000"} Let me know if you need more.'
        assert extract_json_from_response(text) == '{"tuition_amount": "$90,000"}'

    def test_braces_inside_strings(self):
        text = '{"remarks": "see {note}", "n": 1}'
        assert parse_json_object(text) == {"remarks": "see {note}", "n": 1}

    def test_no_json(self):
        assert extract_json_from_response("No data found.") is None
        assert extract_json_from_response("") is None

    def test_truncated_response_repaired(self):
        text = '{"tuition_amount": "$90,000", "academic_year": "2025-2026", "remarks": "Includes resid'
        assert parse_json_object(text) == {"tuition_amount": "$90,000", "academic_year": "2025-2026"}


class TestRepairTruncatedJson:
    def test_closes_nested_object(self):
        repaired = _repair_truncated_json('{"a": {"b": 1}, "c": [1, 2')
        assert repaired == '{"a": {"b": 1}}'

    def test_nothing_complete(self):
        assert _repair_truncated_json('{"a": "unterminated') is None


class TestParseJsonObject:
    def test_array_rejected(self):
        assert parse_json_object("[1, 2, 3]") is None

    def test_none_input(self):
        assert parse_json_object(None) is None


# ─── Error classification ─────────────────────────────────────────────────────


class TestErrorClassification:
    @pytest.mark.parametrize(
        "error",
        [
            ExtractionError("Gemini search failed: 429 RESOURCE_EXHAUSTED"),
            ExtractionError("Gemini search failed: 503 UNAVAILABLE"),
            ExtractionError("Gemini search failed: 500 INTERNAL"),
            ExtractionTimeout("Gemini search timed out after 60s"),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            ExtractionError("Gemini search failed: 400 INVALID_ARGUMENT"),
            ExtractionParseError("no JSON", raw_text="..."),
            QuotaExceeded(10, 10),
        ],
    )
    def test_not_retryable(self, error):
        assert not is_retryable_error(error)

    def test_timeout_detection(self):
        assert is_timeout_error(httpx.ReadTimeout("read timed out"))
        assert is_timeout_error(TimeoutError())
        assert is_timeout_error(Exception("504 DEADLINE_EXCEEDED"))
        assert not is_timeout_error(Exception("400 INVALID_ARGUMENT"))


# ─── Backoff ──────────────────────────────────────────────────────────────────


class TestCallWithBackoff:
    def _flaky(self, failures, error):
        calls = {"n": 0}

        def fn():
            calls["n"] += 1
            if calls["n"] <= failures:
                raise error
            return "ok"

        return fn, calls

    def test_succeeds_after_transient_errors(self):
        sleeps = []
        fn, calls = self._flaky(2, ExtractionError("503 UNAVAILABLE"))
        assert call_with_backoff(fn, context="test", max_retries=3, sleep=sleeps.append) == "ok"
        assert calls["n"] == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_capped(self):
        sleeps = []
        fn, _ = self._flaky(5, ExtractionTimeout("timed out"))
        assert call_with_backoff(fn, context="test", max_retries=5, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_gives_up_and_reraises(self):
        sleeps = []
        fn, calls = self._flaky(10, ExtractionTimeout("timed out"))
        with pytest.raises(ExtractionTimeout):
            call_with_backoff(fn, context="test", max_retries=2, sleep=sleeps.append)
        assert calls["n"] == 3

    def test_non_retryable_raised_immediately(self):
        sleeps = []
        fn, calls = self._flaky(1, QuotaExceeded(5, 5))
        with pytest.raises(QuotaExceeded):
            call_with_backoff(fn, context="test", max_retries=3, sleep=sleeps.append)
        assert calls["n"] == 1
        assert sleeps == []
