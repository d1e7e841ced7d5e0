"""Shared fixtures for tuition_pipeline tests.

Gemini and the database are replaced with in-memory fakes, so the suite
needs neither network access nor a running DoltDB.
"""

import json
import threading
from datetime import date, datetime, timezone

import pytest

from tuition_pipeline.agents.cross_verifier import CrossVerifier
from tuition_pipeline.agents.extractor_agent import ExtractorAgent
from tuition_pipeline.agents.gemini_search import SearchGroundingResult
from tuition_pipeline.models.extraction import (
    CandidateStatus,
    Confidence,
    ExtractionCandidate,
    SourceClassification,
    ValidatedSource,
)
from tuition_pipeline.models.grounding import GroundingChunk, GroundingMetadata, GroundingSupport
from tuition_pipeline.services.quota_guard import QuotaGuard
from tuition_pipeline.utils.logger import PipelineLogger
from tuition_pipeline.verification.verifier import Verifier

CURRENT_YEAR = 2025
TODAY = date(2025, 10, 1)
SCHOOL = "Northwestern University"
PROGRAM = "Executive MBA"
OFFICIAL_URL = "https://www.kellogg.northwestern.edu/programs/executive-mba/tuition"


def no_sleep(_seconds: float) -> None:
    pass


# ─── Gemini fakes ─────────────────────────────────────────────────────────────


def make_result(text: str, chunks=(), supports=(), cost_usd: float = 0.002) -> SearchGroundingResult:
    """Build a SearchGroundingResult the way GeminiSearchClient returns it."""
    return SearchGroundingResult(
        text=text,
        grounding_metadata=GroundingMetadata(
            grounding_chunks=list(chunks),
            grounding_supports=list(supports),
        ),
        model="gemini-2.5-flash",
        input_tokens=1200,
        output_tokens=300,
        cost_usd=cost_usd,
    )


def extraction_json(**overrides) -> str:
    """A well-formed extractor response for a complete, internally consistent program."""
    data = {
        "tuition_amount": "$90,000",
        "tuition_period": "full program",
        "academic_year": f"{CURRENT_YEAR}-{CURRENT_YEAR + 1}",
        "cost_per_credit": "$1,500",
        "total_credits": "60",
        "program_length": "2 years",
        "program_length_months": 24,
        "actual_program_name": "Kellogg Executive MBA",
        "is_stem": False,
        "additional_fees": "$1,200",
        "remarks": "Includes residential weeks",
        "status": "Success",
    }
    data.update(overrides)
    return json.dumps(data)


def official_grounding():
    """One official Kellogg source with enough supporting text to become raw content."""
    chunks = [GroundingChunk(uri=OFFICIAL_URL, title="kellogg.northwestern.edu", domain="kellogg.northwestern.edu")]
    supports = [
        GroundingSupport(
            segment_text="Total tuition for the Kellogg Executive MBA is $90,000 for the 2025-2026 academic year.",
            start_index=0,
            end_index=86,
            grounding_chunk_indices=[0],
        )
    ]
    return chunks, supports


def success_result(**overrides) -> SearchGroundingResult:
    chunks, supports = official_grounding()
    return make_result(extraction_json(**overrides), chunks, supports)


def verdict_json(**overrides) -> str:
    data = {
        "verification_status": "verified",
        "confidence_adjustment": "maintain",
        "key_finding": "Source page states the same total tuition.",
        "source_supports_data": True,
        "suggested_correction": None,
        "alternative_search_query": None,
    }
    data.update(overrides)
    return json.dumps(data)


class FakeGeminiClient:
    """
    Stands in for GeminiSearchClient.

    Queued items are returned in order by search() and generate(); queued
    exceptions are raised instead. An empty queue fails the test.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.search_prompts: list[str] = []
        self.generate_prompts: list[str] = []
        self._lock = threading.Lock()

    def queue(self, *items) -> "FakeGeminiClient":
        self.responses.extend(items)
        return self

    @property
    def call_count(self) -> int:
        return len(self.search_prompts) + len(self.generate_prompts)

    def _next(self):
        with self._lock:
            if not self.responses:
                raise AssertionError("unexpected Gemini call")
            item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def search(self, query, system_prompt=None, temperature=0.1, max_output_tokens=2048):
        with self._lock:
            self.search_prompts.append(query)
        return self._next()

    def generate(self, prompt, system_prompt=None, temperature=0.1, max_output_tokens=2048):
        with self._lock:
            self.generate_prompts.append(prompt)
        return self._next()


# ─── Repository fakes ─────────────────────────────────────────────────────────


class InMemoryQuotaRepository:
    """QuotaRepository with the same conditional-increment semantics."""

    def __init__(self):
        self.rows: dict[date, dict] = {}
        self.unavailable = False
        self._lock = threading.Lock()

    def reserve(self, quota_date: date, limit: int) -> int | None:
        if self.unavailable:
            raise ConnectionError("quota store unreachable")
        with self._lock:
            row = self.rows.setdefault(
                quota_date,
                {"quota_date": quota_date, "used": 0, "quota_limit": limit, "last_used_at": None},
            )
            if row["used"] >= limit:
                return None
            row["used"] += 1
            row["quota_limit"] = limit
            row["last_used_at"] = datetime.now(timezone.utc)
            return row["used"]

    def get(self, quota_date: date) -> dict | None:
        if self.unavailable:
            raise ConnectionError("quota store unreachable")
        row = self.rows.get(quota_date)
        return dict(row) if row else None

    def history(self, days: int = 30) -> list[dict]:
        return [dict(self.rows[d]) for d in sorted(self.rows, reverse=True)[:days]]

    def reset(self, quota_date: date) -> None:
        if quota_date in self.rows:
            self.rows[quota_date]["used"] = 0


class InMemoryResultRepository:
    """ExtractionResultRepository that keeps rows in a list."""

    def __init__(self):
        self.rows: list[dict] = []
        self._lock = threading.Lock()

    def next_version(self, school: str, program: str) -> int:
        versions = [r["extraction_version"] for r in self.rows if r["school"] == school and r["program"] == program]
        return max(versions, default=0) + 1

    def save_attempt(self, school, program, candidate, verification, retry_count, extraction_version) -> str:
        with self._lock:
            row_id = f"row-{len(self.rows) + 1}"
            self.rows.append(
                {
                    "id": row_id,
                    "school": school,
                    "program": program,
                    "status": candidate.status.value,
                    "verification_status": verification.status.value if verification else None,
                    "retry_count": retry_count,
                    "extraction_version": extraction_version,
                }
            )
        return row_id


class InMemoryCacheRepository:
    """VerificationCacheRepository without expiry."""

    def __init__(self):
        self.entries: dict[str, dict] = {}
        self.reads = 0

    def get_valid(self, content_hash: str, ttl_days: int) -> dict | None:
        self.reads += 1
        entry = self.entries.get(content_hash)
        return entry["result"] if entry else None

    def upsert(self, content_hash: str, school: str, program: str, result: dict) -> None:
        self.entries[content_hash] = {"school": school, "program": program, "result": result}


# ─── Candidate builders ───────────────────────────────────────────────────────


def official_source(url: str = OFFICIAL_URL) -> ValidatedSource:
    return ValidatedSource(
        url=url,
        title="kellogg.northwestern.edu",
        domain="kellogg.northwestern.edu",
        classification=SourceClassification.OFFICIAL,
    )


def make_candidate(**overrides) -> ExtractionCandidate:
    """Build a complete, consistent Success candidate; override any field."""
    defaults = dict(
        tuition_amount=90_000,
        tuition_period="full program",
        academic_year=f"{CURRENT_YEAR}-{CURRENT_YEAR + 1}",
        cost_per_credit=1_500,
        total_credits=60,
        program_length="2 years",
        program_length_months=24,
        actual_program_name="Kellogg Executive MBA",
        is_stem=False,
        additional_fees="$1,200",
        remarks="Includes residential weeks",
        source_url=OFFICIAL_URL,
        validated_sources=(official_source(),),
        raw_content="Total tuition for the Kellogg Executive MBA is $90,000 for the 2025-2026 academic year.",
        status=CandidateStatus.SUCCESS,
        confidence_score=Confidence.HIGH,
    )
    defaults.update(overrides)
    return ExtractionCandidate(**defaults)


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def quota_repo():
    return InMemoryQuotaRepository()


@pytest.fixture
def quota_guard(quota_repo):
    return QuotaGuard(quota_repo, limit=100, today=lambda: TODAY)


@pytest.fixture
def search_client():
    return FakeGeminiClient()


@pytest.fixture
def verify_client():
    return FakeGeminiClient()


@pytest.fixture
def extractor(search_client, quota_guard):
    return ExtractorAgent(search_client, quota_guard=quota_guard, sleep=no_sleep, current_year=lambda: CURRENT_YEAR)


@pytest.fixture
def cross_verifier(verify_client, quota_guard):
    return CrossVerifier(verify_client, quota_guard=quota_guard, max_retries=0, sleep=no_sleep)


@pytest.fixture
def rule_verifier():
    """Verifier with the AI cross-check disabled."""
    return Verifier(current_year=CURRENT_YEAR)


@pytest.fixture
def run_logger():
    return PipelineLogger(name="tuition_pipeline.tests", log_level="DEBUG")
