"""
Extractor Agent: one search-grounded Gemini request per attempt.

Turns the grounded response into an ExtractionCandidate:

- JSON with status "Not Found" (or an explicit "not offered" remark) -> Not Found
- Timeout or API error -> Failed (failure_reason timeout / api_error)
- No well-formed JSON object -> Failed (parse_error), raw text kept verbatim
- Quota denied -> Failed (quota_exceeded), no call made
- Otherwise -> Success with parsed fields, classified sources and raw content

extract() never raises.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

from ..constants import (
    API_MAX_RETRIES,
    CITATION_SNIPPET_LENGTH,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_SEARCH_QUERY,
    DEFAULT_TEMPERATURE,
    MIN_SOURCE_TEXT_LENGTH,
    RAW_CONTENT_MAX_LENGTH,
    SOURCE_CONTENT_MAX_LENGTH,
)
from ..errors import ExtractionError, ExtractionParseError, QuotaExceeded
from ..models.extraction import CandidateStatus, Confidence, ExtractionCandidate, Source
from ..models.grounding import GroundingMetadata, InlineCitation
from ..utils.text import (
    is_missing,
    parse_currency,
    parse_program_length_months,
    sanitize_for_storage,
    sanitize_prompt_input,
    strip_total_suffix,
)
from ..utils.url_helpers import build_search_url, normalize_base_url, resolve_google_redirect
from ..validators.source_validator import SourceReport, validate_sources
from .gemini_search import GeminiSearchClient, SearchGroundingResult, call_with_backoff, parse_json_object

logger = logging.getLogger(__name__)

NOT_FOUND_REMARK = "Program not found at this school."
_NOT_OFFERED_RE = re.compile(
    r"\b(not (?:found|offered|available)|no longer offered|discontinued|does not offer)\b",
    re.IGNORECASE,
)

EXTRACTION_PROMPT = """
Find tuition and fees for the "{program}" program at "{school}" on the official .edu website.

SEARCH QUERY: {search_query}

SEARCH STRATEGY:
1. Find the official school or business school website (e.g., wharton.upenn.edu, kellogg.northwestern.edu)
2. Look for the "Tuition & Fees", "Cost", or "Financial Aid" page for the specific program
3. ONLY use data from official .edu university/business school websites

IGNORE these sources completely: clearadmit, poets&quants, shiksha, collegechoice, usnews, bloomberg, fortune, any non-.edu site

PROGRAM NAME VARIATIONS:
- "Part-Time MBA" may be called: Professional MBA, Weekend MBA, Evening MBA, Flex MBA, Working Professional MBA
- "Executive MBA" may be called: EMBA, Exec MBA
- "Full-Time MBA" may be called: Two-Year MBA, Residential MBA, Traditional MBA

EXTRACTION RULES:
- tuition_amount = TOTAL PROGRAM TUITION (cost_per_credit × total_credits, or stated total)
- Do NOT include the word "total" in tuition_amount - just "$XX,XXX"
- TUITION ONLY - exclude fees (technology, student services, health) from tuition_amount
- Put fees in additional_fees separately
- academic_year = use {current_year}-{next_year} rates if available, otherwise the most current year
- program_length_months = a NUMBER of months ("2 years" -> 24, "18 months" -> 18)
- If the program is not offered or not found on an official .edu site, set status="Not Found"

OUTPUT - Return ONLY valid JSON, no markdown, no explanation:
{{"tuition_amount":"$XX,XXX","tuition_period":"full program","academic_year":"{current_year}-{next_year}","cost_per_credit":"$X,XXX","total_credits":"XX","program_length":"2 years","program_length_months":24,"actual_program_name":"exact name from website","is_stem":false,"additional_fees":"$X,XXX or null","remarks":"any notable info","status":"Success"}}
"""


def build_extraction_prompt(school: str, program: str, search_query: str, current_year: int) -> str:
    return EXTRACTION_PROMPT.format(
        school=school,
        program=program,
        search_query=search_query,
        current_year=current_year,
        next_year=current_year + 1,
    )


def _truncate(text: str, limit: int, note: str) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n\n... [content truncated - {note}]"


class ExtractorAgent:
    """
    Grounded tuition extraction for one (school, program) pair.

    Usage:
        agent = ExtractorAgent(GeminiSearchClient(), quota_guard=guard)
        candidate = agent.extract("Northwestern University", "Executive MBA")
    """

    def __init__(
        self,
        client: GeminiSearchClient,
        quota_guard=None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        max_retries: int = API_MAX_RETRIES,
        sleep: Optional[Callable[[float], None]] = None,
        current_year: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            client: Gemini client (search grounding)
            quota_guard: QuotaGuard consulted before every call, including backoff retries
            temperature: Sampling temperature
            max_output_tokens: Response token cap
            max_retries: Backoff retries for transient API errors
            sleep: Sleep function for backoff (tests pass a no-op)
            current_year: Clock for the academic year hint in the prompt
        """
        self.client = client
        self.quota_guard = quota_guard
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.max_retries = max_retries
        self._sleep = sleep
        self._current_year = current_year or (lambda: datetime.now(timezone.utc).year)

    def extract(
        self,
        school: str,
        program: str,
        refined_query: Optional[str] = None,
        attempt: int = 1,
    ) -> ExtractionCandidate:
        """
        Run one extraction attempt.

        Args:
            school: School name
            program: Program name
            refined_query: Search query from the retry controller (replaces the default)
            attempt: Attempt number recorded on the candidate

        Returns:
            ExtractionCandidate (never raises)
        """
        safe_school = sanitize_prompt_input(school, max_length=200)
        safe_program = sanitize_prompt_input(program, max_length=150)
        search_query = refined_query or DEFAULT_SEARCH_QUERY.format(school=safe_school, program=safe_program)
        prompt = build_extraction_prompt(safe_school, safe_program, search_query, self._current_year())

        logger.info(f"Extracting: {school} - {program} (attempt {attempt})")

        backoff_kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            result = call_with_backoff(
                lambda: self._guarded_search(prompt),
                context=f"extract:{school}",
                max_retries=self.max_retries,
                **backoff_kwargs,
            )
        except QuotaExceeded as e:
            logger.warning(f"Extraction skipped, quota exhausted: {school} - {program}")
            return self._failed(school, program, search_query, attempt, "quota_exceeded", str(e))
        except ExtractionError as e:
            logger.error(f"Extraction failed for {school} - {program}: {e}")
            return self._failed(school, program, search_query, attempt, e.reason, str(e), raw_text=e.raw_text)
        except Exception as e:
            logger.error(f"Unexpected extraction error for {school} - {program}: {e}", exc_info=True)
            return self._failed(school, program, search_query, attempt, "api_error", str(e))

        try:
            return self.parse_response(result, school, program, search_query, attempt)
        except ExtractionParseError as e:
            logger.warning(f"Unparseable extraction response for {school} - {program}: {e}")
            return self._failed(
                school,
                program,
                search_query,
                attempt,
                e.reason,
                str(e),
                raw_text=e.raw_text,
                cost_usd=result.cost_usd,
            )

    def _guarded_search(self, prompt: str) -> SearchGroundingResult:
        if self.quota_guard is not None:
            self.quota_guard.reserve_or_raise()
        return self.client.search(
            prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    def parse_response(
        self,
        result: SearchGroundingResult,
        school: str,
        program: str,
        search_query: str,
        attempt: int = 1,
    ) -> ExtractionCandidate:
        """
        Translate a grounded response into a candidate.

        Raises:
            ExtractionParseError: response text holds no JSON object (raw text attached)
        """
        data = parse_json_object(result.text)
        if data is None:
            raise ExtractionParseError("Response did not contain a JSON object", raw_text=result.text)

        if self._is_not_found(data):
            return self._not_found(data, school, program, search_query, attempt, result.cost_usd)

        report = self._build_sources(result.grounding_metadata, school)
        if not report.sources:
            logger.warning(f"No grounding sources returned for: {school} - {program}")

        tuition_text = strip_total_suffix(data.get("tuition_amount")) if data.get("tuition_amount") else None
        tuition = parse_currency(tuition_text)
        cost_per_credit = parse_currency(data.get("cost_per_credit"))
        total_credits = parse_currency(data.get("total_credits"))

        if tuition and cost_per_credit and total_credits:
            confidence = Confidence.HIGH
        elif not tuition:
            confidence = Confidence.LOW
        else:
            confidence = Confidence.MEDIUM

        candidate = ExtractionCandidate(
            tuition_amount=tuition,
            tuition_period=data.get("tuition_period"),
            academic_year=data.get("academic_year"),
            cost_per_credit=cost_per_credit,
            total_credits=total_credits,
            program_length=data.get("program_length"),
            program_length_months=parse_program_length_months(
                data.get("program_length_months"), data.get("program_length")
            ),
            actual_program_name=data.get("actual_program_name"),
            is_stem=data.get("is_stem"),
            additional_fees=data.get("additional_fees"),
            remarks=sanitize_for_storage(data.get("remarks")) if isinstance(data.get("remarks"), str) else None,
            source_url=report.primary_url or build_search_url(school, program),
            validated_sources=tuple(report.sources),
            inline_citations=tuple(self._inline_citations(result.grounding_metadata, report)),
            raw_content=self._raw_content(report, data, school, program, tuition_text),
            search_query=search_query,
            status=CandidateStatus.SUCCESS,
            confidence_score=confidence,
            attempt=attempt,
            cost_usd=result.cost_usd,
        )

        logger.info(
            f"Extracted {school} - {program}: tuition={candidate.tuition_amount} "
            f"sources={len(candidate.validated_sources)} official={len(candidate.official_sources)} "
            f"confidence={confidence.value}"
        )
        return candidate

    @staticmethod
    def _is_not_found(data: dict) -> bool:
        status = str(data.get("status") or "").strip().lower().replace("_", " ")
        if status in ("not found", "notfound", "not offered"):
            return True
        remarks = data.get("remarks")
        return is_missing(data.get("tuition_amount")) and isinstance(remarks, str) and bool(
            _NOT_OFFERED_RE.search(remarks)
        )

    def _not_found(
        self,
        data: dict,
        school: str,
        program: str,
        search_query: str,
        attempt: int,
        cost_usd: float,
    ) -> ExtractionCandidate:
        logger.info(f"Program not found: {school} - {program}")
        remarks = NOT_FOUND_REMARK
        model_remarks = data.get("remarks")
        if isinstance(model_remarks, str) and model_remarks.strip():
            remarks = f"{NOT_FOUND_REMARK} {sanitize_for_storage(model_remarks)}"
        return ExtractionCandidate(
            remarks=remarks,
            source_url=build_search_url(school, program),
            raw_content=NOT_FOUND_REMARK,
            search_query=search_query,
            status=CandidateStatus.NOT_FOUND,
            confidence_score=Confidence.LOW,
            attempt=attempt,
            cost_usd=cost_usd,
        )

    @staticmethod
    def _failed(
        school: str,
        program: str,
        search_query: str,
        attempt: int,
        reason: str,
        message: str,
        raw_text: Optional[str] = None,
        cost_usd: float = 0.0,
    ) -> ExtractionCandidate:
        # Parse failures keep the response verbatim; it is the only audit trail.
        raw_content = raw_text if raw_text is not None else f"Failed to extract data: {message}"
        return ExtractionCandidate(
            source_url=build_search_url(school, program),
            raw_content=raw_content,
            search_query=search_query,
            status=CandidateStatus.FAILED,
            confidence_score=Confidence.LOW,
            failure_reason=reason,
            remarks=message,
            attempt=attempt,
            cost_usd=cost_usd,
        )

    @staticmethod
    def _build_sources(metadata: GroundingMetadata, school: str) -> SourceReport:
        sources = []
        for index, chunk in enumerate(metadata.grounding_chunks):
            if not chunk.uri:
                continue
            text = metadata.supporting_text(index)
            if len(text) <= MIN_SOURCE_TEXT_LENGTH:
                text = None
            else:
                text = sanitize_for_storage(
                    _truncate(text, SOURCE_CONTENT_MAX_LENGTH, f"showing first {SOURCE_CONTENT_MAX_LENGTH:,} characters")
                )
            sources.append(
                Source(
                    url=resolve_google_redirect(chunk.uri),
                    title=chunk.title or "Official Source",
                    domain=chunk.domain,
                    raw_content=text,
                )
            )
        return validate_sources(sources, school)

    @staticmethod
    def _inline_citations(metadata: GroundingMetadata, report: SourceReport) -> list[InlineCitation]:
        """Map grounding supports to indices in the validated source list."""
        position = {normalize_base_url(source.url): i for i, source in enumerate(report.sources)}
        chunk_to_source = {}
        for index, chunk in enumerate(metadata.grounding_chunks):
            if chunk.uri:
                key = normalize_base_url(resolve_google_redirect(chunk.uri))
                if key in position:
                    chunk_to_source[index] = position[key]

        citations = []
        for support in metadata.grounding_supports:
            if not support.segment_text:
                continue
            indices = sorted({chunk_to_source[i] for i in support.grounding_chunk_indices if i in chunk_to_source})
            if indices:
                citations.append(
                    InlineCitation(
                        text=support.segment_text[:CITATION_SNIPPET_LENGTH],
                        source_indices=tuple(indices),
                        start_index=support.start_index,
                        end_index=support.end_index,
                    )
                )
        return citations

    @staticmethod
    def _raw_content(
        report: SourceReport,
        data: dict,
        school: str,
        program: str,
        tuition_text: Optional[str],
    ) -> str:
        pieces = [s.raw_content for s in report.sources if s.raw_content and len(s.raw_content) > 50]
        summary = ""
        if pieces:
            summary = _truncate(
                "\n\n---\n\n".join(pieces),
                RAW_CONTENT_MAX_LENGTH,
                f"showing first {RAW_CONTENT_MAX_LENGTH:,} characters from {len(pieces)} source(s)",
            )

        if len(summary) < 50:
            # No usable source text: summarize what the model reported
            summary = (
                f"Extracted from {school}:\n"
                f"Program: {data.get('actual_program_name') or program}\n"
                f"Tuition: {tuition_text or 'Not found'}\n"
                f"Credits: {data.get('total_credits') or 'Not specified'}\n"
                f"Cost per credit: {data.get('cost_per_credit') or 'Not specified'}\n"
                f"Program length: {data.get('program_length') or 'Not specified'}\n"
                f"STEM: {'Yes' if data.get('is_stem') is True else 'No'}"
            )
            if data.get("remarks"):
                summary += f"\n\nNotes: {data['remarks']}"

        return sanitize_for_storage(summary) or "No content summary provided."
