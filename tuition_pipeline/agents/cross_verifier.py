"""
AI Cross-Verifier: a second, ungrounded Gemini call that reviews a
candidate against the rule findings and a raw content excerpt.

Any failure (quota denied, timeout, API error, unparseable or
schema-mismatched output) yields None and a VerificationAIUnavailable
warning. The caller then keeps the rule-based verdict.
"""

import logging
from typing import Callable, Optional

from ..constants import AI_CONTENT_EXCERPT_LENGTH, DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_TEMPERATURE
from ..errors import PipelineError, VerificationAIUnavailable
from ..models.extraction import ExtractionCandidate
from ..models.verification import AIVerdict, RuleVerdict
from ..utils.text import sanitize_prompt_input
from .gemini_search import GeminiSearchClient, call_with_backoff, parse_json_object

logger = logging.getLogger(__name__)

VERIFICATION_PROMPT = """
You are a data verification agent. Your job is to verify the accuracy of extracted tuition data.

EXTRACTED DATA:
- School: {school}
- Program: {program}
- Tuition Amount: {tuition_amount}
- Tuition Period: {tuition_period}
- Cost Per Credit: {cost_per_credit}
- Total Credits: {total_credits}
- Program Length: {program_length}
- Academic Year: {academic_year}
- STEM Status: {is_stem}
- Status: {status}

RULE-BASED VERIFICATION RESULTS:
Issues Found: {issues}
Validations Passed: {validations}

SOURCE CONTENT SAMPLE:
{excerpt}

TASK:
1. Review the extracted data for accuracy
2. Check if the source content supports the extracted values
3. Identify any red flags or inconsistencies
4. Recommend whether to accept, flag for review, or retry extraction

OUTPUT - Return ONLY this JSON:
{{
  "verification_status": "verified|needs_review|retry_recommended",
  "confidence_adjustment": "increase|maintain|decrease",
  "key_finding": "One sentence summary of verification result",
  "source_supports_data": true|false,
  "suggested_correction": null or {{"field": "value"}},
  "alternative_search_query": null or "suggested query if retry needed"
}}
"""


def _show(value) -> str:
    if value is None:
        return "Not found"
    if isinstance(value, float) and value.is_integer():
        return f"{value:,.0f}"
    return str(value)


def build_verification_prompt(
    candidate: ExtractionCandidate,
    school: str,
    program: str,
    rule_verdict: RuleVerdict,
) -> str:
    """Condensed candidate view plus rule findings and the first 1,500 characters of raw content."""
    excerpt = (candidate.raw_content or "")[:AI_CONTENT_EXCERPT_LENGTH] or "No source content available"
    return VERIFICATION_PROMPT.format(
        school=sanitize_prompt_input(school, max_length=200),
        program=sanitize_prompt_input(program, max_length=150),
        tuition_amount=_show(candidate.tuition_amount),
        tuition_period=_show(candidate.tuition_period),
        cost_per_credit=_show(candidate.cost_per_credit),
        total_credits=_show(candidate.total_credits),
        program_length=_show(candidate.program_length),
        academic_year=_show(candidate.academic_year),
        is_stem="Yes" if candidate.is_stem else "No",
        status=candidate.status.value,
        issues="; ".join(rule_verdict.issues) or "None",
        validations="; ".join(rule_verdict.validations) or "None",
        excerpt=excerpt,
    )


class CrossVerifier:
    """
    Optional AI corroboration of a candidate.

    Usage:
        verifier = CrossVerifier(GeminiSearchClient(timeout_seconds=30), quota_guard=guard)
        verdict = verifier.verify(candidate, school, program, rule_verdict)  # AIVerdict or None
    """

    def __init__(
        self,
        client: GeminiSearchClient,
        quota_guard=None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        max_retries: int = 1,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.quota_guard = quota_guard
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.max_retries = max_retries
        self._sleep = sleep

    def verify(
        self,
        candidate: ExtractionCandidate,
        school: str,
        program: str,
        rule_verdict: RuleVerdict,
    ) -> Optional[AIVerdict]:
        """Return the AI verdict, or None when it cannot be obtained."""
        try:
            return self._verify(candidate, school, program, rule_verdict)
        except VerificationAIUnavailable as e:
            logger.warning(f"AI verification unavailable for {school} - {program}, using rule-based results only: {e}")
            return None

    def _verify(
        self,
        candidate: ExtractionCandidate,
        school: str,
        program: str,
        rule_verdict: RuleVerdict,
    ) -> AIVerdict:
        prompt = build_verification_prompt(candidate, school, program, rule_verdict)
        backoff_kwargs = {"sleep": self._sleep} if self._sleep else {}

        try:
            result = call_with_backoff(
                lambda: self._guarded_generate(prompt),
                context=f"verify:{school}",
                max_retries=self.max_retries,
                **backoff_kwargs,
            )
        except PipelineError as e:
            raise VerificationAIUnavailable(str(e)) from e
        except Exception as e:
            logger.debug("Cross-verification call failed", exc_info=True)
            raise VerificationAIUnavailable(f"unexpected error: {e}") from e

        logger.debug(f"Cross-verification for {school}: {result.total_tokens} tokens, ${result.cost_usd:.6f}")
        data = parse_json_object(result.text)
        if data is None:
            raise VerificationAIUnavailable(f"no JSON object in response: {result.text[:200]!r}")

        verdict = AIVerdict.from_response(data)
        if verdict is None:
            raise VerificationAIUnavailable(f"response did not match verdict schema: {data}")
        return verdict

    def _guarded_generate(self, prompt: str):
        if self.quota_guard is not None:
            self.quota_guard.reserve_or_raise()
        return self.client.generate(
            prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
