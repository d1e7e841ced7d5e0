"""
Gemini access for extraction and cross-verification.

search() asks with Google Search grounding switched on and returns the
grounding metadata with the answer; generate() is a plain call for the
cross-verifier. Both carry an HTTP timeout and report token cost. The
module also holds the helpers shared by both agents: JSON recovery from
model text and the transient-error backoff loop.
"""

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..constants import (
    API_INITIAL_BACKOFF_SECONDS,
    API_MAX_BACKOFF_SECONDS,
    API_MAX_RETRIES,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL,
    EXTRACTION_TIMEOUT_SECONDS,
    RETRYABLE_ERROR_MARKERS,
)
from ..errors import ExtractionError, ExtractionParseError, ExtractionTimeout, QuotaExceeded
from ..models.grounding import GroundingMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")

# USD per million tokens
PRICING_PER_MILLION = {
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-flash-lite": (0.10, 0.40),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.5-pro": (1.25, 10.00),
}

API_KEY_ENV_VARS = ("GOOGLE_API_KEY", "GEMINI_API_KEY")

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_decoder = json.JSONDecoder()


# =============================================================================
# JSON recovery
# =============================================================================


def extract_json_from_response(text: str) -> Optional[str]:
    """
    First JSON object in a model response, as a string.

    Looks inside a ``` fence when there is one, ignores prose before and
    after the object, and falls back to _repair_truncated_json() when the
    answer was cut off mid-object. None when no object can be recovered.
    """
    if not text:
        return None
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)

    start = text.find("{")
    if start == -1:
        return None
    try:
        _, end = _decoder.raw_decode(text, start)
    except json.JSONDecodeError:
        return _repair_truncated_json(text[start:])
    return text[start:end]


def _repair_truncated_json(json_str: str) -> Optional[str]:
    """
    Cut a truncated object back to its last complete member and close it.

    Safe cut points are a closing bracket inside the object and a comma
    between top-level members. Returns None when no member ever completed.
    """
    closers: list[str] = []
    cut: Optional[tuple[int, str]] = None
    in_string = escaped = False

    for i, char in enumerate(json_str):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            closers.append("}" if char == "{" else "]")
        elif char in "}]":
            if not closers:
                break
            closers.pop()
            if closers:
                cut = (i + 1, "".join(reversed(closers)))
        elif char == "," and closers == ["}"]:
            cut = (i, "}")

    if cut is None:
        return None
    end, suffix = cut
    repaired = json_str[:end].rstrip().rstrip(",") + suffix
    try:
        json.loads(repaired)
    except json.JSONDecodeError:
        logger.warning(f"Could not repair truncated JSON: {repaired[:100]}...")
        return None
    return repaired


def parse_json_object(text: Optional[str]) -> Optional[dict]:
    """Decode the first JSON object in a response. None when there is none."""
    json_str = extract_json_from_response(text or "")
    if json_str is None:
        return None
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# =============================================================================
# Transient-error retry
# =============================================================================


def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return True
    message = str(error)
    return "DEADLINE_EXCEEDED" in message or "timed out" in message.lower()


def is_retryable_error(error: BaseException) -> bool:
    """Transient Gemini failures (rate limit, overload, timeout) worth a backoff retry."""
    if isinstance(error, (QuotaExceeded, ExtractionParseError)):
        return False
    if isinstance(error, ExtractionTimeout):
        return True
    cause = error.__cause__ or error
    message = f"{error} {cause}"
    lowered = message.lower()
    return any(marker in message or marker in lowered for marker in RETRYABLE_ERROR_MARKERS)


def call_with_backoff(
    fn: Callable[[], T],
    context: str,
    max_retries: int = API_MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient errors with exponential backoff (1s, 2s, 4s, capped at 10s).

    Non-retryable errors and the last failure are re-raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_retries or not is_retryable_error(e):
                raise
            delay = min(API_INITIAL_BACKOFF_SECONDS * 2**attempt, API_MAX_BACKOFF_SECONDS)
            attempt += 1
            logger.warning(f"{context}: transient error ({e}), retry {attempt}/{max_retries} in {delay:.1f}s")
            sleep(delay)


# =============================================================================
# Client
# =============================================================================


def resolve_api_key(api_key: Optional[str] = None) -> Optional[str]:
    """Explicit key, else GOOGLE_API_KEY, else GEMINI_API_KEY. "your_..." placeholders don't count."""
    if api_key:
        return api_key
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name, "")
        if value and not value.startswith("your_"):
            return value
    return None


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_rate, output_rate = PRICING_PER_MILLION.get(model, PRICING_PER_MILLION[DEFAULT_MODEL])
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


@dataclass
class SearchGroundingResult:
    """Answer text plus grounding and token accounting for one Gemini call."""

    text: str
    grounding_metadata: GroundingMetadata
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def source_count(self) -> int:
        return len(self.grounding_metadata.grounding_chunks)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class GeminiSearchClient:
    """
    Gemini with optional Google Search grounding.

    Timeouts raise ExtractionTimeout, other API failures ExtractionError;
    callers decide whether to retry (see call_with_backoff).

    Usage:
        client = GeminiSearchClient(timeout_seconds=60)
        result = client.search('"Northwestern University" "Executive MBA" tuition site:.edu')
        result.text, result.grounding_metadata.source_urls
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout_seconds: float = EXTRACTION_TIMEOUT_SECONDS,
    ):
        """
        Args:
            model: Gemini model name
            api_key: Google API key; read from the environment when omitted
            timeout_seconds: Wall-clock limit per request

        Raises:
            ValueError: no usable API key
        """
        self.api_key = resolve_api_key(api_key)
        if not self.api_key:
            raise ValueError(f"No Gemini API key: set {' or '.join(API_KEY_ENV_VARS)}, or pass api_key")

        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )
        logger.info(f"Gemini client ready: {model}, timeout {timeout_seconds}s")

    def search(
        self,
        query: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_output_tokens: Optional[int] = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> SearchGroundingResult:
        """Grounded call: Gemini may run Google searches and cite what it found."""
        config = types.GenerateContentConfig(
            temperature=temperature,
            top_k=40,
            max_output_tokens=max_output_tokens,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
        return self._call(query, system_prompt, config, operation="search")

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_output_tokens: Optional[int] = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> SearchGroundingResult:
        """Plain call without tools."""
        config = types.GenerateContentConfig(temperature=temperature, max_output_tokens=max_output_tokens)
        return self._call(prompt, system_prompt, config, operation="generate")

    def _call(
        self,
        prompt: str,
        system_prompt: Optional[str],
        config: types.GenerateContentConfig,
        operation: str,
    ) -> SearchGroundingResult:
        contents = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        try:
            response = self.client.models.generate_content(model=self.model, contents=contents, config=config)
        except (httpx.HTTPError, genai_errors.APIError, TimeoutError) as e:
            if is_timeout_error(e):
                message = f"Gemini {operation} timed out after {self.timeout_seconds}s"
                logger.error(message)
                raise ExtractionTimeout(message) from e
            logger.error(f"Gemini {operation} failed: {e}")
            raise ExtractionError(f"Gemini {operation} failed: {e}") from e

        usage = getattr(response, "usage_metadata", None)
        input_tokens = (getattr(usage, "prompt_token_count", None) or 0) if usage else 0
        output_tokens = (getattr(usage, "candidates_token_count", None) or 0) if usage else 0

        result = SearchGroundingResult(
            text=response.text or "",
            grounding_metadata=GroundingMetadata.from_response(response),
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=estimate_cost(self.model, input_tokens, output_tokens),
        )
        logger.info(
            f"Gemini {operation}: {result.source_count} sources, "
            f"{input_tokens} in / {output_tokens} out tokens, ${result.cost_usd:.6f}"
        )
        return result
