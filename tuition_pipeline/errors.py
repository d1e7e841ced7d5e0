"""Exception taxonomy for the extraction pipeline.

These never escape the public entry points (extract/run/verify). They are
raised inside the agents and translated into a Failed candidate or a
degraded VerificationResult at the pipeline boundary.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class QuotaExceeded(PipelineError):
    """Admission denied by the Quota Guard. No external call was made."""

    def __init__(self, used: int, limit: int):
        self.used = used
        self.limit = limit
        super().__init__(f"Daily quota exhausted ({used}/{limit})")


class ExtractionError(PipelineError):
    """An extraction call failed. Maps to candidate status Failed."""

    reason = "api_error"

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class ExtractionTimeout(ExtractionError):
    """The Gemini call exceeded its wall-clock limit."""

    reason = "timeout"


class ExtractionParseError(ExtractionError):
    """The response held no well-formed JSON object. raw_text keeps the response verbatim."""

    reason = "parse_error"


class VerificationAIUnavailable(PipelineError):
    """The AI cross-verifier could not produce a verdict. Logged as a warning only."""
