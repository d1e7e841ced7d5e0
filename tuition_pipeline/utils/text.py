"""Text cleanup helpers for Gemini responses and prompt inputs."""

import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_PDF_STREAM_RE = re.compile(r"stream[\s\S]*?endstream", re.IGNORECASE)
_PDF_DOCUMENT_RE = re.compile(r"%PDF[\s\S]*?%%EOF", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_TOTAL_SUFFIX_RE = re.compile(r"\s*total\s*$", re.IGNORECASE)
_MONTHS_RE = re.compile(r"([\d.]+)\s*months?")
_YEARS_RE = re.compile(r"([\d.]+)\s*years?")

MISSING_MARKERS = ("", "n/a", "na", "none", "null", "not found", "not specified", "unknown")

# Phrases that try to override the extraction instructions
INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|rules?|guidelines?)", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(previous|above|prior)", re.IGNORECASE),
    re.compile(r"new\s+instructions?:", re.IGNORECASE),
    re.compile(r"system\s*:?\s*prompt", re.IGNORECASE),
    re.compile(r"you\s+are\s+(now|a)\s+", re.IGNORECASE),
    re.compile(r"act\s+as\s+(if|a)\s+", re.IGNORECASE),
    re.compile(r"pretend\s+(you|to\s+be)", re.IGNORECASE),
    re.compile(r"from\s+now\s+on", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all|your)", re.IGNORECASE),
]
_MARKDOWN_RE = re.compile(r"```[\s\S]*?```|`[^`]+`|#{1,6}\s|[*_]{1,2}")


def is_missing(value: Any) -> bool:
    """True for None and for placeholder strings like "N/A" or "Not found"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in MISSING_MARKERS
    return False


def parse_currency(value: Any) -> Optional[float]:
    """
    Parse a currency or count string into a number.

    Takes the first number in the text, so "$52,000 total" and "36-48 credits"
    parse as 52000 and 36.

    Examples:
        >>> parse_currency("$1,250.50")
        1250.5
        >>> parse_currency("N/A") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if is_missing(value):
        return None
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def strip_total_suffix(value: Optional[str]) -> Optional[str]:
    """Drop a trailing "total" the model sometimes appends to amounts."""
    if value is None:
        return None
    return _TOTAL_SUFFIX_RE.sub("", str(value)).strip()


def parse_program_length_months(months: Any, program_length: Any = None) -> Optional[int]:
    """
    Resolve program length in months.

    Uses the explicit months value when numeric, otherwise parses the free-text
    program length ("18 months" -> 18, "1.5 years" -> 18).
    """
    if months is not None and not isinstance(months, bool):
        try:
            return int(float(months))
        except (TypeError, ValueError):
            pass

    if not program_length:
        return None

    text = str(program_length).lower()
    months_match = _MONTHS_RE.search(text)
    if months_match:
        return round(float(months_match.group(1)))
    years_match = _YEARS_RE.search(text)
    if years_match:
        return round(float(years_match.group(1)) * 12)
    return None


def sanitize_for_storage(text: Optional[str]) -> Optional[str]:
    """
    Clean text before it is stored.

    Removes control characters and embedded PDF streams and collapses whitespace.
    """
    if not text:
        return text
    text = text.replace("\x00", "")
    text = _CONTROL_CHARS_RE.sub("", text)
    text = _PDF_STREAM_RE.sub("[binary content removed]", text)
    text = _PDF_DOCUMENT_RE.sub("[PDF content removed]", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_prompt_input(text: Optional[str], max_length: int = 200) -> str:
    """
    Sanitize a user-supplied name before it is embedded in a prompt.

    Filters instruction-override phrases, strips markdown and newlines,
    and truncates to max_length.
    """
    if not text or not isinstance(text, str):
        return ""

    sanitized = text
    for pattern in INJECTION_PATTERNS:
        if pattern.search(sanitized):
            logger.warning(f"Prompt injection pattern filtered from input: {text[:80]!r}")
            sanitized = pattern.sub("[FILTERED]", sanitized)

    sanitized = _MARKDOWN_RE.sub(" ", sanitized)
    sanitized = sanitized.replace("|", "-")
    sanitized = _WHITESPACE_RE.sub(" ", sanitized).strip()

    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized
