"""
Gemini-backed agents.

- GeminiSearchClient: search-grounded and plain generation with timeouts
- ExtractorAgent: one grounded extraction per attempt
- CrossVerifier: optional AI corroboration of a candidate
"""

from .cross_verifier import CrossVerifier
from .extractor_agent import ExtractorAgent
from .gemini_search import GeminiSearchClient, SearchGroundingResult, extract_json_from_response

__all__ = [
    "CrossVerifier",
    "ExtractorAgent",
    "GeminiSearchClient",
    "SearchGroundingResult",
    "extract_json_from_response",
]
