"""
Tuition extraction pipeline.

Extracts program tuition with Gemini search grounding, verifies it with
deterministic rule checks and an optional AI cross-check, and retries
once with a refined query when the data looks wrong.
"""

from .config import PipelineConfig
from .models import ExtractionCandidate, ExtractionRequest, QuotaStatus, VerificationResult
from .pipeline import PipelineOutcome, TuitionPipeline

__version__ = "0.1.0"

__all__ = [
    "ExtractionCandidate",
    "ExtractionRequest",
    "PipelineConfig",
    "PipelineOutcome",
    "QuotaStatus",
    "TuitionPipeline",
    "VerificationResult",
]
