"""
Central configuration for the tuition extraction pipeline.

Values come from environment variables (loaded from .env by the CLI via
python-dotenv) with defaults from constants.py.

Gemini:
  - GOOGLE_API_KEY / GEMINI_API_KEY
  - TUITION_MODEL (default: gemini-2.5-flash)
  - TUITION_EXTRACTION_TIMEOUT / TUITION_VERIFICATION_TIMEOUT (seconds)

Quota and verification:
  - TUITION_DAILY_QUOTA (default: 1,000,000)
  - TUITION_AI_VERIFY (default: true)
  - TUITION_CACHE_TTL_DAYS (default: 7)
  - TUITION_BATCH_SIZE (default: 10)

Database: DoltDB (MySQL-compatible). See db/client.py for DOLT_* variables.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .constants import (
    API_MAX_RETRIES,
    DAILY_QUOTA_LIMIT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    EXTRACTION_TIMEOUT_SECONDS,
    QUOTA_CRITICAL_THRESHOLD,
    QUOTA_WARNING_THRESHOLD,
    VERIFICATION_CACHE_TTL_DAYS,
    VERIFICATION_TIMEOUT_SECONDS,
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    return float(value)


@dataclass
class PipelineConfig:
    """Configuration for one pipeline instance.

    Attributes:
        model: Gemini model used for extraction and cross-verification
        temperature: Sampling temperature for both calls
        max_output_tokens: Response token cap (prevents runaway JSON)
        extraction_timeout: Wall-clock seconds per grounded extraction call
        verification_timeout: Wall-clock seconds per cross-verification call
        api_max_retries: Backoff retries on transient Gemini errors
        daily_quota_limit: Gemini calls admitted per UTC day
        quota_warning_threshold: Usage fraction that logs a warning
        quota_critical_threshold: Usage fraction that logs a critical alert
        ai_verification: Run the AI cross-verifier after rule checks
        cache_verifications: Reuse verification results for identical candidates
        cache_ttl_days: Verification cache lifetime
        batch_size: Concurrent requests in a batch run
        persist_results: Write each attempt to extraction_results
        api_key: Explicit API key (falls back to environment)
    """

    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    extraction_timeout: float = EXTRACTION_TIMEOUT_SECONDS
    verification_timeout: float = VERIFICATION_TIMEOUT_SECONDS
    api_max_retries: int = API_MAX_RETRIES

    daily_quota_limit: int = DAILY_QUOTA_LIMIT
    quota_warning_threshold: float = QUOTA_WARNING_THRESHOLD
    quota_critical_threshold: float = QUOTA_CRITICAL_THRESHOLD

    ai_verification: bool = True
    cache_verifications: bool = True
    cache_ttl_days: int = VERIFICATION_CACHE_TTL_DAYS

    batch_size: int = DEFAULT_BATCH_SIZE
    persist_results: bool = True

    api_key: Optional[str] = None

    def __post_init__(self):
        """Validate configuration values."""
        if self.daily_quota_limit < 0:
            raise ValueError("daily_quota_limit must be non-negative")
        if not 0.0 < self.quota_warning_threshold <= self.quota_critical_threshold <= 1.0:
            raise ValueError("quota thresholds must satisfy 0 < warning <= critical <= 1")
        if self.extraction_timeout <= 0 or self.verification_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.api_max_retries < 0:
            raise ValueError("api_max_retries must be non-negative")

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Build a config from TUITION_* environment variables.

        Keyword overrides win over the environment (used by CLI flags).
        """
        values = {
            "model": os.environ.get("TUITION_MODEL", DEFAULT_MODEL),
            "temperature": _env_float("TUITION_TEMPERATURE", DEFAULT_TEMPERATURE),
            "max_output_tokens": _env_int("TUITION_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
            "extraction_timeout": _env_float("TUITION_EXTRACTION_TIMEOUT", EXTRACTION_TIMEOUT_SECONDS),
            "verification_timeout": _env_float("TUITION_VERIFICATION_TIMEOUT", VERIFICATION_TIMEOUT_SECONDS),
            "api_max_retries": _env_int("TUITION_API_MAX_RETRIES", API_MAX_RETRIES),
            "daily_quota_limit": _env_int("TUITION_DAILY_QUOTA", DAILY_QUOTA_LIMIT),
            "ai_verification": _env_bool("TUITION_AI_VERIFY", True),
            "cache_verifications": _env_bool("TUITION_CACHE_VERIFICATIONS", True),
            "cache_ttl_days": _env_int("TUITION_CACHE_TTL_DAYS", VERIFICATION_CACHE_TTL_DAYS),
            "batch_size": _env_int("TUITION_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            "persist_results": _env_bool("TUITION_PERSIST_RESULTS", True),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
