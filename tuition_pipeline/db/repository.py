"""Data access repositories.

Simple operations for each pipeline table. Every write that must be
atomic (quota reservation, cache upsert) is a single SQL statement.
"""

import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from ..models.extraction import ExtractionCandidate
from ..models.verification import VerificationResult
from .client import execute_increment, execute_query, execute_write


def _json_default(obj: Any) -> Any:
    """Handle non-serializable objects for JSON encoding."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _serialize_json(value: Any) -> str | None:
    """Serialize a value to JSON string for storage."""
    if value is None:
        return None
    return json.dumps(value, default=_json_default)


def _deserialize_json(value: str | bytes | None) -> Any:
    """Deserialize a JSON string from storage."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value  # Already parsed by driver


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


class QuotaRepository:
    """Durable per-UTC-day call counter (table extraction_quota)."""

    def reserve(self, quota_date: date, limit: int) -> Optional[int]:
        """Atomically take one unit of today's budget.

        Seeds the day row idempotently, then increments only while
        used < limit. Returns the day's count after this increment, or
        None when the budget was already spent.
        """
        execute_write(
            "INSERT IGNORE INTO extraction_quota (quota_date, used, quota_limit) VALUES (%s, 0, %s)",
            (quota_date, limit),
        )
        return execute_increment(
            "UPDATE extraction_quota SET used = LAST_INSERT_ID(used + 1), quota_limit = %s, "
            "last_used_at = CURRENT_TIMESTAMP WHERE quota_date = %s AND used < %s",
            (limit, quota_date, limit),
        )

    def get(self, quota_date: date) -> dict | None:
        """Get the counter row for a day."""
        return execute_query(
            "SELECT quota_date, used, quota_limit, last_used_at FROM extraction_quota WHERE quota_date = %s",
            (quota_date,),
            fetch="one",
        )

    def history(self, days: int = 30) -> list[dict]:
        """Most recent counter rows, newest first."""
        return (
            execute_query(
                "SELECT quota_date, used, quota_limit, last_used_at FROM extraction_quota "
                "ORDER BY quota_date DESC LIMIT %s",
                (days,),
            )
            or []
        )

    def reset(self, quota_date: date) -> None:
        """Zero a day's counter."""
        execute_write("UPDATE extraction_quota SET used = 0 WHERE quota_date = %s", (quota_date,))


class ExtractionResultRepository:
    """One row per extraction attempt (table extraction_results)."""

    def next_version(self, school: str, program: str) -> int:
        """Version number for a new pipeline run on (school, program)."""
        row = execute_query(
            "SELECT COALESCE(MAX(extraction_version), 0) AS version FROM extraction_results "
            "WHERE school = %s AND program = %s",
            (school, program),
            fetch="one",
        )
        return int(row["version"]) + 1 if row else 1

    def save_attempt(
        self,
        school: str,
        program: str,
        candidate: ExtractionCandidate,
        verification: Optional[VerificationResult],
        retry_count: int,
        extraction_version: int,
    ) -> str:
        """Insert one attempt and return its row id."""
        data = {
            "id": _generate_uuid(),
            "school": school,
            "program": program,
            "tuition_amount": candidate.tuition_amount,
            "cost_per_credit": candidate.cost_per_credit,
            "total_credits": candidate.total_credits,
            "program_length": candidate.program_length,
            "program_length_months": candidate.program_length_months,
            "academic_year": candidate.academic_year,
            "confidence_score": (verification.confidence if verification else candidate.confidence_score).value,
            "status": candidate.status.value,
            "failure_reason": candidate.failure_reason,
            "source_url": candidate.source_url,
            "validated_sources": _serialize_json(
                [s.model_dump(mode="json", exclude={"raw_content"}) for s in candidate.validated_sources]
            ),
            "candidate_json": _serialize_json(candidate.model_dump(mode="json", exclude={"raw_content"})),
            "verification_status": verification.status.value if verification else None,
            "verification_data": _serialize_json(verification.model_dump(mode="json")) if verification else None,
            "retry_count": retry_count,
            "extraction_version": extraction_version,
            "cost_usd": candidate.cost_usd,
        }
        columns = list(data.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        execute_write(
            f"INSERT INTO extraction_results ({', '.join(f'`{c}`' for c in columns)}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        return data["id"]


class VerificationCacheRepository:
    """Verification results keyed by candidate content hash (table verification_cache)."""

    def get_valid(self, content_hash: str, ttl_days: int) -> dict | None:
        """Cached result if younger than ttl_days, else None."""
        row = execute_query(
            "SELECT result_json FROM verification_cache "
            "WHERE content_hash = %s AND created_at >= NOW() - INTERVAL %s DAY",
            (content_hash, ttl_days),
            fetch="one",
        )
        return _deserialize_json(row["result_json"]) if row else None

    def upsert(self, content_hash: str, school: str, program: str, result: dict) -> None:
        execute_write(
            "INSERT INTO verification_cache (content_hash, school, program, result_json) VALUES (%s, %s, %s, %s) "
            "ON DUPLICATE KEY UPDATE result_json = VALUES(result_json), created_at = CURRENT_TIMESTAMP",
            (content_hash, school, program, _serialize_json(result)),
        )
