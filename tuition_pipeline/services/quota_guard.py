"""
Quota Guard: admission control for paid Gemini calls.

Each admitted call reserves one unit from a durable per-UTC-day counter.
The reservation is a single conditional increment in the store, so the
limit holds across restarts and across concurrent workers and processes.
Denial is immediate; there is no queueing.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from ..constants import DAILY_QUOTA_LIMIT, QUOTA_CRITICAL_THRESHOLD, QUOTA_WARNING_THRESHOLD
from ..errors import QuotaExceeded
from ..models.quota import QuotaDecision, QuotaStatus

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QuotaGuard:
    """
    Daily call budget for the Gemini API.

    Usage:
        guard = QuotaGuard(QuotaRepository(), limit=1000)
        decision = guard.check_and_reserve()
        if decision.allowed:
            ...  # make the call
    """

    def __init__(
        self,
        repository,
        limit: int = DAILY_QUOTA_LIMIT,
        warning_threshold: float = QUOTA_WARNING_THRESHOLD,
        critical_threshold: float = QUOTA_CRITICAL_THRESHOLD,
        today: Callable[[], date] = utc_today,
    ):
        """
        Args:
            repository: Store with reserve/get/history/reset (see db.repository.QuotaRepository)
            limit: Calls admitted per UTC day
            warning_threshold: Usage fraction that logs a warning
            critical_threshold: Usage fraction that logs a critical alert
            today: Clock returning the current UTC date
        """
        self.repository = repository
        self.limit = limit
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self._today = today

    def check_and_reserve(self) -> QuotaDecision:
        """
        Reserve one call from today's budget.

        Returns:
            QuotaDecision. allowed=False when the budget is spent or the
            store cannot be reached; the counter is not incremented then.
        """
        quota_date = self._today()
        try:
            # Count after our own increment; None when the budget is spent
            used = self.repository.reserve(quota_date, self.limit)
            row = self.repository.get(quota_date) if used is None else None
        except Exception as e:
            # Store unreachable: deny rather than spend untracked calls
            logger.error(f"Quota store unavailable, denying call: {e}", exc_info=True)
            return QuotaDecision(quota_date=quota_date, used=0, limit=self.limit, allowed=False)

        if used is None:
            used = int(row["used"]) if row else 0
            logger.warning(f"Daily quota exhausted: {used}/{self.limit} calls used on {quota_date}")
            return QuotaDecision(
                quota_date=quota_date,
                used=used,
                limit=self.limit,
                last_used_at=row.get("last_used_at") if row else None,
                allowed=False,
            )

        self._signal_thresholds(used)
        return QuotaDecision(
            quota_date=quota_date,
            used=used,
            limit=self.limit,
            last_used_at=datetime.now(timezone.utc),
            allowed=True,
        )

    def reserve_or_raise(self) -> QuotaDecision:
        """check_and_reserve(), raising QuotaExceeded on denial."""
        decision = self.check_and_reserve()
        if not decision.allowed:
            raise QuotaExceeded(decision.used, decision.limit)
        return decision

    def _signal_thresholds(self, used: int) -> None:
        """Log once per threshold crossing (the call that moves usage past it)."""
        if self.limit <= 0:
            return
        before = (used - 1) / self.limit
        after = used / self.limit
        if before < self.critical_threshold <= after:
            logger.critical(
                f"Quota CRITICAL: {after * 100:.1f}% of daily Gemini quota used ({used}/{self.limit})"
            )
        elif before < self.warning_threshold <= after:
            logger.warning(f"Quota WARNING: {after * 100:.1f}% of daily Gemini quota used ({used}/{self.limit})")

    def get_quota_status(self) -> QuotaStatus:
        """Current usage for today without reserving anything."""
        quota_date = self._today()
        row = self.repository.get(quota_date)
        if not row:
            return QuotaStatus(quota_date=quota_date, used=0, limit=self.limit)
        return QuotaStatus(
            quota_date=quota_date,
            used=int(row["used"]),
            limit=self.limit,
            last_used_at=row.get("last_used_at"),
        )

    def get_quota_history(self, days: int = 30) -> list[QuotaStatus]:
        """Usage for the most recent days that have a counter row, newest first."""
        return [
            QuotaStatus(
                quota_date=row["quota_date"],
                used=int(row["used"]),
                limit=int(row["quota_limit"]),
                last_used_at=row.get("last_used_at"),
            )
            for row in self.repository.history(days)
        ]

    def reset_quota(self, quota_date: Optional[date] = None) -> None:
        """Zero a day's counter. Operations/testing only."""
        quota_date = quota_date or self._today()
        self.repository.reset(quota_date)
        logger.warning(f"Quota counter reset for {quota_date}")
