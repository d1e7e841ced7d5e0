"""Daily quota state and admission decisions."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, computed_field


class QuotaStatus(BaseModel):
    """Usage of the Gemini call budget for one UTC day."""

    model_config = ConfigDict(frozen=True)

    quota_date: date
    used: int
    limit: int
    last_used_at: Optional[datetime] = None

    @computed_field
    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @computed_field
    @property
    def usage_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return round(self.used / self.limit * 100, 2)

    @computed_field
    @property
    def is_exceeded(self) -> bool:
        return self.used >= self.limit


class QuotaDecision(QuotaStatus):
    """Result of check_and_reserve(). allowed=False means no call may be made."""

    allowed: bool
