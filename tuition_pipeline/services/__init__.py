"""Services shared by the pipeline stages."""

from .quota_guard import QuotaGuard, utc_today

__all__ = ["QuotaGuard", "utc_today"]
