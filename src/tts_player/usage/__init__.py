"""
Usage Ledger.

    - models.py: SQLAlchemy tables and usage value objects
    - tracker.py: UsageTracker (quota checks, recording, statistics)
"""
from .models import DailyUsage, QuotaCheck, UsageEvent, UsageRecord, UsageStats
from .tracker import UsageTracker, estimate_cost, make_text_preview

__all__ = [
    "UsageTracker",
    "UsageEvent",
    "UsageRecord",
    "UsageStats",
    "DailyUsage",
    "QuotaCheck",
    "estimate_cost",
    "make_text_preview",
]
