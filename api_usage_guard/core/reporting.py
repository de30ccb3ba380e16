"""
Usage reporting.

Read-side rollups of the ledger: today's consumption against the quota
ceilings and a summary of the trailing week.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List

from api_usage_guard.config.loader import OperationEstimate, QuotaPolicy
from api_usage_guard.storage.models import DailyUsageRecord
from api_usage_guard.storage.repository import records_in_window


class UsageLevel(Enum):
    """How close today's usage is to the ceilings."""
    GOOD = "good"        # At most half of either ceiling used
    INFO = "info"        # Over 50% of a ceiling used
    WARNING = "warning"  # Over 80% of a ceiling used


WARNING_PERCENT = 80.0
INFO_PERCENT = 50.0


def usage_level(request_percent: float, token_percent: float) -> UsageLevel:
    """Classify usage by the fuller of the two ceilings."""
    if request_percent > WARNING_PERCENT or token_percent > WARNING_PERCENT:
        return UsageLevel.WARNING
    if request_percent > INFO_PERCENT or token_percent > INFO_PERCENT:
        return UsageLevel.INFO
    return UsageLevel.GOOD


@dataclass(frozen=True)
class DailyReport:
    """Today's usage against the quota ceilings."""
    date: str
    requests_used: int
    requests_limit: int
    tokens_used: int
    tokens_limit: int
    total_cost: float
    request_percent: float
    token_percent: float
    remaining_requests: int
    remaining_tokens: int
    estimated_operations_remaining: int
    level: UsageLevel


@dataclass(frozen=True)
class WeeklyReport:
    """Totals and per-day averages over the trailing window."""
    window_days: int
    days_recorded: int
    total_requests: int
    total_tokens: int
    avg_requests_per_day: float
    avg_tokens_per_day: float
    total_cost: float

    @property
    def has_data(self) -> bool:
        return self.days_recorded > 0


def build_daily_report(
    usage: DailyUsageRecord,
    policy: QuotaPolicy,
    per_operation: OperationEstimate
) -> DailyReport:
    """Compute the daily view for ``usage``.

    The operations estimate is the number of further operations of size
    ``per_operation`` that fit under both ceilings.

    Args:
        usage: Today's record
        policy: Quota ceilings
        per_operation: Spend of one operation

    Returns:
        DailyReport for the record's date
    """
    request_percent = usage.request_count / policy.max_requests_per_day * 100
    token_percent = usage.estimated_tokens / policy.max_tokens_per_day * 100
    remaining_requests = max(0, policy.max_requests_per_day - usage.request_count)
    remaining_tokens = max(0, policy.max_tokens_per_day - usage.estimated_tokens)

    operations = min(
        remaining_requests // per_operation.requests,
        remaining_tokens // per_operation.tokens
    )

    return DailyReport(
        date=usage.date,
        requests_used=usage.request_count,
        requests_limit=policy.max_requests_per_day,
        tokens_used=usage.estimated_tokens,
        tokens_limit=policy.max_tokens_per_day,
        total_cost=usage.total_cost,
        request_percent=request_percent,
        token_percent=token_percent,
        remaining_requests=remaining_requests,
        remaining_tokens=remaining_tokens,
        estimated_operations_remaining=operations,
        level=usage_level(request_percent, token_percent),
    )


def build_weekly_report(records: List[DailyUsageRecord], today: date, window_days: int = 7) -> WeeklyReport:
    """Summarize the records of the trailing ``window_days`` days.

    Averages are taken over the days that have a record, not over the
    full window. An empty window yields zero totals and averages.
    """
    window = records_in_window(records, today, window_days)
    days = len(window)

    total_requests = sum(record.request_count for record in window)
    total_tokens = sum(record.estimated_tokens for record in window)

    return WeeklyReport(
        window_days=window_days,
        days_recorded=days,
        total_requests=total_requests,
        total_tokens=total_tokens,
        avg_requests_per_day=total_requests / days if days else 0.0,
        avg_tokens_per_day=total_tokens / days if days else 0.0,
        total_cost=sum(record.total_cost for record in window),
    )
