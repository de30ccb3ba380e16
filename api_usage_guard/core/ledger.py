"""
Daily API usage ledger.

Tracks requests and estimated tokens spent per calendar day against the
provider's free-tier ceilings, and answers whether a proposed amount of
work still fits under today's ceilings.

Every operation reloads the store: there is no in-memory cache between
calls, so several short-lived runs against one file see each other's
spend. There is no locking either. ``check_limits`` followed by
``record_usage`` is not atomic, and two processes racing between the two
calls can together exceed a ceiling; the ledger is meant for a single
scheduled batch job.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from api_usage_guard.config.loader import LedgerConfig, OperationEstimate, QuotaPolicy
from api_usage_guard.storage.db import JsonFileStore, UsageStore
from api_usage_guard.storage.models import DailyUsageRecord
from api_usage_guard.storage.repository import find_record, prune_records, upsert_record

from .pricing import calculate_cost
from .reporting import DailyReport, WeeklyReport, build_daily_report, build_weekly_report

logger = logging.getLogger(__name__)


def utc_today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of a pre-flight limit check."""
    can_proceed: bool
    usage: DailyUsageRecord
    reason: Optional[str] = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Compact view of today's usage for status pages and CI output."""
    daily_requests: int
    daily_tokens: int
    date: str
    usage_percentage: int


class UsageLedger:
    """Single source of truth for how much of today's quota has been spent."""

    def __init__(
        self,
        store: UsageStore,
        policy: Optional[QuotaPolicy] = None,
        retention_days: int = 30,
        weekly_window_days: int = 7,
        cost_per_1k_tokens: float = 0.0,
        per_operation: Optional[OperationEstimate] = None,
        today: Callable[[], date] = utc_today
    ):
        """Initialize the ledger.

        Args:
            store: Backend holding the daily records
            policy: Quota ceilings (defaults to the free tier)
            retention_days: Days of history kept on every save
            weekly_window_days: Length of the weekly report window
            cost_per_1k_tokens: Price attributed to recorded tokens
            per_operation: Spend of one operation, used by reports
            today: Clock returning the current calendar date
        """
        if retention_days <= 0:
            raise ValueError("retention_days must be > 0")
        if weekly_window_days <= 0:
            raise ValueError("weekly_window_days must be > 0")
        self.store = store
        self.policy = policy or QuotaPolicy()
        self.retention_days = retention_days
        self.weekly_window_days = weekly_window_days
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.per_operation = per_operation or OperationEstimate()
        self._today = today

    @classmethod
    def from_config(cls, config: LedgerConfig, **kwargs) -> "UsageLedger":
        """Build a file-backed ledger from a LedgerConfig."""
        return cls(
            store=JsonFileStore(config.usage_file),
            policy=config.policy,
            retention_days=config.retention_days,
            weekly_window_days=config.weekly_window_days,
            cost_per_1k_tokens=config.cost_per_1k_tokens,
            per_operation=config.per_operation,
            **kwargs
        )

    def today(self) -> date:
        return self._today()

    def _read_records(self) -> List[DailyUsageRecord]:
        outcome = self.store.read()
        if not outcome.ok:
            # First runs and deleted files land here too
            logger.debug("Starting from empty usage history: %s", outcome.error)
        return outcome.records

    def history(self) -> List[DailyUsageRecord]:
        """Every stored record, as persisted."""
        return self._read_records()

    def load_today(self) -> DailyUsageRecord:
        """Return today's record, or a zero record if none is stored.

        Never raises for storage problems: a missing or corrupt store reads
        as an empty history.
        """
        today = DailyUsageRecord.empty(self.today())
        return find_record(self._read_records(), today.date) or today

    def save(self, record: DailyUsageRecord) -> None:
        """Upsert ``record``, prune expired days and rewrite the store.

        Failure to write is logged and swallowed; the update is then lost
        for future loads but the caller carries on.
        """
        records = upsert_record(self._read_records(), record)
        records = prune_records(records, self.today(), self.retention_days)
        try:
            self.store.write(records)
        except OSError as e:
            logger.warning("Could not save usage stats: %s", e)

    def check_limits(self, requests_to_make: int = 2, estimated_tokens: int = 1500) -> AdmissionDecision:
        """Check whether the proposed spend fits under today's ceilings.

        Requests are checked before tokens and the first ceiling that would
        be exceeded decides the outcome. Nothing is recorded.

        Args:
            requests_to_make: Model calls about to be made
            estimated_tokens: Tokens those calls are expected to consume

        Returns:
            AdmissionDecision with the reason when refused

        Raises:
            ValueError: If either amount is negative
        """
        if requests_to_make < 0 or estimated_tokens < 0:
            raise ValueError("requested amounts cannot be negative")

        usage = self.load_today()

        projected_requests = usage.request_count + requests_to_make
        if projected_requests > self.policy.max_requests_per_day:
            return AdmissionDecision(
                can_proceed=False,
                reason=(
                    f"Would exceed daily request limit "
                    f"({projected_requests}/{self.policy.max_requests_per_day})"
                ),
                usage=usage
            )

        projected_tokens = usage.estimated_tokens + estimated_tokens
        if projected_tokens > self.policy.max_tokens_per_day:
            return AdmissionDecision(
                can_proceed=False,
                reason=(
                    f"Would exceed daily token limit "
                    f"({projected_tokens}/{self.policy.max_tokens_per_day})"
                ),
                usage=usage
            )

        return AdmissionDecision(can_proceed=True, usage=usage)

    def check_operations(self, count: int = 1) -> AdmissionDecision:
        """Check whether ``count`` operations of the configured size fit."""
        estimate = self.per_operation.scaled(count)
        return self.check_limits(estimate.requests, estimate.tokens)

    def record_usage(self, request_count: int, estimated_tokens: int) -> DailyUsageRecord:
        """Add spend that has already happened to today's record.

        Args:
            request_count: Model calls made
            estimated_tokens: Tokens those calls are estimated to have used

        Returns:
            Today's record after the merge
        """
        cost = calculate_cost(estimated_tokens, self.cost_per_1k_tokens)
        usage = self.load_today().add(request_count, estimated_tokens, cost)
        self.save(usage)
        logger.info(
            "Recorded %d request(s), %d token(s) for %s",
            request_count, estimated_tokens, usage.date
        )
        return usage

    def current_usage(self) -> UsageSnapshot:
        """Today's usage with requests as a rounded percent of the ceiling."""
        usage = self.load_today()
        return UsageSnapshot(
            daily_requests=usage.request_count,
            daily_tokens=usage.estimated_tokens,
            date=usage.date,
            usage_percentage=math.floor(usage.request_count / self.policy.max_requests_per_day * 100 + 0.5)
        )

    def report(self, per_operation: Optional[OperationEstimate] = None) -> DailyReport:
        """Daily usage summary against the ceilings."""
        return build_daily_report(self.load_today(), self.policy, per_operation or self.per_operation)

    def weekly_report(self) -> WeeklyReport:
        """Summary of the trailing week."""
        return build_weekly_report(self.history(), self.today(), self.weekly_window_days)
