"""
Tests for the usage ledger.

Covers loading, saving with retention pruning, admission checks and
usage recording against both the in-memory and the file-backed store.
"""

import json
import logging
import os
import tempfile
from datetime import date, timedelta

import pytest

from api_usage_guard.config.loader import LedgerConfig, OperationEstimate, QuotaPolicy
from api_usage_guard.core.ledger import UsageLedger
from api_usage_guard.storage.db import InMemoryStore, JsonFileStore, ReadOutcome, UsageStore
from api_usage_guard.storage.models import DailyUsageRecord


TODAY = date(2024, 3, 31)


def days_ago(days: int) -> str:
    return (TODAY - timedelta(days=days)).strftime("%Y-%m-%d")


def make_ledger(store=None, policy=None, **kwargs) -> UsageLedger:
    """Create a ledger pinned to TODAY."""
    return UsageLedger(
        store=store if store is not None else InMemoryStore(),
        policy=policy or QuotaPolicy(max_requests_per_day=1500, max_tokens_per_day=1_000_000),
        today=lambda: TODAY,
        **kwargs
    )


class BrokenStore(UsageStore):
    """Store whose reads always fail."""

    def read(self) -> ReadOutcome:
        return ReadOutcome(error="disk on fire")

    def write(self, records):
        raise OSError("disk on fire")


class TestLoadToday:
    """Test loading today's record."""

    def test_empty_store_returns_zero_record(self):
        """Verify a fresh store yields a zero record for today."""
        usage = make_ledger().load_today()
        assert usage == DailyUsageRecord(date="2024-03-31")

    def test_returns_todays_record(self):
        """Verify the stored record for today is returned."""
        store = InMemoryStore([
            DailyUsageRecord(date=days_ago(1), request_count=10),
            DailyUsageRecord(date="2024-03-31", request_count=4, estimated_tokens=3000),
        ])
        usage = make_ledger(store).load_today()
        assert usage.request_count == 4
        assert usage.estimated_tokens == 3000

    def test_other_days_only_returns_zero_record(self):
        """Verify records of other days are not mistaken for today."""
        store = InMemoryStore([DailyUsageRecord(date=days_ago(1), request_count=10)])
        assert make_ledger(store).load_today().request_count == 0

    def test_unreadable_store_never_raises(self):
        """Verify storage failures degrade to a zero record."""
        usage = make_ledger(BrokenStore()).load_today()
        assert usage == DailyUsageRecord(date="2024-03-31")

    def test_unparseable_usage_files_never_raise(self):
        """Verify files the decoder or record parser choke on read as empty."""
        contents = [
            "[" * 100000,
            '[{"date": "2024-03-31", "requestCount": 1, "estimatedTokens": 1, '
            '"totalCosts": 1' + "0" * 400 + "}]",
        ]
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "api-usage.json")
            for content in contents:
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)
                ledger = make_ledger(JsonFileStore(path))

                assert ledger.load_today() == DailyUsageRecord(date="2024-03-31")
                assert ledger.check_limits(2, 1500).can_proceed


class TestHistory:
    """Test reading the stored collection."""

    def test_history_returns_stored_records(self):
        """Verify every persisted record is returned, including older days."""
        records = [
            DailyUsageRecord(date=days_ago(20), request_count=3),
            DailyUsageRecord(date="2024-03-31", request_count=4, estimated_tokens=3000),
        ]
        assert make_ledger(InMemoryStore(records)).history() == records

    def test_history_does_not_write(self):
        """Verify reading history leaves the store untouched."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", request_count=1)])
        make_ledger(store).history()
        assert store.writes == 0

    def test_broken_store_has_empty_history(self):
        """Verify an unreadable store yields no history."""
        assert make_ledger(BrokenStore()).history() == []

    def test_weekly_report_reads_history(self):
        """Verify the weekly report is built from the stored collection."""
        store = InMemoryStore([
            DailyUsageRecord(date=days_ago(6), request_count=2, estimated_tokens=1500),
            DailyUsageRecord(date=days_ago(1), request_count=4, estimated_tokens=3000),
            DailyUsageRecord(date=days_ago(10), request_count=99),
        ])
        report = make_ledger(store).weekly_report()
        assert report.days_recorded == 2
        assert report.total_requests == 6
        assert report.total_tokens == 4500


class TestConstruction:
    """Test ledger argument validation."""

    @pytest.mark.parametrize("days", [0, -1])
    def test_non_positive_retention_rejected(self, days):
        """Verify the retention window must be positive."""
        with pytest.raises(ValueError, match="retention_days must be > 0"):
            make_ledger(retention_days=days)

    @pytest.mark.parametrize("days", [0, -7])
    def test_non_positive_weekly_window_rejected(self, days):
        """Verify the weekly window must be positive."""
        with pytest.raises(ValueError, match="weekly_window_days must be > 0"):
            make_ledger(weekly_window_days=days)

    def test_custom_weekly_window(self):
        """Verify a positive weekly window is kept."""
        assert make_ledger(weekly_window_days=14).weekly_window_days == 14



class TestSave:
    """Test persisting records."""

    def test_save_then_load_round_trip(self):
        """Verify a saved record is loaded back unchanged."""
        ledger = make_ledger()
        record = DailyUsageRecord(date="2024-03-31", request_count=7, estimated_tokens=5250, total_cost=0.0)
        ledger.save(record)
        assert ledger.load_today() == record

    def test_save_upserts_by_date(self):
        """Verify saving the same date twice keeps one record."""
        store = InMemoryStore()
        ledger = make_ledger(store)
        ledger.save(DailyUsageRecord(date="2024-03-31", request_count=1))
        ledger.save(DailyUsageRecord(date="2024-03-31", request_count=2))
        assert store.records == [DailyUsageRecord(date="2024-03-31", request_count=2)]

    def test_save_is_idempotent(self):
        """Verify repeated identical saves leave the same collection."""
        store = InMemoryStore([DailyUsageRecord(date=days_ago(3), request_count=1)])
        ledger = make_ledger(store)
        record = DailyUsageRecord(date="2024-03-31", request_count=2)
        ledger.save(record)
        first = list(store.records)
        ledger.save(record)
        assert store.records == first

    def test_save_prunes_old_records(self):
        """Verify a lone 40-day-old record is gone after saving today's."""
        store = InMemoryStore([DailyUsageRecord(date=days_ago(40), request_count=99)])
        ledger = make_ledger(store)
        today = DailyUsageRecord(date="2024-03-31", request_count=1, estimated_tokens=750)
        ledger.save(today)
        assert store.records == [today]

    def test_save_prunes_regardless_of_saved_date(self):
        """Verify pruning applies to the whole collection on every save."""
        store = InMemoryStore([
            DailyUsageRecord(date=days_ago(45)),
            DailyUsageRecord(date=days_ago(31)),
            DailyUsageRecord(date=days_ago(29)),
        ])
        make_ledger(store).save(DailyUsageRecord(date=days_ago(2), request_count=1))
        assert [r.date for r in store.records] == [days_ago(29), days_ago(2)]

    def test_custom_retention(self):
        """Verify the retention window is configurable."""
        store = InMemoryStore([DailyUsageRecord(date=days_ago(5))])
        make_ledger(store, retention_days=3).save(DailyUsageRecord(date="2024-03-31"))
        assert [r.date for r in store.records] == ["2024-03-31"]

    def test_write_failure_is_logged_not_raised(self, caplog):
        """Verify an unwritable store only produces a warning."""
        ledger = make_ledger(InMemoryStore(fail_writes=True))
        with caplog.at_level(logging.WARNING, logger="api_usage_guard.core.ledger"):
            ledger.save(DailyUsageRecord(date="2024-03-31", request_count=1))
        assert "Could not save usage stats" in caplog.text
        assert ledger.load_today().request_count == 0

    def test_corrupt_file_is_replaced_on_save(self):
        """Verify the write path starts fresh when the file is malformed."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "api-usage.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("[{broken")

            ledger = make_ledger(JsonFileStore(path))
            assert ledger.load_today().request_count == 0

            ledger.save(DailyUsageRecord(date="2024-03-31", request_count=1, estimated_tokens=750))
            with open(path, encoding="utf-8") as f:
                assert json.load(f) == [
                    {"date": "2024-03-31", "requestCount": 1, "estimatedTokens": 750, "totalCosts": 0.0}
                ]


class TestCheckLimits:
    """Test pre-flight admission checks."""

    def test_within_limits(self):
        """Verify spend under both ceilings is admitted."""
        decision = make_ledger().check_limits(2, 1500)
        assert decision.can_proceed
        assert decision.reason is None
        assert decision.usage.request_count == 0

    def test_exactly_at_ceiling_is_allowed(self):
        """Verify reaching but not passing a ceiling is admitted."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", request_count=1498)])
        assert make_ledger(store).check_limits(2, 0).can_proceed

    def test_request_ceiling(self):
        """Verify the request ceiling refuses independently of tokens."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", request_count=1499)])
        decision = make_ledger(store).check_limits(2, 0)
        assert not decision.can_proceed
        assert decision.reason == "Would exceed daily request limit (1501/1500)"

    def test_token_ceiling(self):
        """Verify the token ceiling refuses independently of requests."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", estimated_tokens=999_500)])
        decision = make_ledger(store).check_limits(1, 750)
        assert not decision.can_proceed
        assert decision.reason == "Would exceed daily token limit (1000250/1000000)"

    def test_request_check_runs_first(self):
        """Verify the request ceiling is reported when both are exceeded."""
        store = InMemoryStore([
            DailyUsageRecord(date="2024-03-31", request_count=1500, estimated_tokens=1_000_000)
        ])
        decision = make_ledger(store).check_limits(1, 1)
        assert "request limit" in decision.reason

    def test_check_records_nothing(self):
        """Verify the check is not a reservation."""
        store = InMemoryStore()
        ledger = make_ledger(store)
        ledger.check_limits(2, 1500)
        ledger.check_limits(2, 1500)
        assert store.writes == 0
        assert ledger.load_today().request_count == 0

    def test_negative_amounts_rejected(self):
        """Verify negative requests are programming errors."""
        with pytest.raises(ValueError):
            make_ledger().check_limits(-1, 0)

    def test_broken_store_does_not_block(self):
        """Verify storage failures never prevent the check."""
        assert make_ledger(BrokenStore()).check_limits(2, 1500).can_proceed

    def test_check_operations(self):
        """Verify operation counts are scaled by the configured estimate."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", request_count=8)])
        ledger = make_ledger(
            store,
            policy=QuotaPolicy(max_requests_per_day=10, max_tokens_per_day=1_000_000),
            per_operation=OperationEstimate(requests=1, tokens=750)
        )
        assert ledger.check_operations(2).can_proceed
        decision = ledger.check_operations(3)
        assert decision.reason == "Would exceed daily request limit (11/10)"


class TestRecordUsage:
    """Test post-hoc usage recording."""

    def test_accumulates_deltas(self):
        """Verify repeated recording sums the deltas."""
        ledger = make_ledger()
        deltas = [(1, 750), (0, 10), (3, 2000), (1, 0)]
        for requests, tokens in deltas:
            ledger.record_usage(requests, tokens)

        usage = ledger.load_today()
        assert usage.request_count == sum(r for r, _ in deltas)
        assert usage.estimated_tokens == sum(t for _, t in deltas)

    def test_counters_never_decrease(self):
        """Verify a negative delta is refused and nothing changes."""
        ledger = make_ledger()
        ledger.record_usage(2, 1500)
        with pytest.raises(ValueError):
            ledger.record_usage(-1, 0)
        assert ledger.load_today().request_count == 2

    def test_returns_merged_record(self):
        """Verify the merged record is returned."""
        ledger = make_ledger()
        ledger.record_usage(1, 750)
        usage = ledger.record_usage(1, 750)
        assert usage == DailyUsageRecord(date="2024-03-31", request_count=2, estimated_tokens=1500)

    def test_cost_attribution(self):
        """Verify a non-zero rate attributes cost to the day."""
        ledger = make_ledger(cost_per_1k_tokens=0.5)
        ledger.record_usage(1, 2000)
        assert ledger.load_today().total_cost == 1.0

    def test_free_tier_cost_is_zero(self):
        """Verify the default rate records zero cost."""
        ledger = make_ledger()
        ledger.record_usage(1, 750)
        assert ledger.load_today().total_cost == 0.0

    def test_unwritable_store_does_not_abort(self):
        """Verify recording on a read-only store returns normally."""
        ledger = make_ledger(InMemoryStore(fail_writes=True))
        usage = ledger.record_usage(1, 750)
        assert usage.request_count == 1

    def test_day_rollover_starts_new_record(self):
        """Verify spend recorded yesterday does not count today."""
        store = InMemoryStore()
        current = {"day": TODAY - timedelta(days=1)}
        ledger = UsageLedger(store=store, today=lambda: current["day"])
        ledger.record_usage(5, 3750)

        current["day"] = TODAY
        assert ledger.load_today().request_count == 0
        ledger.record_usage(1, 750)
        assert [r.request_count for r in store.records] == [5, 1]


class TestScenarios:
    """End-to-end scenarios over a real usage file."""

    def test_free_tier_day(self):
        """Verify check, record and refusal on one day."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ledger = make_ledger(JsonFileStore(os.path.join(temp_dir, "api-usage.json")))

            assert ledger.check_limits(2, 1500).can_proceed

            ledger.record_usage(1, 750)
            ledger.record_usage(1, 750)
            usage = ledger.load_today()
            assert usage.request_count == 2
            assert usage.estimated_tokens == 1500

            decision = ledger.check_limits(1500, 0)
            assert not decision.can_proceed
            assert "1502/1500" in decision.reason

    def test_fresh_ledger_sees_previous_runs(self):
        """Verify state is reloaded from the file, not cached."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "api-usage.json")
            make_ledger(JsonFileStore(path)).record_usage(1, 750)
            make_ledger(JsonFileStore(path)).record_usage(1, 750)
            assert make_ledger(JsonFileStore(path)).load_today().request_count == 2

    def test_from_config(self):
        """Verify a config-built ledger uses the configured file and policy."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config = LedgerConfig(
                policy=QuotaPolicy(max_requests_per_day=3),
                usage_file=os.path.join(temp_dir, "usage.json")
            )
            ledger = UsageLedger.from_config(config, today=lambda: TODAY)
            ledger.record_usage(2, 100)

            assert os.path.exists(config.usage_file)
            assert not ledger.check_limits(2, 0).can_proceed


class TestCurrentUsage:
    """Test the compact usage snapshot."""

    def test_snapshot(self):
        """Verify the snapshot fields and rounded percentage."""
        store = InMemoryStore([
            DailyUsageRecord(date="2024-03-31", request_count=75, estimated_tokens=56_250)
        ])
        snapshot = make_ledger(store).current_usage()
        assert snapshot.date == "2024-03-31"
        assert snapshot.daily_requests == 75
        assert snapshot.daily_tokens == 56_250
        assert snapshot.usage_percentage == 5

    def test_half_percent_rounds_up(self):
        """Verify halves round up."""
        store = InMemoryStore([DailyUsageRecord(date="2024-03-31", request_count=5)])
        ledger = make_ledger(store, policy=QuotaPolicy(max_requests_per_day=200))
        assert ledger.current_usage().usage_percentage == 3
