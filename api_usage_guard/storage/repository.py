"""
Repository operations over the collection of daily records.

Pure functions: nothing here touches a store, so the ledger logic can be
exercised on plain lists.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional

from .models import DailyUsageRecord


def find_record(records: List[DailyUsageRecord], day: str) -> Optional[DailyUsageRecord]:
    """Return the first record for ``day``, or None."""
    for record in records:
        if record.date == day:
            return record
    return None


def upsert_record(records: List[DailyUsageRecord], record: DailyUsageRecord) -> List[DailyUsageRecord]:
    """Insert ``record`` or replace the stored record with the same date.

    Position of an existing date is kept; a new date is appended. Any
    duplicate dates already present collapse into the single new entry.

    Args:
        records: Current collection
        record: Record to store

    Returns:
        New collection holding at most one record per date
    """
    by_date: Dict[str, DailyUsageRecord] = {}
    for existing in records:
        by_date.setdefault(existing.date, existing)
    by_date[record.date] = record
    return list(by_date.values())


def within_window(record: DailyUsageRecord, today: date, days: int) -> bool:
    """True if ``record`` falls in the trailing ``days`` days ending today.

    A window of 30 days keeps today and the 29 days before it. Records
    dated after ``today`` are kept as well.
    """
    return record.day > today - timedelta(days=days)


def prune_records(records: List[DailyUsageRecord], today: date, retention_days: int = 30) -> List[DailyUsageRecord]:
    """Drop records that fell out of the retention window."""
    return [record for record in records if within_window(record, today, retention_days)]


def records_in_window(records: List[DailyUsageRecord], today: date, days: int = 7) -> List[DailyUsageRecord]:
    """Records of the trailing ``days`` days, oldest first."""
    selected = [record for record in records if within_window(record, today, days)]
    return sorted(selected, key=lambda record: record.date)
