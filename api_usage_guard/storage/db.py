"""
Usage store backends.

A store reads and writes the whole collection of daily records. Reads
never raise: failures come back as a ``ReadOutcome`` carrying the error so
the ledger can recover with an empty collection. Writes raise ``OSError``
and leave recovery to the caller.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .models import DailyUsageRecord


@dataclass(frozen=True)
class ReadOutcome:
    """Result of reading the persisted collection."""
    records: List[DailyUsageRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UsageStore:
    """Interface for whole-collection persistence of daily records."""

    def read(self) -> ReadOutcome:
        raise NotImplementedError

    def write(self, records: List[DailyUsageRecord]) -> None:
        raise NotImplementedError


class JsonFileStore(UsageStore):
    """Daily records kept as a JSON array in a single local file."""

    def __init__(self, path: str = "api-usage.json"):
        """Initialize the store with a file path.

        Args:
            path: Path to the JSON usage file
        """
        self.path = Path(path)

    def read(self) -> ReadOutcome:
        """Read every record from the file.

        Returns:
            ReadOutcome with the records, or an empty one with ``error`` set
            when the file is missing, unreadable or malformed
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ReadOutcome(error=f"{self.path} does not exist")
        except (OSError, UnicodeDecodeError) as e:
            return ReadOutcome(error=f"could not read {self.path}: {e}")

        # Deeply nested arrays exhaust the decoder's recursion limit
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            return ReadOutcome(error=f"{self.path} is not valid JSON: {e}")
        if not isinstance(data, list):
            return ReadOutcome(error=f"{self.path} must hold a JSON array")

        try:
            records = [DailyUsageRecord.from_dict(item) for item in data]
        except ValueError as e:
            return ReadOutcome(error=f"{self.path} holds a malformed record: {e}")
        return ReadOutcome(records=records)

    def write(self, records: List[DailyUsageRecord]) -> None:
        """Replace the file contents with ``records``.

        The new contents go to a temporary file in the same directory which
        is then renamed over the old one, so readers see either the previous
        collection or the new one.

        Raises:
            OSError: If the file cannot be written
        """
        payload = json.dumps([record.to_dict() for record in records], indent=2)
        directory = self.path.parent
        fd, tmp_path = tempfile.mkstemp(
            dir=str(directory), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


class InMemoryStore(UsageStore):
    """Store kept in a list, for tests and dry runs."""

    def __init__(self, records: Optional[List[DailyUsageRecord]] = None, fail_writes: bool = False):
        self.records = list(records or [])
        self.fail_writes = fail_writes
        self.writes = 0

    def read(self) -> ReadOutcome:
        return ReadOutcome(records=list(self.records))

    def write(self, records: List[DailyUsageRecord]) -> None:
        if self.fail_writes:
            raise OSError("store is read-only")
        self.records = list(records)
        self.writes += 1
