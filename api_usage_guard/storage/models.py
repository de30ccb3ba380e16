"""
Data models for storage layer.

Defines the daily usage record and its persisted JSON shape.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict

DATE_FORMAT = "%Y-%m-%d"


def parse_day(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` day key.

    Raises:
        ValueError: If the key is not a valid calendar day
    """
    return datetime.strptime(value, DATE_FORMAT).date()


@dataclass(frozen=True)
class DailyUsageRecord:
    """Usage attributed to one calendar day.

    Counters only ever grow: ``add`` is the single way to derive a new
    record from an existing one and it rejects negative deltas.
    """
    date: str
    request_count: int = 0
    estimated_tokens: int = 0
    total_cost: float = 0.0

    def __post_init__(self):
        """Validate the day key and counters."""
        if not isinstance(self.date, str):
            raise ValueError("date must be a YYYY-MM-DD string")
        # strptime also accepts "2024-1-5"; only the zero-padded key is unique
        if parse_day(self.date).strftime(DATE_FORMAT) != self.date:
            raise ValueError(f"date must be zero-padded YYYY-MM-DD, got {self.date!r}")
        if self.request_count < 0:
            raise ValueError("request_count cannot be negative")
        if self.estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")
        if self.total_cost < 0:
            raise ValueError("total_cost cannot be negative")

    @classmethod
    def empty(cls, day: date) -> "DailyUsageRecord":
        """Zero-valued record for ``day``."""
        return cls(date=day.strftime(DATE_FORMAT))

    @property
    def day(self) -> date:
        return parse_day(self.date)

    def add(self, requests: int, tokens: int, cost: float = 0.0) -> "DailyUsageRecord":
        """Return a copy with the deltas added to the counters."""
        if requests < 0 or tokens < 0 or cost < 0:
            raise ValueError("usage deltas cannot be negative")
        return replace(
            self,
            request_count=self.request_count + requests,
            estimated_tokens=self.estimated_tokens + tokens,
            total_cost=self.total_cost + cost,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Persisted representation."""
        return {
            "date": self.date,
            "requestCount": self.request_count,
            "estimatedTokens": self.estimated_tokens,
            "totalCosts": self.total_cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyUsageRecord":
        """Build a record from its persisted representation.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"usage record must be an object, got {type(data).__name__}")
        try:
            day, requests, tokens = data["date"], data["requestCount"], data["estimatedTokens"]
        except KeyError as e:
            raise ValueError(f"usage record missing field {e}")
        cost = data.get("totalCosts", 0)

        for name, value in (("requestCount", requests), ("estimatedTokens", tokens)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
        if isinstance(cost, bool) or not isinstance(cost, (int, float)):
            raise ValueError("totalCosts must be a number")
        try:
            cost = float(cost)
        except OverflowError:
            raise ValueError("totalCosts is out of range") from None

        return cls(
            date=day,
            request_count=requests,
            estimated_tokens=tokens,
            total_cost=cost,
        )
