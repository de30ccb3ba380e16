"""
Configuration management and loading.

Holds the quota ceilings of the model provider's free tier and the
deployment settings of the usage ledger.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass(frozen=True)
class QuotaPolicy:
    """Daily and per-minute ceilings enforced by the model provider."""
    max_requests_per_day: int = 1500
    max_tokens_per_day: int = 1_000_000
    max_requests_per_minute: int = 15

    def __post_init__(self):
        """Validate ceilings are positive."""
        if self.max_requests_per_day <= 0:
            raise ValueError("max_requests_per_day must be > 0")
        if self.max_tokens_per_day <= 0:
            raise ValueError("max_tokens_per_day must be > 0")
        if self.max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be > 0")


# Gemini free tier
FREE_TIER_POLICY = QuotaPolicy()


@dataclass(frozen=True)
class OperationEstimate:
    """Expected spend of one chargeable operation (one generated post)."""
    requests: int = 1
    tokens: int = 750

    def __post_init__(self):
        """Validate the estimate is usable as a divisor."""
        if self.requests <= 0:
            raise ValueError("requests must be > 0")
        if self.tokens <= 0:
            raise ValueError("tokens must be > 0")

    def scaled(self, count: int) -> "OperationEstimate":
        """Spend of ``count`` operations performed back to back."""
        if count <= 0:
            raise ValueError("count must be > 0")
        return OperationEstimate(requests=self.requests * count, tokens=self.tokens * count)


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    policy: QuotaPolicy = field(default_factory=QuotaPolicy)
    usage_file: str = "api-usage.json"
    retention_days: int = 30
    weekly_window_days: int = 7
    cost_per_1k_tokens: float = 0.0
    per_operation: OperationEstimate = field(default_factory=OperationEstimate)

    def __post_init__(self):
        """Validate storage and reporting settings."""
        if not self.usage_file:
            raise ValueError("usage_file cannot be empty")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be > 0")
        if self.weekly_window_days <= 0:
            raise ValueError("weekly_window_days must be > 0")
        if self.cost_per_1k_tokens < 0:
            raise ValueError("cost_per_1k_tokens cannot be negative")


_SECTION_KEYS = {
    'limits': {'max_requests_per_day', 'max_tokens_per_day', 'max_requests_per_minute'},
    'storage': {'usage_file', 'retention_days'},
    'reporting': {'weekly_window_days', 'requests_per_operation', 'tokens_per_operation'},
    'pricing': {'cost_per_1k_tokens'},
}


def load_ledger_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from YAML file.

    Every section is optional and falls back to the free-tier defaults,
    but anything present is validated strictly so that a typo cannot
    silently raise a ceiling.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    limits = sections['limits']
    policy = QuotaPolicy(
        max_requests_per_day=_positive_int(limits, 'max_requests_per_day', 1500, "limits"),
        max_tokens_per_day=_positive_int(limits, 'max_tokens_per_day', 1_000_000, "limits"),
        max_requests_per_minute=_positive_int(limits, 'max_requests_per_minute', 15, "limits"),
    )

    storage = sections['storage']
    usage_file = storage.get('usage_file', "api-usage.json")
    if not isinstance(usage_file, str) or not usage_file.strip():
        raise ValueError("'usage_file' in storage must be a non-empty string")

    reporting = sections['reporting']
    per_operation = OperationEstimate(
        requests=_positive_int(reporting, 'requests_per_operation', 1, "reporting"),
        tokens=_positive_int(reporting, 'tokens_per_operation', 750, "reporting"),
    )

    pricing = sections['pricing']
    cost = pricing.get('cost_per_1k_tokens', 0.0)
    if isinstance(cost, bool) or not isinstance(cost, (int, float)) or cost < 0:
        raise ValueError("'cost_per_1k_tokens' in pricing must be a number >= 0")

    return LedgerConfig(
        policy=policy,
        usage_file=usage_file,
        retention_days=_positive_int(storage, 'retention_days', 30, "storage"),
        weekly_window_days=_positive_int(reporting, 'weekly_window_days', 7, "reporting"),
        cost_per_1k_tokens=float(cost),
        per_operation=per_operation,
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a validated config section, empty when absent."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _positive_int(data: Dict[str, Any], key: str, default: int, path: str) -> int:
    """Read an integer setting that must be > 0.

    Args:
        data: Section data
        key: Setting name
        default: Value used when the key is absent
        path: Section name for error messages

    Returns:
        The validated integer

    Raises:
        ValueError: If the value is not a positive integer
    """
    value = data.get(key, default)
    # bool is an int subclass; `true` is never a valid ceiling
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be an integer > 0")
    return value
