"""
README status badges.

Renders today's usage as shields.io badges and swaps them into README
text in place of the previous ones.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from .reporting import DailyReport

_SHIELDS_URL = "https://img.shields.io/badge"

_REQUESTS_BADGE = re.compile(r"!\[API Usage\]\(https://img\.shields\.io/badge/Daily%20Requests-.*?\)")
_TOKENS_BADGE = re.compile(r"!\[Token Usage\]\(https://img\.shields\.io/badge/Daily%20Tokens-.*?\)")
_STATUS_BADGE = re.compile(r"!\[Status\]\(https://img\.shields\.io/badge/Status-.*?\)")
_LAST_UPDATED = re.compile(r"\*\*Last Updated:\*\* .*")


@dataclass(frozen=True)
class UsageBadges:
    """Markdown for each badge."""
    requests: str
    tokens: str
    status: str


def _color(percent: float) -> str:
    if percent > 80:
        return "red"
    if percent > 50:
        return "yellow"
    return "green"


def _shield(alt: str, label: str, message: str, color: str) -> str:
    # shields.io treats "-" as a separator and "_" as a space
    message = quote(message.replace("-", "--").replace("_", "__"), safe="")
    return f"![{alt}]({_SHIELDS_URL}/{quote(label)}-{message}-{color})"


def render_badges(report: DailyReport) -> UsageBadges:
    """Build the three badges for ``report``."""
    limited = (
        report.requests_used >= report.requests_limit
        or report.tokens_used >= report.tokens_limit
    )
    return UsageBadges(
        requests=_shield(
            "API Usage", "Daily Requests",
            f"{report.requests_used}/{report.requests_limit}",
            _color(report.request_percent)
        ),
        tokens=_shield(
            "Token Usage", "Daily Tokens",
            f"{report.tokens_used:,}/{report.tokens_limit:,}",
            _color(report.token_percent)
        ),
        status=_shield(
            "Status", "Status",
            "Limited" if limited else "Active",
            "red" if limited else "brightgreen"
        ),
    )


def update_readme(readme: str, report: DailyReport, now: Optional[datetime] = None) -> str:
    """Replace the usage badges and last-updated line in ``readme``.

    Text without badge markup is returned unchanged apart from the
    ``**Last Updated:**`` line, if present.
    """
    badges = render_badges(report)
    stamp = (now or datetime.now(timezone.utc)).isoformat()

    readme = _REQUESTS_BADGE.sub(lambda _: badges.requests, readme)
    readme = _TOKENS_BADGE.sub(lambda _: badges.tokens, readme)
    readme = _STATUS_BADGE.sub(lambda _: badges.status, readme)
    return _LAST_UPDATED.sub(lambda _: f"**Last Updated:** {stamp}", readme)
