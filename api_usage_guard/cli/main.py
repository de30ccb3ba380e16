"""
CLI interface for API Usage Guard.

Provides command-line access to the usage ledger for the scheduled
content-generation jobs and their CI steps.
"""

import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from api_usage_guard.config.loader import LedgerConfig, load_ledger_config
from api_usage_guard.core.badges import update_readme
from api_usage_guard.core.ledger import UsageLedger
from api_usage_guard.core.reporting import DailyReport, UsageLevel, WeeklyReport

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_LEVEL_BANNERS = {
    UsageLevel.WARNING: "[bold yellow]WARNING:[/] Approaching daily limits!",
    UsageLevel.INFO: "[cyan]INFO:[/] Over 50% of daily limits used",
    UsageLevel.GOOD: "[green]GOOD:[/] Well within daily limits",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


def _build_ledger(usage_file: Optional[str], config_path: Optional[str]) -> UsageLedger:
    """Create the ledger from the config file and command-line overrides."""
    config = load_ledger_config(config_path) if config_path else LedgerConfig()
    if usage_file:
        config = replace(config, usage_file=usage_file)
    return UsageLedger.from_config(config)


def _ledger(ctx: typer.Context) -> UsageLedger:
    return ctx.obj["ledger"]


@app.callback()
def main(
    ctx: typer.Context,
    usage_file: Optional[str] = typer.Option(
        None,
        "--usage-file",
        "-u",
        help="Path to the JSON usage file (default: api-usage.json)"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file with limits, storage and reporting settings"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log ledger activity"
    )
):
    """API Usage Guard CLI."""
    _configure_logging(verbose)
    try:
        ctx.obj = {"ledger": _build_ledger(usage_file, config)}
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _display_daily_report(report: DailyReport) -> None:
    """Display today's usage in the free-tier format."""
    console.print("\n[bold]API USAGE (FREE TIER)[/bold]")
    console.print("-" * 40)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Date")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_row(
        report.date,
        f"{report.requests_used:,}/{report.requests_limit:,} ({report.request_percent:.1f}%)",
        f"{report.tokens_used:,}/{report.tokens_limit:,} ({report.token_percent:.1f}%)",
        f"${report.total_cost:,.2f}"
    )
    console.print(table)

    console.print("\n[bold]Remaining capacity[/bold]")
    console.print(f"Requests: {report.remaining_requests:,}")
    console.print(f"Tokens: {report.remaining_tokens:,}")
    console.print(f"Estimated operations possible today: {report.estimated_operations_remaining}")

    console.print(f"\n{_LEVEL_BANNERS[report.level]}")


def _display_weekly_report(report: WeeklyReport) -> None:
    """Display the trailing-week summary."""
    if not report.has_data:
        console.print(f"\n[dim]No usage data for the last {report.window_days} days[/]")
        return

    console.print(f"\n[bold]WEEKLY USAGE SUMMARY (Last {report.window_days} Days)[/bold]")
    console.print("-" * 40)
    console.print(f"Days recorded: {report.days_recorded}")
    console.print(f"Total Requests: {report.total_requests:,}")
    console.print(f"Total Tokens: {report.total_tokens:,}")
    console.print(f"Avg Requests/Day: {report.avg_requests_per_day:,.1f}")
    console.print(f"Avg Tokens/Day: {report.avg_tokens_per_day:,.1f}")
    console.print(f"Total Cost: ${report.total_cost:,.2f}")


@app.command()
def report(ctx: typer.Context):
    """Show today's usage against the daily ceilings."""
    _display_daily_report(_ledger(ctx).report())


@app.command()
def weekly(ctx: typer.Context):
    """Show usage totals and averages for the trailing week."""
    _display_weekly_report(_ledger(ctx).weekly_report())


@app.command()
def check(
    ctx: typer.Context,
    requests: int = typer.Option(
        2,
        "--requests",
        "-r",
        min=0,
        help="Model calls about to be made"
    ),
    tokens: int = typer.Option(
        1500,
        "--tokens",
        "-t",
        min=0,
        help="Tokens those calls are expected to consume"
    )
):
    """
    Check whether the planned spend fits under today's ceilings.

    Exits non-zero and prints current usage when it does not. Nothing is
    recorded; run `record` once the work is done.
    """
    ledger = _ledger(ctx)
    decision = ledger.check_limits(requests, tokens)
    if not decision.can_proceed:
        console.print(f"[red]API limit reached:[/] {decision.reason}")
        _display_daily_report(ledger.report())
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] {requests} request(s) / {tokens:,} token(s) fit within today's limits"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    ctx: typer.Context,
    requests: int = typer.Option(
        1,
        "--requests",
        "-r",
        min=0,
        help="Model calls made"
    ),
    tokens: int = typer.Option(
        750,
        "--tokens",
        "-t",
        min=0,
        help="Tokens those calls are estimated to have used"
    )
):
    """Record spend that has already happened."""
    usage = _ledger(ctx).record_usage(requests, tokens)
    console.print(
        f"[green]✓[/] {usage.date}: {usage.request_count:,} request(s), "
        f"{usage.estimated_tokens:,} token(s)"
    )


@app.command()
def current(ctx: typer.Context):
    """Print today's usage snapshot as JSON."""
    snapshot = _ledger(ctx).current_usage()
    console.print_json(json.dumps(asdict(snapshot)))


@app.command()
def badges(
    ctx: typer.Context,
    readme: str = typer.Option(
        "README.md",
        "--readme",
        help="README file holding the usage badges"
    )
):
    """Update README badges with today's usage."""
    path = Path(readme)
    try:
        text = path.read_text(encoding="utf-8")
        path.write_text(update_readme(text, _ledger(ctx).report()), encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error updating README badges:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] README badges updated successfully")


if __name__ == "__main__":
    app()
