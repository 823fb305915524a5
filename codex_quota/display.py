"""Rich rendering for account lists, sync summaries and quota windows."""

import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from codex_quota.models import DivergenceReport, RemoveResult, SyncResult
from codex_quota.usage import UsageReport


def format_expiry(expires: Optional[int], now: Optional[int] = None) -> tuple[str, str]:
    """Classify an expiry (epoch ms) for display as (status, text).

    >>> format_expiry(None)
    ('unknown', 'Unknown')
    >>> format_expiry(1_000, now=2_000)
    ('expired', 'Expired')
    >>> format_expiry(2_000 + 120_000, now=2_000)
    ('expiring', 'Expiring in 2m')
    >>> format_expiry(2_000 + 26 * 3_600_000, now=2_000)
    ('valid', '1d 2h')
    """
    if not expires:
        return "unknown", "Unknown"
    now = int(time.time() * 1000) if now is None else now
    diff = expires - now
    if diff <= 0:
        return "expired", "Expired"
    if diff < 5 * 60 * 1000:
        return "expiring", f"Expiring in {-(-diff // 60000)}m"
    hours, rem = divmod(diff, 3_600_000)
    mins = rem // 60000
    if hours > 24:
        return "valid", f"{hours // 24}d {hours % 24}h"
    if hours > 0:
        return "valid", f"{hours}h {mins}m"
    return "valid", f"{mins}m"


def format_reset(seconds: Optional[int]) -> str:
    """Compact reset countdown.

    >>> format_reset(3 * 3600 + 120)
    'resets in 3h 2m'
    >>> format_reset(None)
    ''
    """
    if not seconds:
        return ""
    hours, mins = seconds // 3600, (seconds % 3600) // 60
    if hours > 24:
        return f"resets in {hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"resets in {hours}h {mins}m"
    return f"resets in {mins}m"


def shorten_path(path: str) -> str:
    home = str(Path.home())
    return "~" + path[len(home):] if path.startswith(home) else path


def bar(percent_left: Optional[float], width: int = 20) -> str:
    if percent_left is None:
        return "?" * width
    filled = round(percent_left / 100 * width)
    return "█" * filled + "░" * (width - filled)


_EXPIRY_STYLE = {"valid": "green", "expiring": "yellow", "expired": "red", "unknown": "dim"}


def render_accounts(
    console: Console,
    provider: str,
    accounts: list,
    active_label: Optional[str],
    divergence: Optional[DivergenceReport] = None,
) -> None:
    if not accounts:
        console.print(f"[yellow]No {provider} accounts found[/yellow]")
        return

    table = Table(title=f"{provider} accounts", show_header=True)
    table.add_column("", width=1)
    table.add_column("Label", style="cyan")
    table.add_column("Identity", style="magenta")
    table.add_column("Token", width=14)
    table.add_column("Source", style="dim")
    for account in accounts:
        status, text = format_expiry(account.expires)
        identity = getattr(account, "email", None) or getattr(account, "org_id", None) or ""
        table.add_row(
            "*" if account.label == active_label else "",
            account.label,
            identity,
            f"[{_EXPIRY_STYLE[status]}]{text}[/{_EXPIRY_STYLE[status]}]",
            "env" if account.is_env else shorten_path(account.source),
        )
    console.print(table)

    if divergence is not None and divergence.diverged:
        if divergence.provider == "openai":
            where = f" (matches '{divergence.cli_label}')" if divergence.cli_label else ""
            console.print(
                f"[yellow]Warning:[/yellow] Codex CLI is logged into another account{where}. "
                f"Run switch or sync to fix."
            )
        else:
            stale = [s.name for s in divergence.per_store if s.considered and s.matches is False]
            console.print(
                f"[yellow]Warning:[/yellow] {', '.join(stale)} hold different Claude tokens "
                f"than '{divergence.active_label}'. Run sync to fix."
            )


def render_sync_result(console: Console, result: SyncResult, *, action: str = "Synced") -> None:
    prefix = "[dim](dry run)[/dim] " if result.dry_run else ""
    who = f" ({result.email})" if result.email else ""
    console.print(f"{prefix}[green]{action}[/green] [bold]{result.active_label}[/bold]{who}")
    for path in result.pulled:
        console.print(f"  [cyan]pulled[/cyan]  {shorten_path(path)}")
    for path in result.updated:
        console.print(f"  [green]updated[/green] {shorten_path(path)}")
    for path in result.skipped:
        console.print(f"  [dim]skipped {shorten_path(path)} (not found)[/dim]")
    for warning in result.warnings:
        console.print(f"  [yellow]Warning:[/yellow] {warning}")


def render_remove(console: Console, result: RemoveResult) -> None:
    console.print(f"[green]Removed[/green] [bold]{result.label}[/bold] from {shorten_path(result.path)}")
    if result.active_cleared:
        console.print("  activeLabel cleared")
    if result.marker_cleared:
        console.print("  Codex CLI tracked label cleared")


def render_usage(console: Console, reports: list[UsageReport]) -> None:
    for report in reports:
        console.print(f"[bold cyan]{report.label}[/bold cyan] [dim]{report.provider}[/dim]")
        if not report.success:
            console.print(f"  [red]Error:[/red] {report.error}")
            continue
        if not report.windows:
            console.print("  (no usage data)")
        for window in report.windows:
            left = "?" if window.percent_left is None else f"{round(window.percent_left)}% left"
            reset = format_reset(window.reset_after_seconds) or (
                f"resets {window.resets_at}" if window.resets_at else ""
            )
            console.print(f"  {window.name:<8} {bar(window.percent_left)} {left} [dim]{reset}[/dim]")
        if report.plan_type:
            console.print(f"  Plan: {report.plan_type}")
