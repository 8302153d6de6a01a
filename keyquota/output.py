"""Rich rendering of the credential table and query history, plus export writing."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from keyquota.security import check_output_permissions, make_private
from keyquota.state import Level
from keyquota.view import HistoryRowView, TableView

_USAGE_COLORS = {
    "ok": "green",
    "warning": "yellow",
    "danger": "red",
}

_NOTIFY_STYLES: dict[str, str] = {
    "success": "green",
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
}


def _usage_cell(text: Optional[str], percent: Optional[float], level: Optional[str], error: Optional[str]) -> Text:
    if text is None:
        if error:
            return Text(f"⚠ {error}", style="red")
        return Text("not checked", style="dim")
    color = _USAGE_COLORS.get(level or "ok", "white")
    cell = Text(f"{percent:.0f}%", style=f"bold {color}")
    cell.append(f"  {text}", style="dim")
    return cell


def render_table(view: TableView, console: Optional[Console] = None) -> None:
    """Print the credential table with per-row usage and totals."""
    console = console or Console()
    if view.is_empty:
        console.print("[dim]No keys saved yet. Import some with `keyquota import`.[/dim]")
        return

    table = Table(title="API Keys", show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("Account", style="cyan")
    table.add_column("Key")
    table.add_column("Usage")
    table.add_column("Check", justify="center")
    table.add_column("ID", style="dim")

    for row in view.rows:
        account = Text(row.account_label, style="bold")
        if row.password_mask:
            account.append(f"\n{row.password_mask}", style="dim")
        check = Text(row.check_label, style="dim" if row.check_disabled else "bold blue")
        table.add_row(
            str(row.index),
            account,
            Text(row.masked_secret, style="blue"),
            _usage_cell(row.usage_text, row.usage_percent, row.usage_level, row.error),
            check,
            row.record_id,
        )
    console.print(table)

    if view.totals:
        console.print(
            f"  [bold]Total:[/bold] {view.totals.used:,} / {view.totals.limit:,} characters"
        )
    if view.cooldown_remaining:
        console.print(f"  [dim]Next check available in {view.cooldown_remaining}s[/dim]")


def render_history(rows: list[HistoryRowView], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not rows:
        console.print("[dim]No query history yet.[/dim]")
        return
    table = Table(title="Recent Checks")
    table.add_column("Result")
    table.add_column("When", style="dim")
    table.add_column("Details")
    for row in rows:
        color = "green" if row.success else "red"
        table.add_row(f"[{color}]{row.label}[/{color}]", row.timestamp, row.summary)
    console.print(table)


class RichRenderer:
    """CLI renderer: prints notifications immediately, keeps the latest view for the end."""

    def __init__(self, console: Optional[Console] = None, err_console: Optional[Console] = None):
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.last_view: Optional[TableView] = None
        self.notifications: list[tuple[Level, str]] = []

    def render(self, view: TableView) -> None:
        self.last_view = view

    def notify(self, level: Level, message: str) -> None:
        self.notifications.append((level, message))
        style = _NOTIFY_STYLES.get(level, "white")
        self.err_console.print(f"[{style}]{message}[/{style}]")

    def flush(self) -> None:
        if self.last_view is not None:
            render_table(self.last_view, self.console)


def write_export(
    text: str,
    path: Path,
    force_insecure: bool = False,
    console: Optional[Console] = None,
) -> bool:
    """Write an export file. Returns True on success."""
    console = console or Console(stderr=True)
    if not check_output_permissions(path, force=force_insecure):
        console.print(
            f"[red]Refusing to write to {path}: symlinked or world-readable. "
            f"Use --force-insecure-output to override.[/red]"
        )
        return False
    path.write_text(text, encoding="utf-8")
    make_private(path)
    console.print(f"[green]Exported keys to {path}[/green]")
    return True
