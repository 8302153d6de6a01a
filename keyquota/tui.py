"""keyquota — interactive Textual UI.

Launch: keyquota tui
"""

from __future__ import annotations

import asyncio
import io
from datetime import date
from typing import Optional

import httpx
from rich.console import Console
from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Static, TextArea

from keyquota.config import Settings
from keyquota.controller import AppController, build_controller
from keyquota.models import find_record
from keyquota.output import write_export
from keyquota.relay import RelayClient
from keyquota.state import Level
from keyquota.view import TableView, project_history

USAGE_STYLES = {
    "ok": "green",
    "warning": "yellow",
    "danger": "red",
}

_SEVERITY = {
    "success": "information",
    "info": "information",
    "warning": "warning",
    "error": "error",
}

_CSS = """
#paste { height: 8; }
#actions { height: auto; margin: 1 0; }
#actions Button { margin-right: 1; }
#totals { margin: 1 1; color: $text-muted; }
.modal-body { width: 70; height: auto; padding: 1 2; border: thick $primary; background: $surface; }
.modal-buttons { height: auto; margin-top: 1; }
.modal-buttons Button { margin-right: 1; }
"""


# ═══════════════════════════════════════════════════════════════════════════
#  Modals
# ═══════════════════════════════════════════════════════════════════════════
class EditScreen(ModalScreen[Optional[tuple[str, str, str]]]):
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, secret: str, account: str, password: str) -> None:
        super().__init__()
        self._values = (secret, account, password)

    def compose(self) -> ComposeResult:
        secret, account, password = self._values
        with Vertical(classes="modal-body"):
            yield Label("Edit key")
            yield Input(value=secret, placeholder="API key", id="edit-key")
            yield Input(value=account, placeholder="Account email", id="edit-account")
            yield Input(value=password, placeholder="Password", password=True, id="edit-password")
            with Horizontal(classes="modal-buttons"):
                yield Button("Save", id="btn-save", variant="primary")
                yield Button("Cancel", id="btn-cancel")

    @on(Button.Pressed, "#btn-save")
    def on_save(self) -> None:
        self.dismiss((
            self.query_one("#edit-key", Input).value,
            self.query_one("#edit-account", Input).value,
            self.query_one("#edit-password", Input).value,
        ))

    @on(Button.Pressed, "#btn-cancel")
    def action_cancel(self) -> None:
        self.dismiss(None)


class ConfirmScreen(ModalScreen[bool]):
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, question: str) -> None:
        super().__init__()
        self._question = question

    def compose(self) -> ComposeResult:
        with Vertical(classes="modal-body"):
            yield Label(self._question)
            with Horizontal(classes="modal-buttons"):
                yield Button("Delete", id="btn-yes", variant="error")
                yield Button("Cancel", id="btn-no")

    @on(Button.Pressed, "#btn-yes")
    def on_yes(self) -> None:
        self.dismiss(True)

    @on(Button.Pressed, "#btn-no")
    def action_cancel(self) -> None:
        self.dismiss(False)


class HistoryScreen(ModalScreen[None]):
    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(self, controller: AppController) -> None:
        super().__init__()
        self._controller = controller

    def compose(self) -> ComposeResult:
        with Vertical(classes="modal-body"):
            yield Label("Recent checks")
            yield DataTable(id="history-table")
            with Horizontal(classes="modal-buttons"):
                yield Button("Clear history", id="btn-clear-history", variant="warning")
                yield Button("Close", id="btn-close")

    def on_mount(self) -> None:
        table = self.query_one("#history-table", DataTable)
        table.add_columns("Result", "When", "Details")
        self._load()

    def _load(self) -> None:
        table = self.query_one("#history-table", DataTable)
        table.clear()
        for row in project_history(self._controller.history()):
            table.add_row(Text(row.label, style="green" if row.success else "red"), row.timestamp, row.summary)

    @on(Button.Pressed, "#btn-clear-history")
    def on_clear(self) -> None:
        self._controller.clear_history()
        self._load()

    @on(Button.Pressed, "#btn-close")
    def action_close(self) -> None:
        self.dismiss(None)


# ═══════════════════════════════════════════════════════════════════════════
#  Renderer adapter
# ═══════════════════════════════════════════════════════════════════════════
class TuiRenderer:
    def __init__(self, app: "KeyquotaApp") -> None:
        self.app = app

    def render(self, view: TableView) -> None:
        self.app.show_view(view)

    def notify(self, level: Level, message: str) -> None:
        self.app.notify(message, severity=_SEVERITY.get(level, "information"), timeout=4)


# ═══════════════════════════════════════════════════════════════════════════
#  Main App
# ═══════════════════════════════════════════════════════════════════════════
class KeyquotaApp(App):
    """keyquota — API key vault with usage checks."""

    TITLE = "keyquota"
    SUB_TITLE = "API key usage"
    CSS = _CSS

    BINDINGS = [
        Binding("c", "check", "Check usage", show=True),
        Binding("e", "edit", "Edit", show=True),
        Binding("d", "delete", "Delete", show=True),
        Binding("y", "copy", "Copy key", show=True),
        Binding("h", "history", "History", show=True),
        Binding("q", "quit", "Quit", show=True),
    ]

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__()
        self.settings = settings
        self.transport = transport
        self.controller: Optional[AppController] = None
        self._http: Optional[httpx.AsyncClient] = None

    def compose(self) -> ComposeResult:
        yield Header()
        with VerticalScroll():
            yield Label("  Paste keys (Key: …  Account: …  Password: …)")
            yield TextArea(id="paste")
            with Horizontal(id="actions"):
                yield Button("Import", id="btn-import", variant="primary")
                yield Button("Export", id="btn-export")
                yield Button("History", id="btn-history")
                yield Button("Clear all", id="btn-clear", variant="error")
            yield DataTable(id="keys")
            yield Static("", id="totals")
        yield Footer()

    async def on_mount(self) -> None:
        table = self.query_one("#keys", DataTable)
        table.cursor_type = "row"
        table.add_columns("#", "Account", "Key", "Usage", "Check")

        self._http = httpx.AsyncClient(timeout=self.settings.timeout, max_redirects=0, transport=self.transport)
        relay = RelayClient(self.settings.relay_url, self._http)
        self.controller = build_controller(
            self.settings, TuiRenderer(self), asyncio.get_running_loop(), relay=relay,
        )
        table.focus()
        self.boot()

    async def on_unmount(self) -> None:
        if self.controller is not None:
            self.controller.close()
        if self._http is not None:
            await self._http.aclose()

    @work(exclusive=True, group="boot")
    async def boot(self) -> None:
        await self.controller.start()

    # ── rendering ──────────────────────────────────────────────────────────
    def show_view(self, view: TableView) -> None:
        table = self.query_one("#keys", DataTable)
        cursor = table.cursor_row
        table.clear()
        for row in view.rows:
            account = Text(row.account_label)
            if row.password_mask:
                account.append(f"  {row.password_mask}", style="dim")
            if row.usage_text is not None:
                usage = Text(f"{row.usage_percent:.0f}%  {row.usage_text}",
                             style=USAGE_STYLES.get(row.usage_level or "ok", "white"))
            elif row.error:
                usage = Text(f"⚠ {row.error}", style="red")
            else:
                usage = Text("not checked", style="dim")
            check = Text(row.check_label, style="dim" if row.check_disabled else "bold")
            table.add_row(str(row.index), account, row.masked_secret, usage, check, key=row.record_id)
        if view.rows:
            table.move_cursor(row=min(cursor, len(view.rows) - 1))

        totals = self.query_one("#totals", Static)
        if view.totals:
            totals.update(f"Total: {view.totals.used:,} / {view.totals.limit:,} characters")
        elif view.is_empty:
            totals.update("No keys saved yet. Paste some above and press Import.")
        else:
            totals.update("")

    def _selected_id(self) -> Optional[str]:
        table = self.query_one("#keys", DataTable)
        if self.controller is None or table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    # ── buttons ────────────────────────────────────────────────────────────
    @on(Button.Pressed, "#btn-import")
    def on_import(self) -> None:
        paste = self.query_one("#paste", TextArea)
        outcome = self.controller.import_text(paste.text)
        if outcome is not None and outcome.clear_input:
            paste.load_text("")

    @on(Button.Pressed, "#btn-export")
    def on_export(self) -> None:
        text = self.controller.export()
        if text is None:
            return
        path = self.settings.data_dir / f"keyquota_export_{date.today().isoformat()}.txt"
        quiet = Console(file=io.StringIO())
        if write_export(text, path, console=quiet):
            self.notify(f"Exported to {path}")
        else:
            self.notify(f"Refusing to write {path}", severity="error")

    @on(Button.Pressed, "#btn-history")
    def on_history(self) -> None:
        self.action_history()

    @on(Button.Pressed, "#btn-clear")
    def on_clear(self) -> None:
        def _done(confirmed: Optional[bool]) -> None:
            if confirmed:
                self.controller.clear()

        self.push_screen(ConfirmScreen("Delete ALL saved keys?"), _done)

    # ── row actions ────────────────────────────────────────────────────────
    def action_check(self) -> None:
        record_id = self._selected_id()
        if record_id is not None:
            self.run_check(record_id)

    @work(group="check")
    async def run_check(self, record_id: str) -> None:
        await self.controller.check(record_id)

    def action_edit(self) -> None:
        record_id = self._selected_id()
        record = find_record(self.controller.records, record_id) if record_id else None
        if record is None:
            return

        def _done(values: Optional[tuple[str, str, str]]) -> None:
            if values is not None:
                self.controller.edit(record_id, *values)

        self.push_screen(EditScreen(record.secret, record.account_email, record.account_password), _done)

    def action_delete(self) -> None:
        record_id = self._selected_id()
        if record_id is None:
            return

        def _done(confirmed: Optional[bool]) -> None:
            if confirmed:
                self.controller.delete(record_id)

        self.push_screen(ConfirmScreen("Delete this key?"), _done)

    def action_copy(self) -> None:
        record_id = self._selected_id()
        if record_id is None:
            return
        secret = self.controller.copy_secret(record_id)
        if secret is not None:
            self.copy_to_clipboard(secret)
            self.notify("API key copied to clipboard")

    def action_history(self) -> None:
        if self.controller is not None:
            self.push_screen(HistoryScreen(self.controller))
