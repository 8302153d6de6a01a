"""Controller: owns the live ``AppState`` and runs the effects transitions emit.

All front ends (CLI, TUI) drive the app through ``AppController`` and see it
only through the ``Renderer`` they pass in.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional, Protocol

from keyquota.codec import CredentialCodec
from keyquota.config import Settings
from keyquota.cooldown import CooldownState, CooldownTimer, Scheduler, is_cooling
from keyquota.errors import RelayError, ValidationError
from keyquota.fingerprint import derive_fingerprint
from keyquota.importer import ImportOutcome, export_text
from keyquota.models import CredentialRecord, HistoryEntry, find_record
from keyquota.relay import RelayClient
from keyquota.state import (
    AppState,
    Effect,
    Level,
    Notify,
    Persist,
    RecordHistory,
    Render,
    apply_clear,
    apply_delete,
    apply_edit,
    apply_import,
    complete_check,
    request_check,
)
from keyquota.store import CooldownMarker, HistoryLog, KeyValueStore, LoadStatus, PersistenceStore
from keyquota.view import TableView, project

logger = logging.getLogger(__name__)


class Renderer(Protocol):
    def render(self, view: TableView) -> None: ...

    def notify(self, level: Level, message: str) -> None: ...


class AppController:
    def __init__(
        self,
        store: PersistenceStore,
        history: HistoryLog,
        relay: Optional[RelayClient],
        renderer: Renderer,
        scheduler: Scheduler,
        cooldown_seconds: int = 10,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.history_log = history
        self.relay = relay
        self.renderer = renderer
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.wall_clock = wall_clock
        self.state = AppState()
        self.cooldown_marker = CooldownMarker(store.kv)
        # None until the first load finishes
        self.load_status: Optional[LoadStatus] = None
        self.timer = CooldownTimer(scheduler, cooldown_seconds, clock, on_change=self._on_cooldown_change)

    # ── effects ────────────────────────────────────────────────────────────
    def _run(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, Persist):
                self._persist(effect.silent)
            elif isinstance(effect, Render):
                self.renderer.render(project(self.state))
            elif isinstance(effect, Notify):
                self.renderer.notify(effect.level, effect.message)
            elif isinstance(effect, RecordHistory):
                self._record_history(effect.entry)

    def _persist(self, silent: bool) -> None:
        try:
            ok = self.store.save_records(self.state.records)
        except OSError as exc:
            logger.error("Saving credentials failed: %s", exc)
            self.renderer.notify("error", f"Save failed: {exc}")
            return
        if not ok:
            self.renderer.notify("error", "Save failed (encryption error)")
        elif not silent:
            self.renderer.notify("success", "Configuration saved")

    def _record_history(self, entry: HistoryEntry) -> None:
        try:
            self.history_log.add(entry)
        except OSError as exc:
            logger.warning("Could not write query history: %s", exc)

    def _on_cooldown_change(self, cooldown: CooldownState) -> None:
        self.state.cooldown = cooldown
        self.renderer.render(project(self.state))

    def _sync_cooldown(self) -> None:
        """Adopt a cooldown recorded by another process on the same storage file."""
        if is_cooling(self.state.cooldown):
            return
        until = self.cooldown_marker.until()
        if until is None:
            return
        remaining = min(math.ceil(until - self.wall_clock()), self.cooldown_seconds)
        if remaining > 0:
            self.state.cooldown = self.timer.resume(remaining)

    def _mark_cooldown(self) -> None:
        try:
            self.cooldown_marker.set(self.wall_clock() + self.cooldown_seconds)
        except OSError as exc:
            logger.warning("Could not record cooldown deadline: %s", exc)

    @property
    def writable(self) -> bool:
        """Whether changes may be saved without clobbering credentials we could not read."""
        return self.load_status is not None and self.load_status != "undecryptable"

    def _guard(self, allow_undecryptable: bool = False) -> bool:
        if self.load_status is None:
            self.renderer.notify("warning", "Saved credentials are still loading, try again in a moment")
            return False
        if self.load_status == "undecryptable" and not allow_undecryptable:
            self.renderer.notify("error", "Saved credentials could not be decrypted; "
                                          "clear them or fix the fingerprint before making changes")
            return False
        return True

    # ── lifecycle ──────────────────────────────────────────────────────────
    async def connect(self) -> bool:
        """Open the relay session. Failure is reported, not raised."""
        if self.relay is None:
            return False
        try:
            await self.relay.init_session()
        except RelayError as exc:
            logger.error("Relay session init failed: %s", exc)
            self.renderer.notify("warning", f"Relay unavailable: {exc}")
            return False
        return True

    async def start(self) -> None:
        """Restore saved credentials, then open the relay session (best effort)."""
        self.load()
        await self.connect()

    def load(self, silent: bool = True) -> bool:
        self._sync_cooldown()
        result = self.store.load_records()
        self.load_status = result.status
        if result.status == "undecryptable":
            # Keep whatever is in memory; the stored blob stays for a later attempt
            self.renderer.notify("warning", "Could not decrypt saved credentials")
            return False
        if result.status == "empty":
            if not silent:
                self.renderer.notify("warning", "No saved configuration found")
            self._run([Render()])
            return True
        self.state.records = result.records
        if result.status == "migrated":
            self.renderer.notify("info", f"Migrated {len(result.records)} credentials from the old format")
        elif not silent:
            self.renderer.notify("success", "Configuration loaded")
        self._run([Render()])
        return True

    def close(self) -> None:
        self.timer.cancel()
        self.state.cooldown = self.timer.state

    # ── operations ─────────────────────────────────────────────────────────
    def import_text(self, text: str) -> Optional[ImportOutcome]:
        """Returns None when the import was refused before parsing."""
        if not self._guard():
            return None
        outcome, effects = apply_import(self.state, text)
        self._run(effects)
        return outcome

    def edit(self, record_id: str, secret: str, account_email: str = "", account_password: str = "") -> bool:
        if not self._guard():
            return False
        try:
            effects = apply_edit(self.state, record_id, secret, account_email, account_password)
        except ValidationError as exc:
            self.renderer.notify("error", str(exc))
            return False
        self._run(effects)
        return True

    def delete(self, record_id: str) -> bool:
        if not self._guard():
            return False
        existed = find_record(self.state.records, record_id) is not None
        self._run(apply_delete(self.state, record_id))
        return existed

    def clear(self) -> bool:
        if not self._guard(allow_undecryptable=True):
            return False
        try:
            self.store.clear_records()
        except OSError as exc:
            logger.error("Clearing credentials failed: %s", exc)
            self.renderer.notify("error", f"Clear failed: {exc}")
            return False
        self.load_status = "empty"
        self._run(apply_clear(self.state))
        return True

    def copy_secret(self, record_id: str) -> Optional[str]:
        """Return the raw key for the front end's clipboard."""
        record = find_record(self.state.records, record_id)
        if record is None:
            self.renderer.notify("warning", "That credential no longer exists")
            return None
        return record.secret

    def export(self) -> Optional[str]:
        if not self.state.records:
            self.renderer.notify("warning", "No keys to export")
            return None
        return export_text(self.state.records)

    def history(self) -> list[HistoryEntry]:
        return self.history_log.entries()

    def clear_history(self) -> None:
        self.history_log.clear()

    async def check(self, record_id: str) -> Optional[CredentialRecord]:
        """Query usage for one record. Returns None when the check was refused."""
        if not self._guard():
            return None
        self._sync_cooldown()
        record, effects = request_check(self.state, record_id, self.cooldown_seconds, self.clock())
        if record is None:
            self._run(effects)
            return None
        self.state.cooldown = self.timer.trigger()
        self._mark_cooldown()
        self._run(effects)

        if self.relay is None:
            self._run(complete_check(self.state, record_id, error="No relay configured"))
            return record
        try:
            payload = await self.relay.fetch_usage(record.secret)
        except RelayError as exc:
            effects = complete_check(self.state, record_id, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure checking %s", record_id)
            effects = complete_check(self.state, record_id, error=f"{type(exc).__name__}: {exc}")
        else:
            effects = complete_check(self.state, record_id, payload=payload)
        self._run(effects)
        return record

    @property
    def records(self) -> list[CredentialRecord]:
        return self.state.records


def build_controller(
    settings: Settings,
    renderer: Renderer,
    scheduler: Scheduler,
    relay: Optional[RelayClient] = None,
) -> AppController:
    """Wire store, codec and history for ``settings``."""
    fingerprint = settings.fingerprint or derive_fingerprint()
    kv = KeyValueStore(settings.storage_path)
    return AppController(
        store=PersistenceStore(kv, CredentialCodec(fingerprint)),
        history=HistoryLog(kv),
        relay=relay,
        renderer=renderer,
        scheduler=scheduler,
        cooldown_seconds=settings.cooldown,
    )
