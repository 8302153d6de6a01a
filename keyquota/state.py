"""Application state and the transitions the controller applies to it.

Each transition mutates ``AppState`` (or rejects without touching it) and
returns the effects the controller must run: persist, render, notify,
record history. Nothing here does I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, Union

from keyquota.cooldown import IDLE, CooldownState, Cooling, is_cooling, start
from keyquota.errors import ValidationError
from keyquota.importer import ImportOutcome, import_text
from keyquota.models import CredentialRecord, HistoryEntry, Usage, find_record

Level = Literal["success", "info", "warning", "error"]


@dataclass(frozen=True)
class Persist:
    silent: bool = False


@dataclass(frozen=True)
class Render:
    pass


@dataclass(frozen=True)
class Notify:
    level: Level
    message: str


@dataclass(frozen=True)
class RecordHistory:
    entry: HistoryEntry


Effect = Union[Persist, Render, Notify, RecordHistory]


@dataclass
class AppState:
    records: list[CredentialRecord] = field(default_factory=list)
    cooldown: CooldownState = IDLE
    busy: set[str] = field(default_factory=set)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def apply_import(state: AppState, text: str) -> tuple[ImportOutcome, list[Effect]]:
    outcome = import_text(state.records, text)
    if outcome.status == "imported":
        return outcome, [Render(), Persist(silent=True), Notify("success", outcome.message)]
    level: Level = "warning" if outcome.status == "nothing_new" else "error"
    return outcome, [Notify(level, outcome.message)]


def apply_edit(
    state: AppState,
    record_id: str,
    secret: str,
    account_email: str = "",
    account_password: str = "",
) -> list[Effect]:
    """Validate first, then update in place. Raises ``ValidationError`` untouched."""
    record = find_record(state.records, record_id)
    if record is None:
        raise ValidationError(f"No credential with id {record_id}")
    secret = secret.strip()
    if not secret:
        raise ValidationError("API key cannot be empty")
    if any(r.secret == secret and r.id != record_id for r in state.records):
        raise ValidationError("Another entry already uses this API key")

    record.secret = secret
    record.account_email = account_email.strip()
    record.account_password = account_password.strip()
    # The stored figures belonged to the old key
    record.usage = None
    record.last_error = None
    return [Render(), Persist(silent=True), Notify("success", "Changes saved")]


def apply_delete(state: AppState, record_id: str) -> list[Effect]:
    if find_record(state.records, record_id) is None:
        return [Notify("warning", "That credential no longer exists")]
    state.records = [r for r in state.records if r.id != record_id]
    state.busy.discard(record_id)
    return [Render(), Persist(silent=True), Notify("success", "Deleted")]


def apply_clear(state: AppState) -> list[Effect]:
    state.records = []
    state.busy.clear()
    return [Render(), Persist(silent=True), Notify("success", "All saved keys cleared")]


def request_check(
    state: AppState, record_id: str, seconds: int, now: float
) -> tuple[Optional[CredentialRecord], list[Effect]]:
    """Gate a check on the global cooldown. A rejection has no side effect."""
    if is_cooling(state.cooldown):
        remaining = state.cooldown.remaining if isinstance(state.cooldown, Cooling) else 0
        return None, [Notify("warning", f"Please wait for the cooldown to finish ({remaining}s)")]
    record = find_record(state.records, record_id)
    if record is None:
        return None, [Notify("warning", "That credential no longer exists")]
    state.cooldown = start(seconds, now)
    state.busy.add(record_id)
    return record, [Render()]


def complete_check(
    state: AppState,
    record_id: str,
    payload: Optional[dict] = None,
    error: Optional[str] = None,
) -> list[Effect]:
    """Store the relay result on the record; failures stay on that record only."""
    state.busy.discard(record_id)
    record = find_record(state.records, record_id)
    if record is None:
        # Deleted while the request was in flight
        return [Render()]

    usage: Optional[Usage] = None
    if error is None:
        try:
            usage = Usage.from_relay(payload)
        except ValueError as exc:
            error = f"Malformed usage response: {exc}"

    if usage is not None:
        record.usage = usage
        record.last_error = None
        entry = HistoryEntry(_now(), True, f"Used: {usage.used} / {usage.limit}")
        return [Persist(silent=True), RecordHistory(entry), Render(), Notify("success", "Usage updated")]

    # Failures are shown inline on the row, without a toast
    record.usage = None
    record.last_error = error or "Unknown error"
    entry = HistoryEntry(_now(), False, f"Failed: {record.last_error}")
    return [Persist(silent=True), RecordHistory(entry), Render()]
