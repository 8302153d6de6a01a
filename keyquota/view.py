"""Pure projection of ``AppState`` into what the table and history panes show.

Renderers (rich for the CLI, Textual for the TUI) only read these values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from keyquota.cooldown import Cooling
from keyquota.models import CredentialRecord, HistoryEntry
from keyquota.security import redact_key
from keyquota.state import AppState

UsageLevel = Literal["ok", "warning", "danger"]

CHECK_ICON = "↻"
BUSY_ICON = "…"
NO_ACCOUNT = "no account info"
PASSWORD_MASK = "******"


@dataclass(frozen=True)
class RowView:
    index: int
    record_id: str
    account_label: str
    password_mask: str
    masked_secret: str
    usage_text: Optional[str]
    usage_percent: Optional[float]
    usage_level: Optional[UsageLevel]
    error: Optional[str]
    check_label: str
    check_disabled: bool


@dataclass(frozen=True)
class TotalsView:
    used: int
    limit: int


@dataclass(frozen=True)
class TableView:
    rows: list[RowView]
    totals: Optional[TotalsView]
    cooldown_remaining: int

    @property
    def is_empty(self) -> bool:
        return not self.rows


@dataclass(frozen=True)
class HistoryRowView:
    label: str
    success: bool
    timestamp: str
    summary: str


def usage_level(percent: float) -> UsageLevel:
    if percent > 90:
        return "danger"
    if percent > 50:
        return "warning"
    return "ok"


def format_usage(used: int, limit: int) -> str:
    return f"{used / 1000:.1f}k / {limit / 1000:.0f}k"


def _row(index: int, record: CredentialRecord, remaining: int, busy: bool) -> RowView:
    if busy:
        label, disabled = BUSY_ICON, True
    elif remaining:
        label, disabled = f"{remaining}s", True
    else:
        label, disabled = CHECK_ICON, False

    usage = record.usage
    return RowView(
        index=index,
        record_id=record.id,
        account_label=record.account_email or NO_ACCOUNT,
        password_mask=PASSWORD_MASK if record.account_password else "",
        masked_secret=redact_key(record.secret),
        usage_text=format_usage(usage.used, usage.limit) if usage else None,
        usage_percent=round(usage.percent, 1) if usage else None,
        usage_level=usage_level(usage.percent) if usage else None,
        error=record.last_error if not usage else None,
        check_label=label,
        check_disabled=disabled,
    )


def project(state: AppState) -> TableView:
    remaining = state.cooldown.remaining if isinstance(state.cooldown, Cooling) else 0
    rows = [
        _row(i, r, remaining, r.id in state.busy)
        for i, r in enumerate(state.records, 1)
    ]
    with_usage = [r.usage for r in state.records if r.usage]
    totals = TotalsView(
        used=sum(u.used for u in with_usage),
        limit=sum(u.limit for u in with_usage),
    ) if with_usage else None
    return TableView(rows=rows, totals=totals, cooldown_remaining=remaining)


def project_history(entries: list[HistoryEntry]) -> list[HistoryRowView]:
    return [
        HistoryRowView(
            label="OK" if e.success else "FAILED",
            success=e.success,
            timestamp=e.timestamp,
            summary=e.summary,
        )
        for e in entries
    ]
