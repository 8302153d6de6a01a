"""Data models for stored credentials, usage figures and query history.

Records are mutable (edit and check update them in place) except for ``id``.
Usage and history entries are frozen values with canonical ``to_dict()``
ordering so the encrypted payload is stable.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Optional

LEGACY_RECORD_ID = "legacy_import"


def new_record_id() -> str:
    return secrets.token_hex(12)


def _as_int(value: Any, name: str) -> int:
    # bool is an int subclass; a quota of True is not a number
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Usage:
    used: int
    limit: int

    @property
    def percent(self) -> float:
        return self.used / self.limit * 100 if self.limit > 0 else 0.0

    @classmethod
    def from_relay(cls, payload: Any) -> "Usage":
        """Build from the relay's ``{character_count, character_limit}`` body."""
        if not isinstance(payload, dict):
            raise ValueError("usage payload is not an object")
        return cls(
            used=_as_int(payload.get("character_count"), "character_count"),
            limit=_as_int(payload.get("character_limit"), "character_limit"),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Usage":
        if isinstance(data, dict) and "character_count" in data:
            return cls.from_relay(data)
        if not isinstance(data, dict):
            raise ValueError("usage is not an object")
        return cls(used=_as_int(data.get("used"), "used"), limit=_as_int(data.get("limit"), "limit"))

    def to_dict(self) -> dict:
        return {"used": self.used, "limit": self.limit}


@dataclass
class CredentialRecord:
    """One stored API key. ``secret`` is the dedup key across the collection."""

    id: str
    secret: str
    account_email: str = ""
    account_password: str = ""
    usage: Optional[Usage] = None
    last_error: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("CredentialRecord.id cannot be reassigned")
        super().__setattr__(name, value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "secret": self.secret,
            "account_email": self.account_email,
            "account_password": self.account_password,
            "usage": self.usage.to_dict() if self.usage else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Any, default_id: Optional[str] = None) -> "CredentialRecord":
        """Parse a stored record. Also reads the browser app's camelCase keys."""
        if not isinstance(data, dict):
            raise ValueError("record is not an object")
        secret = data.get("secret", data.get("apiKey"))
        if not isinstance(secret, str) or not secret:
            raise ValueError("record has no secret")
        record_id = data.get("id", default_id)
        if record_id is None:
            raise ValueError("record has no id")
        usage_raw = data.get("usage")
        return cls(
            id=str(record_id),
            secret=secret,
            account_email=data.get("account_email", data.get("email")) or "",
            account_password=data.get("account_password", data.get("password")) or "",
            usage=Usage.from_dict(usage_raw) if usage_raw else None,
            last_error=data.get("last_error", data.get("error")) or None,
        )


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    success: bool
    summary: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "success": self.success, "summary": self.summary}

    @classmethod
    def from_dict(cls, data: Any) -> "HistoryEntry":
        if not isinstance(data, dict):
            raise ValueError("history entry is not an object")
        return cls(
            timestamp=str(data.get("timestamp", "")),
            success=bool(data.get("success", False)),
            summary=str(data.get("summary", data.get("details", ""))),
        )


def find_record(records: list[CredentialRecord], record_id: str) -> Optional[CredentialRecord]:
    return next((r for r in records if r.id == record_id), None)


def has_secret(records: list[CredentialRecord], secret: str) -> bool:
    return any(r.secret == secret for r in records)
