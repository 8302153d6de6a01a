"""Local persistence: a small key-value file plus the typed stores on top of it.

``KeyValueStore`` plays the role ``localStorage`` played in the browser
build: string keys, string values, whole-file overwrite on every write.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from keyquota.codec import CredentialCodec
from keyquota.models import CredentialRecord, HistoryEntry
from keyquota.security import ensure_vault_target, make_private

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "keyquota_credentials_v3"
LEGACY_CREDENTIALS_KEY = "deepl_app_config_v2"
HISTORY_KEY = "keyquota_query_history"
COOLDOWN_KEY = "keyquota_cooldown_until"
HISTORY_LIMIT = 5

LoadStatus = Literal["empty", "loaded", "migrated", "undecryptable"]


class KeyValueStore:
    """String-to-string map persisted as one JSON file with 0600 permissions."""

    def __init__(self, path: Path):
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable storage file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring storage file %s: top level is not an object", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        ensure_vault_target(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            make_private(Path(tmp))
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def __contains__(self, key: str) -> bool:
        return key in self._read()


@dataclass
class LoadResult:
    status: LoadStatus
    records: list[CredentialRecord] = field(default_factory=list)


class PersistenceStore:
    """Encrypted credential blob on top of a ``KeyValueStore``."""

    def __init__(self, kv: KeyValueStore, codec: CredentialCodec):
        self.kv = kv
        self.codec = codec

    def load_records(self) -> LoadResult:
        blob = self.kv.get(CREDENTIALS_KEY)
        if blob is not None:
            records = self.codec.decode(blob)
            if records is None:
                return LoadResult("undecryptable")
            return LoadResult("loaded", records)

        legacy = self.kv.get(LEGACY_CREDENTIALS_KEY)
        if legacy is None:
            return LoadResult("empty")
        records = self.codec.decode_legacy(legacy)
        if records is None:
            return LoadResult("undecryptable")
        # Only drop the old blob once the new one is safely written
        if self.save_records(records):
            self.kv.remove(LEGACY_CREDENTIALS_KEY)
            logger.info("Migrated %d credentials from %s", len(records), LEGACY_CREDENTIALS_KEY)
        return LoadResult("migrated", records)

    def save_records(self, records: list[CredentialRecord]) -> bool:
        """Overwrite the stored blob. An empty collection removes it."""
        if not records:
            self.kv.remove(CREDENTIALS_KEY)
            return True
        blob = self.codec.encode(records)
        if blob is None:
            return False
        self.kv.set(CREDENTIALS_KEY, blob)
        return True

    def clear_records(self) -> None:
        self.kv.remove(CREDENTIALS_KEY)
        self.kv.remove(LEGACY_CREDENTIALS_KEY)


class HistoryLog:
    """Most-recent-first query log, capped at ``limit`` entries, stored as plain JSON."""

    def __init__(self, kv: KeyValueStore, limit: int = HISTORY_LIMIT):
        self.kv = kv
        self.limit = limit

    def entries(self) -> list[HistoryEntry]:
        raw = self.kv.get(HISTORY_KEY)
        if not raw:
            return []
        try:
            return [HistoryEntry.from_dict(item) for item in json.loads(raw)]
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.warning("Discarding corrupt query history: %s", exc)
            return []

    def add(self, entry: HistoryEntry) -> list[HistoryEntry]:
        entries = [entry] + self.entries()
        entries = entries[:self.limit]
        self.kv.set(HISTORY_KEY, json.dumps([e.to_dict() for e in entries], ensure_ascii=False))
        return entries

    def clear(self) -> None:
        self.kv.remove(HISTORY_KEY)


class CooldownMarker:
    """Wall-clock end of the last global cooldown.

    Every process opening the same storage file sees it, so back-to-back CLI
    runs and a TUI running alongside them share one cooldown.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def until(self) -> Optional[float]:
        raw = self.kv.get(COOLDOWN_KEY)
        if raw is None:
            return None
        try:
            until = float(raw)
        except ValueError:
            until = math.nan
        if not math.isfinite(until):
            logger.warning("Ignoring malformed cooldown marker %r", raw)
            return None
        return until

    def set(self, until: float) -> None:
        self.kv.set(COOLDOWN_KEY, repr(until))
