"""Runtime settings from .env, the process environment and CLI flags (in that order)."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from keyquota.errors import ConfigError

DEFAULT_RELAY_URL = "http://localhost:8080/api.php"
DEFAULT_DATA_DIR = Path.home() / ".keyquota"
COOLDOWN_SECONDS = 10
STORAGE_FILE = "storage.json"

_ENV_PREFIX = "KEYQUOTA_"


@dataclass(frozen=True)
class Settings:
    relay_url: str = DEFAULT_RELAY_URL
    data_dir: Path = DEFAULT_DATA_DIR
    timeout: Optional[float] = None  # no client-side limit; the relay bounds upstream calls
    cooldown: int = COOLDOWN_SECONDS
    fingerprint: Optional[str] = None
    log_level: str = "WARNING"

    @property
    def storage_path(self) -> Path:
        return self.data_dir / STORAGE_FILE

    @classmethod
    def load(cls, env_file: Optional[Path] = None, **overrides: object) -> "Settings":
        values: dict[str, Optional[str]] = {}
        if env_file is not None:
            if not env_file.is_file():
                raise ConfigError(f"Env file not found: {env_file}")
            values.update(dotenv_values(env_file))
        values.update({k: v for k, v in os.environ.items() if k.startswith(_ENV_PREFIX)})

        settings = cls()
        parsed: dict[str, object] = {}
        for f in fields(cls):
            raw = values.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            parsed[f.name] = _coerce(f.name, raw)
        parsed.update({k: v for k, v in overrides.items() if v is not None})
        return replace(settings, **parsed)


def _coerce(name: str, raw: str) -> object:
    if name == "data_dir":
        return Path(raw).expanduser()
    if name == "timeout":
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"KEYQUOTA_TIMEOUT must be a number, got {raw!r}") from None
        if value <= 0:
            raise ConfigError("KEYQUOTA_TIMEOUT must be positive")
        return value
    if name == "cooldown":
        try:
            value = int(raw)
        except ValueError:
            raise ConfigError(f"KEYQUOTA_COOLDOWN must be an integer, got {raw!r}") from None
        if value < 1:
            raise ConfigError("KEYQUOTA_COOLDOWN must be at least 1 second")
        return value
    if name == "log_level":
        return raw.upper()
    return raw
