"""Client fingerprint used as the at-rest encryption passphrase.

The digest is built from observable environment attributes. It is NOT a
secret: anyone on the same machine can recompute it. It only keeps the stored
blob from being readable when copied elsewhere.
"""

from __future__ import annotations

import hashlib
import locale
import os
import platform
from dataclasses import astuple, dataclass
from datetime import datetime
from typing import Optional

from keyquota import __version__

FALLBACK = "unknown"
DELIMITER = "||"


@dataclass(frozen=True)
class ClientEnvironment:
    user_agent: str
    locale: str
    color_depth: str
    resolution: str
    timezone_offset: str
    cpu_count: str


def _user_agent() -> str:
    return (
        f"keyquota/{__version__} ({platform.system()} {platform.release()}; "
        f"{platform.machine()}) Python/{platform.python_version()}"
    )


def _locale() -> str:
    try:
        lang = locale.getlocale()[0]
    except ValueError:
        lang = None
    return lang or os.environ.get("LANG") or FALLBACK


def _color_depth() -> str:
    # Read from the environment, not from isatty(), so piping output keeps the key stable
    if os.environ.get("COLORTERM", "").lower() in ("truecolor", "24bit"):
        return "24"
    if "256color" in os.environ.get("TERM", ""):
        return "8"
    return FALLBACK


def _timezone_offset() -> str:
    offset = datetime.now().astimezone().utcoffset()
    if offset is None:
        return FALLBACK
    # Minutes west of UTC, same sign convention as JS Date.getTimezoneOffset()
    return str(-int(offset.total_seconds() // 60))


def collect_environment() -> ClientEnvironment:
    cpus = os.cpu_count()
    return ClientEnvironment(
        user_agent=_user_agent(),
        locale=_locale(),
        color_depth=_color_depth(),
        resolution=FALLBACK,  # terminals expose no pixel geometry
        timezone_offset=_timezone_offset(),
        cpu_count=str(cpus) if cpus else FALLBACK,
    )


def derive_fingerprint(env: Optional[ClientEnvironment] = None) -> str:
    """SHA-256 hex digest of the joined environment attributes."""
    env = env or collect_environment()
    raw = DELIMITER.join(value or FALLBACK for value in astuple(env))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
