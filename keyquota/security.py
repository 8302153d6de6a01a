"""Path and secret hygiene for the vault file and plain-text exports.

Both files keyquota writes hold secrets: the encrypted vault and, worse, the
plain-text export. They share one rule set here. Raw keys never reach log
records either; anything logged about a key goes through ``redact_key``.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

PRIVATE_MODE = 0o600

# Loggers that would otherwise print request headers carrying the auth key
_CHATTY_LOGGERS = ("httpx", "httpcore")


def redact_key(secret: str) -> str:
    """``8c6e...f:fx`` style mask; short values are starred out entirely."""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}...{secret[-4:]}"


def suppress_credential_logging() -> None:
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def is_redirected(path: Path) -> bool:
    """True when writing to ``path`` would land somewhere other than ``path`` itself."""
    if path.is_symlink():
        return True
    if not path.exists():
        return False
    try:
        return path.resolve(strict=True) != path.absolute()
    except OSError:
        return True


def _world_readable(path: Path) -> bool:
    return bool(os.stat(path).st_mode & stat.S_IROTH)


def ensure_vault_target(path: Path) -> None:
    """Raise ``OSError`` if the vault file cannot be written in place."""
    if is_redirected(path):
        raise OSError(f"Refusing to write storage through symlink: {path}")


def check_output_permissions(path: Path, force: bool = False) -> bool:
    """Whether an export may be written to ``path``.

    Redirected targets are always refused. A world-readable target, or a new
    file in a world-readable directory, needs ``force``.
    """
    if is_redirected(path):
        return False
    target = path if path.exists() else path.parent
    if target.exists() and _world_readable(target):
        return force
    return True


def make_private(path: Path) -> None:
    os.chmod(path, PRIVATE_MODE)
