"""Logging setup for the CLI and TUI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from keyquota.security import suppress_credential_logging


def configure_logging(level: str = "WARNING") -> None:
    """Route ``keyquota.*`` records through rich on stderr."""
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)
    suppress_credential_logging()
