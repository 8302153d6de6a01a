"""Exception types and plain-language messages for the CLI."""

from __future__ import annotations

from typing import Optional


class KeyquotaError(Exception):
    """Base class for errors raised by keyquota itself."""


class ConfigError(KeyquotaError):
    pass


class ValidationError(KeyquotaError):
    """User input rejected before any state was touched."""


class RelayError(KeyquotaError):
    """The usage relay failed or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# Map exception type names to (friendly_message, recovery_steps)
_ERRORS: dict[str, tuple[str, list[str]]] = {
    "FileNotFoundError": (
        "We couldn't find that file.",
        [
            "Check for typos in the file name",
            "Pass a full path, e.g. keyquota import /full/path/to/keys.txt",
        ],
    ),
    "PermissionError": (
        "We don't have permission to access that file.",
        [
            "Make sure you own the data directory: ls -la ~/.keyquota",
            "Run: chmod 600 ~/.keyquota/storage.json",
        ],
    ),
    "ConnectError": (
        "We couldn't reach the usage relay.",
        [
            "Check that the relay is running and KEYQUOTA_RELAY_URL points at it",
            "Try opening the relay URL in your browser",
        ],
    ),
    "TimeoutException": (
        "The relay took too long to answer.",
        [
            "The upstream service might be slow, so wait a minute and retry",
            "Raise the client timeout: keyquota --timeout 60 check 1",
        ],
    ),
    "ConfigError": (
        "A configuration value is invalid.",
        [
            "Check the KEYQUOTA_* variables in your environment and .env file",
        ],
    ),
    "KeyboardInterrupt": (
        "You stopped the process, nothing was lost.",
        ["Run the command again whenever you're ready."],
    ),
}


def friendly_error(exc: BaseException, context: str = "") -> str:
    """Return a user-friendly error message with recovery steps."""
    etype = type(exc).__name__
    match = None
    # Walk the MRO so subclasses (httpx.ConnectTimeout -> TimeoutException) resolve
    for base in type(exc).__mro__:
        match = _ERRORS.get(base.__name__)
        if match:
            break

    if match:
        msg, steps = match
    else:
        msg = "Something unexpected went wrong."
        steps = [
            "Try running the command again",
            "Re-run with --verbose to see the full log",
        ]

    lines = [f"\n  {msg}"]
    if context:
        lines.append(f"     (while {context})")
    lines.append("")
    lines.append("  What to try:")
    for i, step in enumerate(steps, 1):
        lines.append(f"    {i}. {step}")
    lines.append("")
    lines.append(f"     Technical detail: {etype}: {exc}")
    lines.append("")
    return "\n".join(lines)
