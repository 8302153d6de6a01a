"""CLI entry point — python -m keyquota.

Usage:
    python -m keyquota import keys.txt
    pbpaste | python -m keyquota import -
    python -m keyquota list
    python -m keyquota check 2
    python -m keyquota export --output keys.txt
    python -m keyquota tui
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm

from keyquota import __version__
from keyquota.config import Settings
from keyquota.controller import AppController, build_controller
from keyquota.errors import KeyquotaError, friendly_error
from keyquota.log import configure_logging
from keyquota.models import CredentialRecord, find_record
from keyquota.output import RichRenderer, render_history, write_export
from keyquota.relay import open_relay
from keyquota.view import project_history

logger = logging.getLogger(__name__)

# Commands that write the credential blob; refused when the saved one can't be decrypted
_MUTATING = {"import", "edit", "delete", "check"}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="keyquota",
        description="Keep API keys encrypted locally and check their usage quota through a relay.",
    )
    p.add_argument("--env", type=Path, help="Path to a .env file with KEYQUOTA_* settings")
    p.add_argument("--relay-url", help="Usage relay endpoint (default: KEYQUOTA_RELAY_URL)")
    p.add_argument("--data-dir", type=Path, help="Directory holding storage.json")
    p.add_argument("--timeout", type=float, help="Client-side HTTP timeout in seconds (default: none)")
    p.add_argument("--verbose", "-v", action="store_true", help="Log debug output to stderr")
    p.add_argument("--version", action="store_true", help="Show version and exit")

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("list", help="Show saved keys and their last known usage")

    imp = sub.add_parser("import", help="Parse keys from pasted text")
    imp.add_argument("source", nargs="?", default="-", help="Text file to read, or - for stdin")

    exp = sub.add_parser("export", help="Print or write all keys as plain text")
    exp.add_argument("--output", type=Path, help="Write to this file instead of stdout")
    exp.add_argument("--force-insecure-output", action="store_true", help="Skip file permission check")

    chk = sub.add_parser("check", help="Query usage for one key")
    chk.add_argument("ref", help="Row number (from `list`) or record id")

    edit = sub.add_parser("edit", help="Change a saved entry")
    edit.add_argument("ref", help="Row number or record id")
    edit.add_argument("--key", dest="secret", help="New API key")
    edit.add_argument("--account", help="New account email")
    edit.add_argument("--password", help="New account password")

    delete = sub.add_parser("delete", help="Remove a saved entry")
    delete.add_argument("ref", help="Row number or record id")
    delete.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    clear = sub.add_parser("clear", help="Remove every saved key")
    clear.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    cp = sub.add_parser("copy", help="Print one raw key to stdout (pipe it to your clipboard tool)")
    cp.add_argument("ref", help="Row number or record id")

    hist = sub.add_parser("history", help="Show the last five usage checks")
    hist.add_argument("--clear", action="store_true", help="Forget the history")

    sub.add_parser("tui", help="Open the interactive terminal UI")
    return p


def resolve_ref(records: list[CredentialRecord], ref: str) -> Optional[CredentialRecord]:
    """Accept a 1-based row number or a record id."""
    if ref.isdigit():
        idx = int(ref)
        if 1 <= idx <= len(records):
            return records[idx - 1]
    return find_record(records, ref)


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


async def _run(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    renderer = RichRenderer(console=console)
    loop = asyncio.get_running_loop()
    controller = build_controller(settings, renderer, loop)
    try:
        controller.load()
        if args.command in _MUTATING and not controller.writable:
            console.print("[red]Saved credentials exist but can't be decrypted on this machine; "
                          "refusing to overwrite them. Set KEYQUOTA_FINGERPRINT or run `keyquota clear`.[/red]")
            return 2
        return await _dispatch(args, settings, controller, renderer, console)
    finally:
        controller.close()


async def _dispatch(
    args: argparse.Namespace,
    settings: Settings,
    controller: AppController,
    renderer: RichRenderer,
    console: Console,
) -> int:
    cmd = args.command

    if cmd == "list":
        renderer.flush()
        return 0

    if cmd == "import":
        outcome = controller.import_text(_read_source(args.source))
        renderer.flush()
        return 0 if outcome is not None and outcome.status == "imported" else 1

    if cmd == "export":
        text = controller.export()
        if text is None:
            return 1
        if args.output:
            return 0 if write_export(text, args.output, args.force_insecure_output) else 2
        print(text, end="")
        return 0

    if cmd == "history":
        if args.clear:
            controller.clear_history()
            console.print("[green]History cleared[/green]")
            return 0
        render_history(project_history(controller.history()), console)
        return 0

    if cmd == "clear":
        if not args.yes and not Confirm.ask("Delete all saved keys?", console=console, default=False):
            return 1
        return 0 if controller.clear() else 1

    record = resolve_ref(controller.records, args.ref)
    if record is None:
        console.print(f"[red]No saved key matches {args.ref!r}. Run `keyquota list`.[/red]")
        return 2

    if cmd == "copy":
        print(controller.copy_secret(record.id))
        return 0

    if cmd == "delete":
        if not args.yes and not Confirm.ask(f"Delete key #{args.ref}?", console=console, default=False):
            return 1
        deleted = controller.delete(record.id)
        renderer.flush()
        return 0 if deleted else 1

    if cmd == "edit":
        ok = controller.edit(
            record.id,
            args.secret if args.secret is not None else record.secret,
            args.account if args.account is not None else record.account_email,
            args.password if args.password is not None else record.account_password,
        )
        renderer.flush()
        return 0 if ok else 1

    if cmd == "check":
        async with open_relay(settings) as relay:
            controller.relay = relay
            await controller.connect()
            checked = await controller.check(record.id)
        renderer.flush()
        return 0 if checked is not None and checked.last_error is None else 1

    raise AssertionError(f"unhandled command {cmd}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = Console()

    if args.version:
        console.print(f"keyquota {__version__}")
        return 0
    if not args.command:
        parser.print_help()
        return 2

    try:
        settings = Settings.load(
            args.env,
            relay_url=args.relay_url,
            data_dir=args.data_dir,
            timeout=args.timeout,
        )
    except KeyquotaError as exc:
        console.print(f"[red]{exc}[/red]")
        return 2

    configure_logging("DEBUG" if args.verbose else settings.log_level)

    if args.command == "tui":
        from keyquota.tui import KeyquotaApp
        KeyquotaApp(settings).run()
        return 0

    try:
        return asyncio.run(_run(args, settings, console))
    except KeyboardInterrupt as exc:
        Console(stderr=True).print(friendly_error(exc))
        return 130
    except (KeyquotaError, OSError) as exc:
        logger.debug("Command failed", exc_info=True)
        Console(stderr=True).print(friendly_error(exc, context=f"running `{args.command}`"))
        return 1


if __name__ == "__main__":
    sys.exit(main())
