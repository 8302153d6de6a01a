"""Free-text credential importer and the matching plain-text exporter.

Pasted text may hold several blocks in loose order, e.g.::

    密钥：8c6e0a52-...:fx   账户: me@example.com
    Key: 0f3b...  Password: hunter2

Every secret label opens a chunk that runs until the next secret label, so an
account or password written after the *next* key is never attributed to the
previous one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from keyquota.models import CredentialRecord, new_record_id
from keyquota.security import redact_key

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 30

# Full-width, small, presentation-form, ratio and modifier-letter colons
_COLON_LIKE = re.compile(r"[：﹕︓∶꞉]")

_SECRET_PATTERN = re.compile(
    r"(?:密钥|Key|API\s*Key)\s*:\s*([a-zA-Z0-9\-:]{%d,})" % MIN_SECRET_LENGTH,
    re.IGNORECASE,
)
_ACCOUNT_PATTERN = re.compile(
    r"(?:账户|Account|Email)\s*:\s*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})",
    re.IGNORECASE,
)
_PASSWORD_PATTERN = re.compile(r"(?:密码|Password)\s*:\s*(.+)", re.IGNORECASE)

# UUID with optional free-tier suffix
_CANONICAL_SECRET = re.compile(
    r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}(:fx)?$",
    re.IGNORECASE,
)

ImportStatus = Literal["empty_input", "no_keys", "nothing_new", "imported"]


@dataclass(frozen=True)
class SecretOccurrence:
    start: int
    value: str


@dataclass(frozen=True)
class ParseResult:
    candidates: list[CredentialRecord] = field(default_factory=list, hash=False)
    found: int = 0
    rejected: int = 0


@dataclass(frozen=True)
class ImportOutcome:
    status: ImportStatus
    added: int = 0
    duplicates: int = 0
    rejected: int = 0

    @property
    def clear_input(self) -> bool:
        return self.status == "imported"

    @property
    def message(self) -> str:
        if self.status == "empty_input":
            return "Paste some text to import first"
        if self.status == "no_keys":
            return "No valid key format found"
        if self.status == "nothing_new":
            return "Nothing imported (duplicates or bad format)"
        return f"Imported {self.added} new key{'s' if self.added != 1 else ''}"


def normalize_separators(text: str) -> str:
    return _COLON_LIKE.sub(":", text)


def scan_secrets(text: str) -> list[SecretOccurrence]:
    """Every labelled secret in already-normalized text, in order of appearance."""
    return [SecretOccurrence(m.start(), m.group(1).strip()) for m in _SECRET_PATTERN.finditer(text)]


def is_acceptable_secret(value: str) -> bool:
    """UUID-shaped keys pass; anything longer than the capture minimum passes too.

    The second rule is deliberately lenient: non-UUID keys from other
    providers still get stored.
    """
    return bool(_CANONICAL_SECRET.match(value)) or len(value) > MIN_SECRET_LENGTH


def parse_credentials(text: str) -> ParseResult:
    text = normalize_separators(text)
    occurrences = scan_secrets(text)
    candidates: list[CredentialRecord] = []
    rejected = 0

    for i, occ in enumerate(occurrences):
        end = occurrences[i + 1].start if i + 1 < len(occurrences) else len(text)
        chunk = text[occ.start:end]

        if not is_acceptable_secret(occ.value):
            logger.warning("Skipping key with invalid format: %s", redact_key(occ.value))
            rejected += 1
            continue

        account = _ACCOUNT_PATTERN.search(chunk)
        password = _PASSWORD_PATTERN.search(chunk)
        candidates.append(CredentialRecord(
            id=new_record_id(),
            secret=occ.value,
            account_email=account.group(1).strip() if account else "",
            account_password=password.group(1).strip() if password else "",
        ))

    return ParseResult(candidates=candidates, found=len(occurrences), rejected=rejected)


def import_text(records: list[CredentialRecord], text: str) -> ImportOutcome:
    """Merge parsed records into ``records``, skipping secrets already present."""
    if not text.strip():
        return ImportOutcome("empty_input")

    parsed = parse_credentials(text)
    if not parsed.found:
        return ImportOutcome("no_keys")

    seen = {r.secret for r in records}
    fresh: list[CredentialRecord] = []
    duplicates = 0
    for candidate in parsed.candidates:
        if candidate.secret in seen:
            duplicates += 1
            continue
        seen.add(candidate.secret)
        fresh.append(candidate)

    # Append in one step so a failure above never leaves a partial import
    records.extend(fresh)
    logger.info("Import: %d found, %d added, %d duplicate, %d rejected",
                parsed.found, len(fresh), duplicates, parsed.rejected)
    return ImportOutcome(
        status="imported" if fresh else "nothing_new",
        added=len(fresh),
        duplicates=duplicates,
        rejected=parsed.rejected,
    )


def export_text(records: list[CredentialRecord]) -> str:
    """One labelled block per record, blank line between blocks."""
    blocks = []
    for r in records:
        lines = [f"Key: {r.secret}"]
        if r.account_email:
            lines.append(f"Account: {r.account_email}")
        if r.account_password:
            lines.append(f"Password: {r.account_password}")
        blocks.append("\n".join(lines) + "\n")
    return "\n".join(blocks)
