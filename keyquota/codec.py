"""Encrypts the credential list into an opaque string and back.

Current format (storage key suffix ``_v3``), base64 of::

    salt (16) | nonce (12) | GCM tag (16) | ciphertext

The key is PBKDF2-HMAC-SHA256 over the client fingerprint. GCM
authentication means a wrong fingerprint or a flipped byte fails loudly
instead of yielding garbage.

The browser build stored CryptoJS passphrase output (OpenSSL ``Salted__``,
EVP_BytesToKey/MD5, AES-256-CBC). ``decode_legacy`` reads that format so old
exports can be migrated.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from keyquota.models import LEGACY_RECORD_ID, CredentialRecord

logger = logging.getLogger(__name__)

_LEGACY_MAGIC = b"Salted__"


def _records_from_payload(payload: Any) -> Optional[list[CredentialRecord]]:
    """All-or-nothing conversion of decrypted JSON into records."""
    try:
        if isinstance(payload, list):
            return [CredentialRecord.from_dict(item) for item in payload]
        if isinstance(payload, dict):
            # Pre-list format stored a single record object
            return [CredentialRecord.from_dict(payload, default_id=LEGACY_RECORD_ID)]
    except (ValueError, TypeError) as exc:
        logger.warning("Decrypted payload has a malformed record: %s", exc)
        return None
    logger.warning("Decrypted payload is neither a list nor a record")
    return None


def _evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and one iteration, as CryptoJS uses."""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


class CredentialCodec:
    """Handles encryption of the credential collection."""

    SALT_SIZE = 16
    NONCE_SIZE = 12  # 96 bits for GCM
    TAG_SIZE = 16
    KEY_SIZE = 32    # AES-256
    PBKDF2_ITERATIONS = 100_000

    def __init__(self, fingerprint: str, iterations: int = PBKDF2_ITERATIONS):
        self.fingerprint = fingerprint
        self.iterations = iterations
        self.backend = default_backend()

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_SIZE,
            salt=salt,
            iterations=self.iterations,
            backend=self.backend,
        )
        return kdf.derive(self.fingerprint.encode("utf-8"))

    def encode(self, records: list[CredentialRecord]) -> Optional[str]:
        """Serialize and encrypt. Returns None instead of raising on failure."""
        try:
            plaintext = json.dumps([r.to_dict() for r in records], ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError, AttributeError) as exc:
            logger.error("Could not serialize credentials: %s", exc)
            return None

        salt = os.urandom(self.SALT_SIZE)
        nonce = os.urandom(self.NONCE_SIZE)
        cipher = Cipher(algorithms.AES(self._derive_key(salt)), modes.GCM(nonce), backend=self.backend)
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return base64.b64encode(salt + nonce + encryptor.tag + ciphertext).decode("ascii")

    def decode(self, blob: str) -> Optional[list[CredentialRecord]]:
        """Decrypt and parse. Any failure yields None, never partial data."""
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Stored credentials are not valid base64")
            return None

        header = self.SALT_SIZE + self.NONCE_SIZE + self.TAG_SIZE
        if len(raw) < header:
            logger.warning("Stored credentials are truncated (%d bytes)", len(raw))
            return None
        salt = raw[:self.SALT_SIZE]
        nonce = raw[self.SALT_SIZE:self.SALT_SIZE + self.NONCE_SIZE]
        tag = raw[self.SALT_SIZE + self.NONCE_SIZE:header]
        ciphertext = raw[header:]

        try:
            cipher = Cipher(algorithms.AES(self._derive_key(salt)), modes.GCM(nonce, tag), backend=self.backend)
            decryptor = cipher.decryptor()
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag:
            logger.warning("Decryption failed: fingerprint mismatch or corrupted data")
            return None
        return self._parse(plaintext)

    def decode_legacy(self, blob: str) -> Optional[list[CredentialRecord]]:
        """Read a CryptoJS ``AES.encrypt(json, fingerprint)`` string."""
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Legacy credentials are not valid base64")
            return None
        if not raw.startswith(_LEGACY_MAGIC) or len(raw) < 32 or (len(raw) - 16) % 16:
            logger.warning("Legacy credentials have no OpenSSL salt header")
            return None

        key, iv = _evp_bytes_to_key(self.fingerprint.encode("utf-8"), raw[8:16])
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=self.backend).decryptor()
        padded = decryptor.update(raw[16:]) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            logger.warning("Legacy decryption failed: fingerprint mismatch or corrupted data")
            return None
        return self._parse(plaintext)

    @staticmethod
    def _parse(plaintext: bytes) -> Optional[list[CredentialRecord]]:
        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Decrypted credentials are not valid JSON: %s", type(exc).__name__)
            return None
        return _records_from_payload(payload)
