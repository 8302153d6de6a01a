"""Tests for the credential codec and fingerprint derivation."""

import base64
import hashlib
import json
import os

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from keyquota.codec import CredentialCodec
from keyquota.fingerprint import FALLBACK, ClientEnvironment, collect_environment, derive_fingerprint
from keyquota.models import LEGACY_RECORD_ID, CredentialRecord, Usage

from conftest import FINGERPRINT, KEY_A, KEY_B, cryptojs_encrypt


def _collection():
    return [
        CredentialRecord(id="r1", secret=KEY_A, account_email="a@b.com", account_password="pw1",
                         usage=Usage(1200, 500000)),
        CredentialRecord(id="r2", secret=KEY_B, last_error="Forbidden: quota"),
    ]


def _seal(codec: CredentialCodec, payload) -> str:
    """Encrypt an arbitrary JSON payload in the current blob format."""
    salt, nonce = os.urandom(codec.SALT_SIZE), os.urandom(codec.NONCE_SIZE)
    enc = Cipher(algorithms.AES(codec._derive_key(salt)), modes.GCM(nonce)).encryptor()
    ciphertext = enc.update(json.dumps(payload).encode()) + enc.finalize()
    return base64.b64encode(salt + nonce + enc.tag + ciphertext).decode()


class TestRoundTrip:
    def test_decode_encode_identity(self, codec):
        records = _collection()
        assert codec.decode(codec.encode(records)) == records

    def test_blob_is_opaque(self, codec):
        blob = codec.encode(_collection())
        assert KEY_A not in blob
        assert "a@b.com" not in base64.b64decode(blob).decode("latin-1")

    def test_fresh_salt_each_time(self, codec):
        records = _collection()
        assert codec.encode(records) != codec.encode(records)

    def test_non_ascii_fields(self, codec):
        records = [CredentialRecord(id="r", secret=KEY_A, account_password="密码ü")]
        assert codec.decode(codec.encode(records)) == records


class TestTamper:
    def test_wrong_fingerprint(self, codec):
        blob = codec.encode(_collection())
        other = CredentialCodec("0" * 64, iterations=1000)
        assert other.decode(blob) is None

    def test_flipped_byte(self, codec):
        raw = bytearray(base64.b64decode(codec.encode(_collection())))
        raw[-1] ^= 0x01
        assert codec.decode(base64.b64encode(bytes(raw)).decode()) is None

    @pytest.mark.parametrize("blob", ["", "not base64 !!", base64.b64encode(b"short").decode()])
    def test_garbage(self, codec, blob):
        assert codec.decode(blob) is None

    def test_malformed_record_is_all_or_nothing(self, codec):
        payload = [CredentialRecord(id="ok", secret=KEY_A).to_dict(), {"id": "bad"}]
        assert codec.decode(_seal(codec, payload)) is None

    def test_payload_neither_list_nor_object(self, codec):
        assert codec.decode(_seal(codec, "just a string")) is None


class TestEncodeFailure:
    def test_serialization_error_returns_none(self, codec):
        bad = CredentialRecord(id="x", secret=KEY_A)
        bad.usage = object()  # not serializable
        assert codec.encode([bad]) is None


class TestLegacy:
    def test_reads_cryptojs_list(self, codec):
        legacy = [{"id": "1700000000000abc", "apiKey": KEY_A, "email": "a@b.com",
                   "password": "pw", "usage": {"character_count": 3, "character_limit": 9}}]
        records = codec.decode_legacy(cryptojs_encrypt(json.dumps(legacy), FINGERPRINT))
        assert records == [CredentialRecord(id="1700000000000abc", secret=KEY_A, account_email="a@b.com",
                                            account_password="pw", usage=Usage(3, 9))]

    def test_single_object_wrapped(self, codec):
        legacy = {"apiKey": KEY_A, "email": "a@b.com", "password": "pw"}
        records = codec.decode_legacy(cryptojs_encrypt(json.dumps(legacy), FINGERPRINT))
        assert len(records) == 1
        assert records[0].id == LEGACY_RECORD_ID
        assert records[0].secret == KEY_A
        assert records[0].usage is None

    def test_wrong_passphrase(self, codec):
        blob = cryptojs_encrypt(json.dumps([{"id": "1", "apiKey": KEY_A}]), "someone-else")
        assert codec.decode_legacy(blob) is None

    def test_missing_salt_header(self, codec):
        assert codec.decode_legacy(base64.b64encode(b"x" * 48).decode()) is None


class TestSingleRecordCompat:
    def test_current_format_single_object(self, codec):
        single = {"secret": KEY_A, "account_email": "a@b.com"}
        records = codec.decode(_seal(codec, single))
        assert records == [CredentialRecord(id=LEGACY_RECORD_ID, secret=KEY_A, account_email="a@b.com")]


class TestFingerprint:
    def _env(self, **overrides):
        base = dict(user_agent="ua", locale="en_US", color_depth="24", resolution=FALLBACK,
                    timezone_offset="-60", cpu_count="8")
        base.update(overrides)
        return ClientEnvironment(**base)

    def test_deterministic(self):
        assert derive_fingerprint(self._env()) == derive_fingerprint(self._env())

    def test_sha256_of_joined_fields(self):
        expected = hashlib.sha256("ua||en_US||24||unknown||-60||8".encode()).hexdigest()
        assert derive_fingerprint(self._env()) == expected

    def test_changes_with_environment(self):
        assert derive_fingerprint(self._env()) != derive_fingerprint(self._env(cpu_count="4"))

    def test_empty_attribute_uses_fallback(self):
        assert derive_fingerprint(self._env(locale="")) == derive_fingerprint(self._env(locale=FALLBACK))

    def test_collected_environment_is_stable(self):
        assert derive_fingerprint(collect_environment()) == derive_fingerprint(collect_environment())
        assert len(derive_fingerprint()) == 64
