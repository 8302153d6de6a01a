"""Tests for free-text import and plain-text export."""

import pytest

from keyquota.importer import (
    ImportOutcome,
    export_text,
    import_text,
    is_acceptable_secret,
    normalize_separators,
    parse_credentials,
    scan_secrets,
)
from keyquota.models import CredentialRecord

from conftest import KEY_A, KEY_B, KEY_C

LONG_A = "A" * 28 + "1234"
LONG_B = "B" * 28 + "5678"


class TestSeparators:
    @pytest.mark.parametrize("colon", ["：", "﹕", "︓", "∶", "꞉"])
    def test_colon_variants(self, colon):
        assert normalize_separators(f"Key{colon} x") == "Key: x"

    def test_scan_in_order(self):
        found = scan_secrets(f"Key: {KEY_A}\nfoo\nKey: {KEY_B}")
        assert [o.value for o in found] == [KEY_A, KEY_B]
        assert found[0].start < found[1].start


class TestAcceptance:
    def test_uuid_with_suffix(self):
        assert is_acceptable_secret(KEY_A)

    def test_plain_uuid(self):
        assert is_acceptable_secret(KEY_B)

    def test_long_non_uuid_accepted(self):
        assert is_acceptable_secret(LONG_A)

    def test_exactly_thirty_non_uuid_rejected(self):
        assert not is_acceptable_secret("x" * 30)


class TestParse:
    def test_chunk_boundaries(self):
        text = f"Key: {LONG_A} Account: a@x.com Password: p1\nKey: {LONG_B} Account: b@x.com"
        result = parse_credentials(text)
        assert [(r.secret, r.account_email, r.account_password) for r in result.candidates] == [
            (LONG_A, "a@x.com", "p1"),
            (LONG_B, "b@x.com", ""),
        ]

    def test_account_after_next_key_not_attributed_back(self):
        text = f"Key: {KEY_A}\nKey: {KEY_B}\nAccount: late@x.com"
        first, second = parse_credentials(text).candidates
        assert first.account_email == ""
        assert second.account_email == "late@x.com"

    def test_chinese_labels_and_fullwidth_colon(self):
        text = f"密钥：{KEY_A}\n账户：me@example.com\n密码：秘密123"
        (rec,) = parse_credentials(text).candidates
        assert rec.secret == KEY_A
        assert rec.account_email == "me@example.com"
        assert rec.account_password == "秘密123"

    def test_labels_case_insensitive(self):
        text = f"API KEY: {KEY_A}\nEMAIL: me@example.com\npassword: pw"
        (rec,) = parse_credentials(text).candidates
        assert rec.account_email == "me@example.com"
        assert rec.account_password == "pw"

    def test_short_value_not_captured(self):
        result = parse_credentials("Key: tooshort")
        assert result.found == 0

    def test_thirty_char_value_found_but_rejected(self):
        result = parse_credentials("Key: " + "x" * 30)
        assert result.found == 1
        assert result.rejected == 1
        assert result.candidates == []

    def test_each_candidate_gets_unique_id(self):
        result = parse_credentials(f"Key: {KEY_A}\nKey: {KEY_B}\nKey: {KEY_C}")
        assert len({r.id for r in result.candidates}) == 3


class TestImport:
    def test_empty_input(self):
        records = []
        outcome = import_text(records, "   \n ")
        assert outcome == ImportOutcome("empty_input")
        assert outcome.message == "Paste some text to import first"
        assert not outcome.clear_input

    def test_no_keys(self):
        outcome = import_text([], "hello world")
        assert outcome.status == "no_keys"
        assert outcome.message == "No valid key format found"

    def test_imports_new(self):
        records = []
        outcome = import_text(records, f"Key: {KEY_A}\nKey: {KEY_B}")
        assert outcome.status == "imported"
        assert outcome.added == 2
        assert outcome.clear_input
        assert outcome.message == "Imported 2 new keys"
        assert [r.secret for r in records] == [KEY_A, KEY_B]

    def test_singular_message(self):
        assert import_text([], f"Key: {KEY_A}").message == "Imported 1 new key"

    def test_skips_existing_secret(self):
        records = [CredentialRecord(id="old", secret=KEY_A)]
        outcome = import_text(records, f"Key: {KEY_A}\nKey: {KEY_B}")
        assert outcome.added == 1
        assert outcome.duplicates == 1
        assert [r.id for r in records][0] == "old"
        assert len(records) == 2

    def test_duplicate_within_same_paste(self):
        records = []
        outcome = import_text(records, f"Key: {KEY_A}\nKey: {KEY_A}")
        assert outcome.added == 1
        assert outcome.duplicates == 1
        assert len(records) == 1

    def test_nothing_new(self):
        records = [CredentialRecord(id="old", secret=KEY_A)]
        outcome = import_text(records, f"Key: {KEY_A}")
        assert outcome.status == "nothing_new"
        assert outcome.message == "Nothing imported (duplicates or bad format)"
        assert not outcome.clear_input
        assert len(records) == 1

    def test_only_rejected_is_nothing_new(self):
        outcome = import_text([], "Key: " + "x" * 30)
        assert outcome.status == "nothing_new"
        assert outcome.rejected == 1


class TestExport:
    def test_format(self):
        records = [
            CredentialRecord(id="1", secret=KEY_A, account_email="a@x.com", account_password="pw"),
            CredentialRecord(id="2", secret=KEY_B),
        ]
        assert export_text(records) == (
            f"Key: {KEY_A}\nAccount: a@x.com\nPassword: pw\n"
            "\n"
            f"Key: {KEY_B}\n"
        )

    def test_export_reimports_into_empty_collection(self):
        original = [
            CredentialRecord(id="1", secret=KEY_A, account_email="a@x.com", account_password="pw"),
            CredentialRecord(id="2", secret=KEY_B, account_email="b@x.com"),
        ]
        restored = []
        import_text(restored, export_text(original))
        assert [(r.secret, r.account_email, r.account_password) for r in restored] == [
            (r.secret, r.account_email, r.account_password) for r in original
        ]
