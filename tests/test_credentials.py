"""Tests for local credential hashing."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sysarp.auth.credentials import constant_time_equals, hash_credential, verify_credential


def test_hash_and_verify():
    stored = hash_credential("correct horse")
    assert stored.startswith("scrypt$")
    assert verify_credential(stored, "correct horse")
    assert not verify_credential(stored, "Correct horse")


def test_hashes_are_salted():
    assert hash_credential("same") != hash_credential("same")


def test_malformed_hashes_never_verify():
    assert not verify_credential("", "x")
    assert not verify_credential(None, "x")
    assert not verify_credential("plain-text", "plain-text")
    assert not verify_credential("md5$abc$def", "x")
    assert not verify_credential("scrypt$only-two", "x")


def test_constant_time_equals():
    assert constant_time_equals("admin123", "admin123")
    assert not constant_time_equals("admin123", "admin124")
