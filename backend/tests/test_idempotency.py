# Overview: Pytest coverage for idempotency key derivation.

import hashlib
from decimal import Decimal

from ledgerdesk.services.idempotency import derive_key


def test_same_inputs_same_key():
    assert derive_key(1, "100.00", "transfer", "pm-1", "EXT-9") == derive_key(1, "100.00", "transfer", "pm-1", "EXT-9")


def test_amount_representations_agree():
    keys = {derive_key(7, amount, "cash") for amount in (100, 100.0, "100", "100.00", Decimal("100.000"))}
    assert len(keys) == 1


def test_any_field_changes_key():
    base = derive_key(1, "10.00", "cash", "pm-1", "ref")
    assert derive_key(2, "10.00", "cash", "pm-1", "ref") != base
    assert derive_key(1, "10.01", "cash", "pm-1", "ref") != base
    assert derive_key(1, "10.00", "card", "pm-1", "ref") != base
    assert derive_key(1, "10.00", "cash", "pm-2", "ref") != base
    assert derive_key(1, "10.00", "cash", "pm-1", "other") != base


def test_missing_fields_become_empty():
    expected = hashlib.sha256("5|12.50|||".encode("utf-8")).hexdigest()
    assert derive_key(5, "12.5") == expected


def test_key_is_sha256_hex():
    key = derive_key(None, None)
    assert len(key) == 64
    int(key, 16)
