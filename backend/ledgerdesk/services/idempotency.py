# Overview: Deterministic idempotency keys for payment creation requests.

from __future__ import annotations

import hashlib

from ..money import to_money


def _normalize(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def derive_key(
    sale_id,
    amount,
    method: str | None = None,
    payment_method_id: str | None = None,
    external_reference: str | None = None,
) -> str:
    """
    SHA-256 fingerprint of "sale|amount|method|paymentMethodId|externalReference".

    Missing fields become "". The amount is rendered with exactly 2 decimals
    so 100, 100.0 and "100.00" derive the same key.
    """
    amount_str = "" if amount is None else str(to_money(amount))
    data = "|".join([
        _normalize(sale_id),
        amount_str,
        _normalize(method),
        _normalize(payment_method_id),
        _normalize(external_reference),
    ])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
