"""
Sale Balance Service

WHY: A sale's paid/balance fields are caches. These operations read the live
balance, persist a refreshed cache on demand, and find sales whose cache has
drifted from the confirmed payments.
"""

from __future__ import annotations

import logging

from ..errors import SaleNotFound, ValidationError
from ..models import Sale
from ..money import to_money
from . import ledger_service
from .concurrency import run_with_retry
from .confirmation_service import refresh_sale_cache
from .ledger_service import Balance
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)


def get_sale(sale_id: int, *, tenant_id: int, store: RecordStore | None = None) -> Sale:
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    return store.get_one(Sale, SaleNotFound, id=sale_id, tenant_id=tenant_id)


def get_sale_balance(sale_id: int, *, tenant_id: int, store: RecordStore | None = None) -> Balance:
    """Live balance folded from confirmed payments; writes nothing."""
    store = store or default_store()
    sale = get_sale(sale_id, tenant_id=tenant_id, store=store)
    return ledger_service.compute_sale_balance(sale.id, store=store)


def recalculate_sale(sale_id: int, *, tenant_id: int, store: RecordStore | None = None) -> Balance:
    """Persist a refreshed balance cache (and paid/confirmed status) for one sale."""
    store = store or default_store()
    sale = get_sale(sale_id, tenant_id=tenant_id, store=store)

    def _op():
        balance = refresh_sale_cache(sale.id, store=store)
        store.commit()
        return balance

    return run_with_retry(_op)


def _sales(tenant_id: int | None, store: RecordStore) -> list[Sale]:
    filters = {"tenant_id": tenant_id} if tenant_id is not None else None
    return store.find_many(Sale, filters, order_by=(Sale.id,))


def find_drift(tenant_id: int | None = None, *, store: RecordStore | None = None) -> list[dict]:
    """Sales whose cached paid/balance disagree with the ledger fold."""
    store = store or default_store()
    drifted = []
    for sale in _sales(tenant_id, store):
        balance = ledger_service.compute_sale_balance(sale.id, store=store)
        cached_paid = to_money(sale.paid_amount or 0)
        cached_balance = to_money(sale.balance_amount or 0)
        if cached_paid != balance.paid or cached_balance != balance.balance:
            drifted.append({
                "sale_id": sale.id,
                "tenant_id": sale.tenant_id,
                "cached_paid": cached_paid,
                "cached_balance": cached_balance,
                "paid": balance.paid,
                "balance": balance.balance,
            })
    return drifted


def recalculate_all(tenant_id: int | None = None, *, store: RecordStore | None = None) -> int:
    """Refresh every sale cache; returns the number of sales processed."""
    store = store or default_store()
    sales = _sales(tenant_id, store)
    for sale in sales:
        refresh_sale_cache(sale.id, store=store)
    store.commit()
    logger.info("Recalculated %d sale balance(s)", len(sales))
    return len(sales)
