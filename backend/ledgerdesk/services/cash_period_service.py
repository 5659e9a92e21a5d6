# Overview: Service-layer operations for cash periods (sessions, boxes, registers).

"""
Cash Period Service

WHY: Cash sessions, daily cash boxes and register shifts are the same
accountability pattern: open with a float, collect typed movements, close
with a count. One implementation, parametrized by CashPeriodKind.

DESIGN PRINCIPLES:
- One open period per (kind, tenant, owner); guarded by a unique key, not a lock
- Movements are immutable; totals are always folded from them
- Closing freezes the calculated balance and writes a CashClosure snapshot
- reported - calculated difference is informational; never auto-corrected
- Closed periods are never recomputed, even if a late movement shows up
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..enums import (
    CashMethod,
    CashMovementType,
    CashPeriodKind,
    CashPeriodStatus,
    PaymentStatus,
    parse_enum,
)
from ..errors import (
    AlreadyOpen,
    CashPeriodNotFound,
    NotFoundError,
    NotOpen,
    StoreConflict,
    ValidationError,
)
from ..models import CashClosure, CashMovement, CashPeriod, Payment, Seller
from ..money import ZERO, positive_money, to_money
from ..time_utils import utcnow
from . import ledger_service
from .ledger_service import CashTotals
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)


# Kinds owned by a seller; a box is owned by a branch code.
SELLER_OWNED_KINDS = (CashPeriodKind.SESSION, CashPeriodKind.REGISTER)

# Payment method -> cash box bucket. Unlisted methods get no movement.
PAYMENT_METHOD_BUCKETS = {
    "cash": CashMethod.CASH,
    "transfer": CashMethod.TRANSFER,
    "qr": CashMethod.TRANSFER,
    "mp_point": CashMethod.TRANSFER,
    "card": CashMethod.TRANSFER,
}


@dataclass(frozen=True)
class PeriodSummary:
    period: CashPeriod
    totals: CashTotals
    closure: CashClosure | None = None

    def to_dict(self) -> dict:
        return {
            "cash_period": self.period.to_dict(),
            "totals": self.totals.to_dict(),
            "closure": self.closure.to_dict() if self.closure else None,
            "is_closed": self.period.status == CashPeriodStatus.CLOSED,
        }


def owner_key(kind: CashPeriodKind, tenant_id: int, owner_id) -> str:
    return f"{kind.value}:{tenant_id}:{owner_id}"


def map_payment_method(method: str | None) -> CashMethod | None:
    if not method:
        return None
    return PAYMENT_METHOD_BUCKETS.get(method.strip().lower())


def _require_owner(tenant_id, owner_id) -> str:
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    if owner_id is None or not str(owner_id).strip():
        raise ValidationError("owner_id is required")
    return str(owner_id).strip()


# =============================================================================
# LIFECYCLE
# =============================================================================

def get_open_period(kind, tenant_id: int, owner_id, *, store: RecordStore | None = None) -> CashPeriod | None:
    """Get the currently open period for an owner, if any."""
    store = store or default_store()
    kind = parse_enum(CashPeriodKind, kind, "kind")
    owner = _require_owner(tenant_id, owner_id)
    return store.find_one(
        CashPeriod,
        tenant_id=tenant_id,
        kind=kind,
        owner_id=owner,
        status=CashPeriodStatus.OPEN,
    )


def open_period(
    kind,
    tenant_id: int,
    owner_id,
    opening_balance=ZERO,
    *,
    user_id: int | None = None,
    notes: str | None = None,
    store: RecordStore | None = None,
) -> CashPeriod:
    """
    Open a cash period for an owner.

    Raises:
        ValidationError: missing tenant/owner, negative opening balance
        NotFoundError: seller-owned kind whose seller does not exist
        AlreadyOpen: the owner already has an open period of this kind
    """
    store = store or default_store()
    kind = parse_enum(CashPeriodKind, kind, "kind")
    owner = _require_owner(tenant_id, owner_id)
    opening = to_money(opening_balance if opening_balance is not None else ZERO, "opening_balance")
    if opening < ZERO:
        raise ValidationError("opening_balance cannot be negative")

    if kind in SELLER_OWNED_KINDS:
        try:
            seller_id = int(owner)
        except ValueError:
            raise ValidationError("owner_id must be a seller id")
        seller = store.find_one(Seller, id=seller_id, tenant_id=tenant_id)
        if not seller:
            raise NotFoundError(f"Seller {seller_id} not found")
        if not seller.is_active:
            raise ValidationError(f"Seller {seller_id} is inactive")

    existing = get_open_period(kind, tenant_id, owner, store=store)
    if existing:
        raise AlreadyOpen(f"Owner {owner} already has an open {kind.value} (period {existing.id})")

    period = CashPeriod(
        tenant_id=tenant_id,
        kind=kind,
        owner_id=owner,
        open_owner_key=owner_key(kind, tenant_id, owner),
        status=CashPeriodStatus.OPEN,
        opening_balance=opening,
        opened_by_user_id=user_id,
        opened_at=utcnow(),
        notes=notes,
    )
    try:
        store.insert(period)
    except IntegrityError:
        # another request opened one between our check and insert
        store.rollback()
        raise AlreadyOpen(f"Owner {owner} already has an open {kind.value}")

    if kind == CashPeriodKind.BOX:
        attached = attach_unlinked_payments(period, store=store)
        if attached:
            logger.info("Cash box %s opened with %d pending payment movement(s)", period.id, len(attached))

    store.commit()
    logger.info("Opened %s period %s for owner %s (tenant %s)", kind.value, period.id, owner, tenant_id)
    return period


def close_period(
    period_id: int,
    reported_closing_balance,
    *,
    tenant_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
    store: RecordStore | None = None,
) -> PeriodSummary:
    """
    Close a period: fold its movements, freeze the result, record the
    reported vs calculated difference.

    IMMUTABLE: Once closed, a period cannot be reopened or recomputed.

    Raises:
        CashPeriodNotFound: no such period (for this tenant)
        NotOpen: period is already closed; nothing is written
    """
    store = store or default_store()
    reported = to_money(reported_closing_balance, "closing_balance")

    filters = {"id": period_id}
    if tenant_id is not None:
        filters["tenant_id"] = tenant_id
    period = store.get_one(CashPeriod, CashPeriodNotFound, **filters)
    if period.status != CashPeriodStatus.OPEN:
        raise NotOpen(f"Cash period {period.id} is already closed")

    totals = ledger_service.compute_cash_totals(period.id, store=store)
    difference = to_money(reported - totals.final_balance)
    movement_count = len(store.find_many(CashMovement, {"cash_period_id": period.id}))
    closed_at = utcnow()

    try:
        store.update_where(
            CashPeriod,
            {"id": period.id, "status": CashPeriodStatus.OPEN},
            {
                "status": CashPeriodStatus.CLOSED,
                "closed_at": closed_at,
                "closing_balance": totals.final_balance,
                "reported_closing_balance": reported,
                "difference": difference,
                "open_owner_key": None,
                "closed_by_user_id": user_id,
                "notes": notes if notes is not None else period.notes,
            },
        )
    except StoreConflict:
        store.rollback()
        raise NotOpen(f"Cash period {period_id} was closed concurrently")

    closure = store.insert(CashClosure(
        cash_period_id=period.id,
        tenant_id=period.tenant_id,
        total_income=totals.total_income,
        total_expense=totals.total_expense,
        final_balance=totals.final_balance,
        income_cash=totals.income_cash,
        income_transfer=totals.income_transfer,
        expense_cash=totals.expense_cash,
        expense_transfer=totals.expense_transfer,
        reported_closing_balance=reported,
        difference=difference,
        movement_count=movement_count,
    ))
    store.commit()

    logger.info(
        "Closed %s period %s: calculated %s, reported %s, difference %s",
        period.kind.value, period.id, totals.final_balance, reported, difference,
    )
    return PeriodSummary(period=period, totals=totals, closure=closure)


# =============================================================================
# MOVEMENTS
# =============================================================================

def add_movement(
    period_id: int,
    movement_type,
    amount,
    *,
    payment_method=None,
    reference_id: str | None = None,
    note: str | None = None,
    tenant_id: int | None = None,
    user_id: int | None = None,
    store: RecordStore | None = None,
) -> CashMovement:
    """
    Append a typed movement to an open period.

    amount is unsigned and must be positive; the type carries the sign.
    """
    store = store or default_store()
    movement_type = parse_enum(CashMovementType, movement_type, "type")
    method = parse_enum(CashMethod, payment_method, "payment_method") if payment_method else CashMethod.NONE
    value = positive_money(amount)

    filters = {"id": period_id}
    if tenant_id is not None:
        filters["tenant_id"] = tenant_id
    period = store.get_one(CashPeriod, CashPeriodNotFound, **filters)
    if period.status != CashPeriodStatus.OPEN:
        raise NotOpen(f"Cash period {period.id} is closed; movements are frozen")

    movement = store.insert(CashMovement(
        cash_period_id=period.id,
        tenant_id=period.tenant_id,
        type=movement_type,
        amount=value,
        payment_method=method,
        reference_id=reference_id,
        note=note,
        created_by_user_id=user_id,
        created_at=utcnow(),
    ))
    store.commit()
    return movement


def _payment_movement(period: CashPeriod, payment: Payment, method: CashMethod, user_id=None) -> CashMovement:
    reference = f"sale:{payment.sale_id}" if payment.sale_id else f"payment:{payment.id}"
    return CashMovement(
        cash_period_id=period.id,
        tenant_id=period.tenant_id,
        type=CashMovementType.SALE,
        amount=payment.amount,
        payment_method=method,
        reference_id=reference,
        payment_id=payment.id,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )


def record_payment_movement(
    payment: Payment,
    *,
    user_id: int | None = None,
    store: RecordStore | None = None,
) -> CashMovement | None:
    """
    Add a sale movement for a confirmed payment to the tenant's open cash box.

    Sales carry no branch, so with several boxes open the most recently
    opened one receives the movement.

    No open box is valid: the payment stays confirmed and is attached when the
    next box opens. Does not commit; runs inside the caller's unit of work.
    """
    store = store or default_store()
    if payment.status != PaymentStatus.CONFIRMED:
        return None
    method = map_payment_method(payment.method)
    if method is None:
        logger.debug("Payment %s method %r has no cash bucket", payment.id, payment.method)
        return None

    boxes = store.find_many(
        CashPeriod,
        {"tenant_id": payment.tenant_id, "kind": CashPeriodKind.BOX, "status": CashPeriodStatus.OPEN},
        order_by=(CashPeriod.opened_at.desc(), CashPeriod.id.desc()),
        limit=1,
    )
    if not boxes:
        logger.info("No open cash box for payment %s; movement deferred", payment.id)
        return None
    box = boxes[0]

    existing = store.find_one(CashMovement, cash_period_id=box.id, payment_id=payment.id)
    if existing:
        return existing
    return store.insert(_payment_movement(box, payment, method, user_id))


def _unattached_payments(tenant_id: int, store: RecordStore) -> list[Payment]:
    attached = {
        m.payment_id
        for m in store.find_many(
            CashMovement,
            {"tenant_id": tenant_id},
            criteria=(CashMovement.payment_id.isnot(None),),
        )
    }
    return [
        p for p in store.find_many(
            Payment,
            {"tenant_id": tenant_id, "status": PaymentStatus.CONFIRMED},
            criteria=(Payment.sale_id.isnot(None),),
            order_by=(Payment.created_at, Payment.id),
        )
        if p.id not in attached and map_payment_method(p.method) is not None
    ]


def attach_unlinked_payments(period: CashPeriod, *, store: RecordStore | None = None) -> list[CashMovement]:
    """Attach confirmed payments that never reached a cash box. Does not commit."""
    store = store or default_store()
    movements = []
    for payment in _unattached_payments(period.tenant_id, store):
        method = map_payment_method(payment.method)
        movements.append(store.insert(_payment_movement(period, payment, method)))
    return movements


def count_unattached_payments(tenant_id: int, *, store: RecordStore | None = None) -> int:
    """Confirmed sale payments with a cash bucket and no cash movement yet."""
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    return len(_unattached_payments(tenant_id, store))


# =============================================================================
# REPORTING
# =============================================================================

def get_period_movements(period_id: int, *, store: RecordStore | None = None) -> list[CashMovement]:
    store = store or default_store()
    return store.find_many(
        CashMovement,
        {"cash_period_id": period_id},
        order_by=(CashMovement.created_at, CashMovement.id),
    )


def _totals_from_closure(closure: CashClosure) -> CashTotals:
    return CashTotals(
        total_income=closure.total_income,
        total_expense=closure.total_expense,
        final_balance=closure.final_balance,
        income_cash=closure.income_cash,
        income_transfer=closure.income_transfer,
        expense_cash=closure.expense_cash,
        expense_transfer=closure.expense_transfer,
    )


def get_period_summary(
    period_id: int,
    *,
    tenant_id: int | None = None,
    store: RecordStore | None = None,
) -> PeriodSummary:
    """
    Live totals for an open period; the frozen closing snapshot for a closed one.
    """
    store = store or default_store()
    filters = {"id": period_id}
    if tenant_id is not None:
        filters["tenant_id"] = tenant_id
    period = store.get_one(CashPeriod, CashPeriodNotFound, **filters)

    if period.status == CashPeriodStatus.CLOSED:
        closure = store.find_one(CashClosure, cash_period_id=period.id)
        if closure:
            return PeriodSummary(period=period, totals=_totals_from_closure(closure), closure=closure)

    totals = ledger_service.compute_cash_totals(period.id, store=store)
    return PeriodSummary(period=period, totals=totals)
