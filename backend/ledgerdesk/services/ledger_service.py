# Overview: Ledger aggregation; folds ground-truth payments and cash movements into balances.

"""
Ledger Aggregator

Cached balance fields (sale.paid_amount, sale.balance_amount, cash period
totals) are never trusted. Every balance is a fold over the complete,
unfiltered set of immutable rows owned by the entity:

- Sale: confirmed payments
- Cash period: cash movements

INVARIANTS:
- Folds are pure: same rows in any order -> identical result.
- Nothing here writes. Callers decide whether to persist the result.
- Arithmetic is Decimal quantized to cents; no binary floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..enums import CashMethod, CashMovementType, OwnerKind, PaymentStatus
from ..errors import OwnerNotFound, ValidationError
from ..models import CashMovement, CashPeriod, Payment, Sale
from ..money import ZERO, money_str, to_money
from .record_store import RecordStore, default_store


@dataclass(frozen=True)
class Balance:
    paid: Decimal
    balance: Decimal
    is_paid: bool

    def to_dict(self) -> dict:
        return {
            "paid": money_str(self.paid),
            "balance": money_str(self.balance),
            "is_paid": self.is_paid,
        }


@dataclass(frozen=True)
class CashTotals:
    total_income: Decimal
    total_expense: Decimal
    final_balance: Decimal
    income_cash: Decimal
    income_transfer: Decimal
    expense_cash: Decimal
    expense_transfer: Decimal

    def to_dict(self) -> dict:
        return {
            "total_income": money_str(self.total_income),
            "total_expense": money_str(self.total_expense),
            "final_balance": money_str(self.final_balance),
            "income_cash": money_str(self.income_cash),
            "income_transfer": money_str(self.income_transfer),
            "expense_cash": money_str(self.expense_cash),
            "expense_transfer": money_str(self.expense_transfer),
        }

    def to_rows(self) -> list[tuple[str, str]]:
        """Flat (label, amount) rows for tabular export."""
        return [(key, value) for key, value in self.to_dict().items()]


# =============================================================================
# PURE FOLDS
# =============================================================================

def fold_sale_balance(total_amount, payments: Iterable) -> Balance:
    """
    paid = sum of confirmed payment amounts; balance = total - paid.

    Rows that are not confirmed are ignored, so callers may pass the raw
    payment list of a sale.
    """
    total = to_money(total_amount, "total_amount")
    paid = ZERO
    for payment in payments:
        if payment.status != PaymentStatus.CONFIRMED:
            continue
        paid += to_money(payment.amount)
    balance = to_money(total - paid)
    return Balance(paid=to_money(paid), balance=balance, is_paid=balance <= ZERO)


def fold_cash_totals(opening_balance, movements: Iterable) -> CashTotals:
    """
    final = opening + sale - refund + manual_income - manual_expense

    Income/expense are also split by the movement's payment method tag
    (cash / transfer). Untagged movements count only toward the totals.
    """
    opening = to_money(opening_balance, "opening_balance")
    income = {CashMethod.CASH: ZERO, CashMethod.TRANSFER: ZERO, CashMethod.NONE: ZERO}
    expense = {CashMethod.CASH: ZERO, CashMethod.TRANSFER: ZERO, CashMethod.NONE: ZERO}

    for movement in movements:
        amount = to_money(movement.amount)
        method = movement.payment_method or CashMethod.NONE
        if movement.type in (CashMovementType.SALE, CashMovementType.MANUAL_INCOME):
            income[method] += amount
        elif movement.type in (CashMovementType.REFUND, CashMovementType.MANUAL_EXPENSE):
            expense[method] += amount
        else:
            raise ValidationError(f"Unknown cash movement type: {movement.type!r}")

    total_income = sum(income.values(), ZERO)
    total_expense = sum(expense.values(), ZERO)
    return CashTotals(
        total_income=to_money(total_income),
        total_expense=to_money(total_expense),
        final_balance=to_money(opening + total_income - total_expense),
        income_cash=to_money(income[CashMethod.CASH]),
        income_transfer=to_money(income[CashMethod.TRANSFER]),
        expense_cash=to_money(expense[CashMethod.CASH]),
        expense_transfer=to_money(expense[CashMethod.TRANSFER]),
    )


# =============================================================================
# STORE-BACKED COMPUTATION
# =============================================================================

def compute_sale_balance(sale_id: int, *, store: RecordStore | None = None) -> Balance:
    store = store or default_store()
    sale = store.get_one(Sale, OwnerNotFound, id=sale_id)
    payments = store.find_many(Payment, {"sale_id": sale.id, "status": PaymentStatus.CONFIRMED})
    return fold_sale_balance(sale.total_amount, payments)


def compute_cash_totals(cash_period_id: int, *, store: RecordStore | None = None) -> CashTotals:
    store = store or default_store()
    period = store.get_one(CashPeriod, OwnerNotFound, id=cash_period_id)
    movements = store.find_many(CashMovement, {"cash_period_id": period.id})
    return fold_cash_totals(period.opening_balance, movements)


def compute_balance(owner_id: int, owner_kind: OwnerKind, *, store: RecordStore | None = None):
    """
    Recompute the authoritative balance for one owner.

    Returns Balance for a sale, CashTotals for a cash period. Raises
    OwnerNotFound if the owner row does not exist; an owner with no rows
    yields a zero balance.
    """
    if owner_kind == OwnerKind.SALE:
        return compute_sale_balance(owner_id, store=store)
    if owner_kind == OwnerKind.CASH_PERIOD:
        return compute_cash_totals(owner_id, store=store)
    raise ValidationError(f"Unknown owner kind: {owner_kind!r}")
