# Overview: Pytest coverage for ledger folds and balance recomputation.

"""
Ledger Aggregator Tests

Balances are folds over immutable rows:
1. Sale balance = total - sum(confirmed payments)
2. Cash totals = opening + income - expense, split by method
3. Folds are order-independent and repeatable
"""

import random
from decimal import Decimal
from types import SimpleNamespace

import pytest
from ledgerdesk.enums import CashMethod, CashMovementType, OwnerKind, PaymentStatus
from ledgerdesk.errors import OwnerNotFound, ValidationError
from ledgerdesk.models import Payment
from ledgerdesk.services import ledger_service
from ledgerdesk.services.ledger_service import fold_cash_totals, fold_sale_balance


def _payment(amount, status=PaymentStatus.CONFIRMED):
    return SimpleNamespace(amount=Decimal(amount), status=status)


def _movement(type_, amount, method=CashMethod.CASH):
    return SimpleNamespace(type=type_, amount=Decimal(amount), payment_method=method)


class TestSaleFold:

    def test_partial_payment(self):
        balance = fold_sale_balance("100.00", [_payment("60.00")])
        assert balance.paid == Decimal("60.00")
        assert balance.balance == Decimal("40.00")
        assert balance.is_paid is False

    def test_fully_paid(self):
        balance = fold_sale_balance("100.00", [_payment("60.00"), _payment("40.00")])
        assert balance.paid == Decimal("100.00")
        assert balance.balance == Decimal("0.00")
        assert balance.is_paid is True

    def test_pending_payments_ignored(self):
        balance = fold_sale_balance("100.00", [_payment("60.00"), _payment("40.00", PaymentStatus.PENDING)])
        assert balance.paid == Decimal("60.00")
        assert balance.is_paid is False

    def test_overpaid_is_paid_with_negative_balance(self):
        balance = fold_sale_balance("100.00", [_payment("120.00")])
        assert balance.balance == Decimal("-20.00")
        assert balance.is_paid is True

    def test_no_payments(self):
        balance = fold_sale_balance("55.50", [])
        assert balance.paid == Decimal("0.00")
        assert balance.balance == Decimal("55.50")

    def test_order_independent(self):
        payments = [_payment(a) for a in ("10.10", "20.20", "0.01", "33.33", "5.00")]
        expected = fold_sale_balance("100.00", payments)
        for seed in range(5):
            shuffled = payments[:]
            random.Random(seed).shuffle(shuffled)
            assert fold_sale_balance("100.00", shuffled) == expected

    def test_to_dict_renders_two_decimals(self):
        assert fold_sale_balance("100", [_payment("60")]).to_dict() == {
            "paid": "60.00", "balance": "40.00", "is_paid": False,
        }


class TestCashFold:

    def test_scenario_opening_sale_refund_expense(self):
        totals = fold_cash_totals("1000.00", [
            _movement(CashMovementType.SALE, "500.00"),
            _movement(CashMovementType.REFUND, "50.00"),
            _movement(CashMovementType.MANUAL_EXPENSE, "20.00"),
        ])
        assert totals.final_balance == Decimal("1430.00")
        assert totals.total_income == Decimal("500.00")
        assert totals.total_expense == Decimal("70.00")

    def test_split_by_method(self):
        totals = fold_cash_totals("0.00", [
            _movement(CashMovementType.SALE, "100.00", CashMethod.CASH),
            _movement(CashMovementType.SALE, "250.00", CashMethod.TRANSFER),
            _movement(CashMovementType.MANUAL_INCOME, "10.00", CashMethod.NONE),
            _movement(CashMovementType.MANUAL_EXPENSE, "30.00", CashMethod.TRANSFER),
        ])
        assert totals.income_cash == Decimal("100.00")
        assert totals.income_transfer == Decimal("250.00")
        assert totals.total_income == Decimal("360.00")
        assert totals.expense_transfer == Decimal("30.00")
        assert totals.expense_cash == Decimal("0.00")
        assert totals.final_balance == Decimal("330.00")

    def test_unknown_movement_type_rejected(self):
        with pytest.raises(ValidationError):
            fold_cash_totals("0.00", [SimpleNamespace(type="bonus", amount=Decimal("1.00"), payment_method=None)])

    def test_order_independent(self):
        movements = [
            _movement(CashMovementType.SALE, "19.99"),
            _movement(CashMovementType.REFUND, "3.33", CashMethod.TRANSFER),
            _movement(CashMovementType.MANUAL_INCOME, "0.01"),
            _movement(CashMovementType.MANUAL_EXPENSE, "7.77"),
        ]
        expected = fold_cash_totals("50.00", movements)
        assert fold_cash_totals("50.00", list(reversed(movements))) == expected


class TestComputeBalance:

    def test_sale_balance_from_store(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("100.00")
        payment_factory("60.00", sale=sale, status=PaymentStatus.CONFIRMED)
        payment_factory("25.00", sale=sale)

        balance = ledger_service.compute_balance(sale.id, OwnerKind.SALE)
        assert balance.paid == Decimal("60.00")
        assert balance.balance == Decimal("40.00")

    def test_repeatable_and_read_only(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("100.00")
        payment_factory("100.00", sale=sale, status=PaymentStatus.CONFIRMED)

        first = ledger_service.compute_balance(sale.id, OwnerKind.SALE)
        second = ledger_service.compute_balance(sale.id, OwnerKind.SALE)
        assert first == second
        db_session.refresh(sale)
        # caches untouched by a read
        assert sale.paid_amount == Decimal("0.00")

    def test_missing_owner(self, db_session):
        with pytest.raises(OwnerNotFound):
            ledger_service.compute_balance(999999, OwnerKind.SALE)
        with pytest.raises(OwnerNotFound):
            ledger_service.compute_balance(999999, OwnerKind.CASH_PERIOD)

    def test_payment_rows_unchanged(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("10.00")
        payment_factory("10.00", sale=sale, status=PaymentStatus.CONFIRMED)
        ledger_service.compute_balance(sale.id, OwnerKind.SALE)
        assert db_session.query(Payment).count() == 1
