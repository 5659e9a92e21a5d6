# Overview: Pytest coverage for idempotent payment creation.

"""
Payment Service Tests

1. Manual payments confirm on creation and update the sale
2. A retried creation returns the same row with no second effect
3. Gateway payments stay pending and are matched against waiting transfers
"""

from decimal import Decimal

import pytest
from ledgerdesk.enums import CashPeriodKind, MatchResult, PaymentCategory, PaymentStatus, SaleStatus
from ledgerdesk.errors import PaymentNotFound, SaleNotFound, ValidationError
from ledgerdesk.models import CashMovement, Payment, PaymentConfirmation
from ledgerdesk.services import cash_period_service, payment_service, transfer_service
from ledgerdesk.services.record_store import RecordStore

from conftest import hours_ago


class TestCreatePayment:

    def test_partial_then_full_payment(self, db_session, tenant, sale_factory):
        sale = sale_factory("100.00")

        first = payment_service.create_payment(tenant.id, sale.id, "60.00", "cash", payment_category="manual")
        assert first.created is True
        assert first.payment.status == PaymentStatus.CONFIRMED
        assert first.balance.paid == Decimal("60.00")
        assert first.balance.balance == Decimal("40.00")
        assert first.balance.is_paid is False

        second = payment_service.create_payment(tenant.id, sale.id, "40.00", "cash", payment_category="manual")
        assert second.balance.paid == Decimal("100.00")
        assert second.balance.balance == Decimal("0.00")
        assert second.balance.is_paid is True

        db_session.refresh(sale)
        assert sale.status == SaleStatus.PAID

    def test_retry_returns_same_payment(self, db_session, tenant, sale_factory):
        sale = sale_factory("100.00")
        kwargs = dict(payment_method_id="pm-1", external_reference="EXT-1", payment_category="manual")

        first = payment_service.create_payment(tenant.id, sale.id, "60.00", "cash", **kwargs)
        retry = payment_service.create_payment(tenant.id, sale.id, 60, "cash", **kwargs)

        assert retry.created is False
        assert retry.payment.id == first.payment.id
        assert db_session.query(Payment).count() == 1
        assert db_session.query(PaymentConfirmation).count() == 1
        db_session.refresh(sale)
        assert sale.paid_amount == Decimal("60.00")

    def test_different_reference_is_a_new_payment(self, db_session, tenant, sale_factory):
        sale = sale_factory("100.00")
        a = payment_service.create_payment(tenant.id, sale.id, "10.00", "cash", external_reference="A",
                                           payment_category="manual")
        b = payment_service.create_payment(tenant.id, sale.id, "10.00", "cash", external_reference="B",
                                           payment_category="manual")
        assert a.payment.id != b.payment.id

    def test_concurrent_duplicate_returns_winner(self, db_session, tenant, sale_factory):
        sale = sale_factory("100.00")

        class _RivalInsertsFirst(RecordStore):
            """The idempotency lookup misses, then a rival request commits the same key."""
            rival_id = None

            def find_one(self, model, **filters):
                row = super().find_one(model, **filters)
                if model is Payment and "idempotency_key" in filters and self.rival_id is None:
                    rival = Payment(
                        tenant_id=tenant.id,
                        sale_id=sale.id,
                        amount=Decimal("40.00"),
                        method="transfer",
                        payment_category=PaymentCategory.GATEWAY,
                        status=PaymentStatus.PENDING,
                        match_confidence=0.0,
                        match_result=MatchResult.NO_MATCH,
                        idempotency_key=filters["idempotency_key"],
                    )
                    self.session.add(rival)
                    self.session.commit()
                    self.rival_id = rival.id
                return row

        store = _RivalInsertsFirst()
        result = payment_service.create_payment(tenant.id, sale.id, "40.00", "transfer", store=store)

        assert result.created is False
        assert result.payment.id == store.rival_id
        assert db_session.query(Payment).count() == 1

    def test_gateway_payment_stays_pending(self, db_session, tenant, sale_factory):
        sale = sale_factory("100.00")
        result = payment_service.create_payment(tenant.id, sale.id, "100.00", "mercadopago")
        assert result.payment.status == PaymentStatus.PENDING
        assert result.reconcile is None
        db_session.refresh(sale)
        assert sale.status == SaleStatus.CONFIRMED

    def test_pending_payment_matches_waiting_transfer(self, db_session, tenant, sale_factory, transfer_factory):
        sale = sale_factory("549.25")
        transfer = transfer_factory("549.25", reference="SALE-9A8619DC")

        result = payment_service.create_payment(
            tenant.id, sale.id, "549.25", "transfer",
            reference="SALE-9A8619DC", payment_category="external",
        )

        # created after the transfer: amount + reference + uniqueness
        assert result.reconcile.transfer_id == transfer.id
        assert result.reconcile.match_result == MatchResult.MATCHED_AUTO
        assert result.payment.status == PaymentStatus.CONFIRMED
        assert result.balance.is_paid is True

    def test_manual_payment_lands_in_open_box(self, db_session, tenant, sale_factory):
        box = cash_period_service.open_period(CashPeriodKind.BOX, tenant.id, "BRANCH-1", "0")
        sale = sale_factory("20.00")
        result = payment_service.create_payment(tenant.id, sale.id, "20.00", "cash", payment_category="manual")

        movement = db_session.query(CashMovement).filter_by(payment_id=result.payment.id).one()
        assert movement.cash_period_id == box.id

    def test_validation(self, db_session, tenant, other_tenant, sale_factory):
        sale = sale_factory("10.00")
        with pytest.raises(ValidationError):
            payment_service.create_payment(None, sale.id, "10.00", "cash")
        with pytest.raises(ValidationError):
            payment_service.create_payment(tenant.id, sale.id, "0.00", "cash")
        with pytest.raises(ValidationError):
            payment_service.create_payment(tenant.id, sale.id, "10.00", "")
        with pytest.raises(ValidationError):
            payment_service.create_payment(tenant.id, sale.id, "10.00", "cash", payment_category="barter")
        with pytest.raises(SaleNotFound):
            payment_service.create_payment(other_tenant.id, sale.id, "10.00", "cash")

    def test_cancelled_sale_rejected(self, db_session, tenant, sale_factory):
        sale = sale_factory("10.00", status=SaleStatus.CANCELLED)
        with pytest.raises(ValidationError):
            payment_service.create_payment(tenant.id, sale.id, "10.00", "cash", payment_category="manual")


class TestQueries:

    def test_matching_status_of_suggestion(self, db_session, tenant, payment_factory, transfer_factory):
        payment = payment_factory("500.00", created_at=hours_ago(1))
        payment_factory("500.00", created_at=hours_ago(2))
        transfer = transfer_factory("500.00")
        transfer_service.reconcile_transfer(tenant.id, transfer.id)

        status = payment_service.get_payment_matching_status(payment.id, tenant_id=tenant.id)
        assert status["match_result"] == "matched_suggested"
        assert status["awaiting_confirmation"] is True
        assert status["matched_transfer"]["id"] == transfer.id
        assert status["confirmations"] == []

    def test_get_payment_scoped_to_tenant(self, db_session, other_tenant, payment_factory):
        payment = payment_factory("10.00")
        with pytest.raises(PaymentNotFound):
            payment_service.get_payment(payment.id, tenant_id=other_tenant.id)
