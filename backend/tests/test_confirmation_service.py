# Overview: Pytest coverage for reconcile and payment confirmation.

"""
Confirmation Coordinator Tests

1. Auto match confirms the payment, consumes the transfer, pays the sale
2. Suggested match only links; the payment stays pending
3. A user confirms a suggestion (assisted) or a bare payment (manual)
4. A transfer is never consumed by two payments
   (also when a rival links or consumes it between the check and the write)
5. Stale candidates are skipped
"""

from decimal import Decimal

import pytest
from ledgerdesk.enums import (
    CashPeriodKind,
    ConfirmationType,
    MatchResult,
    PaymentStatus,
    SaleStatus,
)
from ledgerdesk.errors import ConcurrentMatchConflict, InvalidPaymentState, PaymentNotFound, ValidationError
from ledgerdesk.models import CashMovement, IncomingTransfer, Payment, PaymentConfirmation
from ledgerdesk.services import cash_period_service, confirmation_service, matching_service
from ledgerdesk.services.matching_service import MatchCandidate

from conftest import RacingStore, hours_ago, link_transfer_to


def _match_and_reconcile(transfer):
    candidates = matching_service.match_transfer(transfer.tenant_id, transfer.id)
    return confirmation_service.reconcile(transfer.id, candidates)


class TestReconcile:

    def test_auto_match_confirms_and_pays_sale(self, db_session, sale_factory, payment_factory, transfer_factory):
        sale = sale_factory("549.25")
        payment = payment_factory("549.25", sale=sale, reference="SALE-9A8619DC", created_at=hours_ago(1))
        transfer = transfer_factory("549.25", reference="SALE-9A8619DC")

        result = _match_and_reconcile(transfer)

        assert result.applied is True
        assert result.match_result == MatchResult.MATCHED_AUTO
        assert result.balance.is_paid is True

        db_session.refresh(payment)
        db_session.refresh(transfer)
        db_session.refresh(sale)
        assert payment.status == PaymentStatus.CONFIRMED
        assert payment.matched_transfer_id == transfer.id
        assert payment.match_result == MatchResult.MATCHED_AUTO
        assert transfer.consumed is True
        assert transfer.consumed_by_payment_id == payment.id
        assert sale.status == SaleStatus.PAID
        assert sale.paid_amount == Decimal("549.25")
        assert sale.balance_amount == Decimal("0.00")

        audit = db_session.query(PaymentConfirmation).filter_by(payment_id=payment.id).one()
        assert audit.confirmation_type == ConfirmationType.AUTO
        assert audit.transfer_id == transfer.id

    def test_suggested_match_only_links(self, db_session, sale_factory, payment_factory, transfer_factory):
        sale = sale_factory("500.00")
        first = payment_factory("500.00", sale=sale, created_at=hours_ago(1))
        second = payment_factory("500.00", sale=sale, created_at=hours_ago(2))
        transfer = transfer_factory("500.00")

        result = _match_and_reconcile(transfer)

        assert result.applied is True
        assert result.match_result == MatchResult.MATCHED_SUGGESTED
        assert result.payment_id == first.id
        assert result.balance is None

        db_session.refresh(first)
        db_session.refresh(second)
        db_session.refresh(transfer)
        assert first.status == PaymentStatus.PENDING
        assert first.matched_transfer_id == transfer.id
        assert first.match_result == MatchResult.MATCHED_SUGGESTED
        assert second.matched_transfer_id is None
        assert transfer.consumed is False
        assert db_session.query(PaymentConfirmation).count() == 0

    def test_no_candidates_writes_nothing(self, db_session, transfer_factory):
        transfer = transfer_factory("12.34")
        result = _match_and_reconcile(transfer)
        assert result.applied is False
        assert result.match_result == MatchResult.NO_MATCH
        db_session.refresh(transfer)
        assert transfer.consumed is False

    def test_transfer_consumed_once(self, db_session, payment_factory, transfer_factory):
        payment = payment_factory("20.00", reference="R-1", created_at=hours_ago(1))
        first = transfer_factory("20.00", reference="R-1")
        second = transfer_factory("20.00", reference="R-1")

        candidates = matching_service.match_transfer(first.tenant_id, first.id)
        stale = [MatchCandidate(
            payment_id=payment.id,
            transfer_id=second.id,
            confidence=candidates[0].confidence,
            match_result=MatchResult.MATCHED_AUTO,
        )]
        confirmation_service.reconcile(first.id, candidates)

        # the same payment offered for a second transfer loses every retry
        with pytest.raises(ConcurrentMatchConflict):
            confirmation_service.reconcile(second.id, stale)

        db_session.refresh(second)
        assert second.consumed is False
        assert db_session.query(IncomingTransfer).filter_by(consumed=True).count() == 1
        assert db_session.query(PaymentConfirmation).filter_by(payment_id=payment.id).count() == 1

    def test_vanished_payment_is_skipped(self, db_session, payment_factory, transfer_factory):
        payment = payment_factory("20.00", reference="R-2", created_at=hours_ago(1))
        transfer = transfer_factory("20.00", reference="R-2")
        candidates = matching_service.match_transfer(transfer.tenant_id, transfer.id)

        db_session.delete(payment)
        db_session.commit()

        result = confirmation_service.reconcile(transfer.id, candidates)
        assert result.applied is False
        assert result.skipped_reason
        db_session.refresh(transfer)
        assert transfer.consumed is False

    def test_winner_must_belong_to_transfer(self, db_session, payment_factory, transfer_factory):
        payment = payment_factory("20.00", created_at=hours_ago(1))
        transfer = transfer_factory("20.00")
        other = transfer_factory("20.00")
        candidate = MatchCandidate(payment.id, other.id, 0.95, MatchResult.MATCHED_AUTO)
        with pytest.raises(ValidationError):
            confirmation_service.reconcile(transfer.id, [candidate])

    def test_auto_confirm_records_cash_movement(self, db_session, tenant, sale_factory, payment_factory,
                                                transfer_factory):
        box = cash_period_service.open_period(CashPeriodKind.BOX, tenant.id, "BRANCH-1", "100.00")
        sale = sale_factory("80.00")
        payment = payment_factory("80.00", sale=sale, reference="SALE-80", created_at=hours_ago(1))
        transfer = transfer_factory("80.00", reference="SALE-80")

        _match_and_reconcile(transfer)

        movement = db_session.query(CashMovement).filter_by(payment_id=payment.id).one()
        assert movement.cash_period_id == box.id
        assert movement.amount == Decimal("80.00")


class TestRaces:

    def _auto_setup(self, payment_factory, transfer_factory):
        payment = payment_factory("20.00", reference="R-7", created_at=hours_ago(1))
        rival = payment_factory("999.00", created_at=hours_ago(1))
        transfer = transfer_factory("20.00", reference="R-7")
        candidates = matching_service.match_transfer(transfer.tenant_id, transfer.id)
        assert candidates[0].match_result == MatchResult.MATCHED_AUTO
        return payment, rival, transfer, candidates

    def test_rival_link_is_retried_then_applied(self, db_session, payment_factory, transfer_factory):
        payment, rival, transfer, candidates = self._auto_setup(payment_factory, transfer_factory)
        store = RacingStore(Payment, link_transfer_to(rival.id), races=1)

        result = confirmation_service.reconcile(transfer.id, candidates, store=store)

        assert result.applied is True
        db_session.refresh(payment)
        db_session.refresh(rival)
        db_session.refresh(transfer)
        assert payment.status == PaymentStatus.CONFIRMED
        assert payment.matched_transfer_id == transfer.id
        assert rival.matched_transfer_id is None
        assert transfer.consumed_by_payment_id == payment.id

    def test_rival_link_twice_raises_conflict(self, db_session, payment_factory, transfer_factory):
        payment, rival, transfer, candidates = self._auto_setup(payment_factory, transfer_factory)
        store = RacingStore(Payment, link_transfer_to(rival.id), races=2)

        with pytest.raises(ConcurrentMatchConflict):
            confirmation_service.reconcile(transfer.id, candidates, store=store)

        # the losing unit of work left nothing behind
        db_session.refresh(payment)
        db_session.refresh(transfer)
        assert payment.status == PaymentStatus.PENDING
        assert payment.matched_transfer_id is None
        assert transfer.consumed is False
        assert db_session.query(PaymentConfirmation).count() == 0

    def test_rival_consumes_transfer_between_check_and_write(self, db_session, payment_factory,
                                                           transfer_factory):
        payment, _, transfer, candidates = self._auto_setup(payment_factory, transfer_factory)

        def _consume(session, patch):
            session.query(IncomingTransfer).filter_by(id=transfer.id).update(
                {"consumed": True}, synchronize_session=False
            )

        store = RacingStore(IncomingTransfer, _consume, races=2)
        with pytest.raises(ConcurrentMatchConflict):
            confirmation_service.reconcile(transfer.id, candidates, store=store)

        db_session.refresh(payment)
        assert payment.status == PaymentStatus.PENDING
        assert db_session.query(PaymentConfirmation).count() == 0

    def test_assisted_confirm_losing_link_race_is_conflict(self, db_session, payment_factory, transfer_factory):
        payment = payment_factory("50.00", created_at=hours_ago(1))
        rival = payment_factory("999.00", created_at=hours_ago(1))
        transfer = transfer_factory("50.00")
        store = RacingStore(Payment, link_transfer_to(rival.id), races=2)

        with pytest.raises(ConcurrentMatchConflict):
            confirmation_service.confirm_payment(
                payment.id, tenant_id=payment.tenant_id, transfer_id=transfer.id, store=store
            )

        db_session.refresh(payment)
        assert payment.status == PaymentStatus.PENDING


class TestConfirmPayment:

    def test_assisted_confirmation_of_suggestion(self, db_session, sale_factory, payment_factory, transfer_factory):
        sale = sale_factory("500.00")
        first = payment_factory("500.00", sale=sale, created_at=hours_ago(1))
        payment_factory("500.00", sale=sale, created_at=hours_ago(2))
        transfer = transfer_factory("500.00")
        _match_and_reconcile(transfer)

        result = confirmation_service.confirm_payment(first.id, tenant_id=first.tenant_id, user_id=42)

        assert result.confirmation.confirmation_type == ConfirmationType.ASSISTED
        assert result.confirmation.confirmed_by_user_id == 42
        assert result.balance.is_paid is True
        db_session.refresh(transfer)
        assert transfer.consumed is True
        assert transfer.consumed_by_payment_id == first.id

    def test_manual_confirmation_without_transfer(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("100.00")
        payment = payment_factory("60.00", sale=sale)

        result = confirmation_service.confirm_payment(payment.id, tenant_id=payment.tenant_id)

        assert result.confirmation.confirmation_type == ConfirmationType.MANUAL
        assert result.confirmation.transfer_id is None
        assert result.balance.balance == Decimal("40.00")

    def test_explicit_transfer_releases_other_suggestion(self, db_session, payment_factory, transfer_factory):
        suggested = payment_factory("500.00", created_at=hours_ago(1))
        chosen = payment_factory("500.00", created_at=hours_ago(2))
        transfer = transfer_factory("500.00")
        _match_and_reconcile(transfer)
        db_session.refresh(suggested)
        assert suggested.matched_transfer_id == transfer.id

        confirmation_service.confirm_payment(chosen.id, tenant_id=chosen.tenant_id, transfer_id=transfer.id)

        db_session.refresh(suggested)
        db_session.refresh(chosen)
        assert chosen.matched_transfer_id == transfer.id
        assert suggested.matched_transfer_id is None
        assert suggested.status == PaymentStatus.PENDING

    def test_confirming_twice_is_rejected(self, db_session, payment_factory):
        payment = payment_factory("10.00")
        confirmation_service.confirm_payment(payment.id, tenant_id=payment.tenant_id)
        with pytest.raises(InvalidPaymentState):
            confirmation_service.confirm_payment(payment.id, tenant_id=payment.tenant_id)

    def test_consumed_transfer_cannot_be_reused(self, db_session, payment_factory, transfer_factory):
        transfer = transfer_factory("10.00")
        first = payment_factory("10.00")
        second = payment_factory("10.00")
        confirmation_service.confirm_payment(first.id, tenant_id=first.tenant_id, transfer_id=transfer.id)

        with pytest.raises(ConcurrentMatchConflict):
            confirmation_service.confirm_payment(second.id, tenant_id=second.tenant_id, transfer_id=transfer.id)
        db_session.refresh(second)
        assert second.status == PaymentStatus.PENDING

    def test_other_tenant_cannot_confirm(self, db_session, other_tenant, payment_factory):
        payment = payment_factory("10.00")
        with pytest.raises(PaymentNotFound):
            confirmation_service.confirm_payment(payment.id, tenant_id=other_tenant.id)

    def test_tenant_required(self, db_session):
        with pytest.raises(ValidationError):
            confirmation_service.confirm_payment(1, tenant_id=None)


class TestSaleCache:

    def test_paid_reverts_when_balance_positive(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("100.00")
        payment = payment_factory("100.00", sale=sale, status=PaymentStatus.CONFIRMED)
        confirmation_service.refresh_sale_cache(sale.id)
        db_session.commit()
        assert sale.status == SaleStatus.PAID
        assert sale.payment_completed_at is not None

        db_session.delete(payment)
        db_session.commit()
        balance = confirmation_service.refresh_sale_cache(sale.id)
        db_session.commit()

        assert balance.balance == Decimal("100.00")
        assert sale.status == SaleStatus.CONFIRMED
        assert sale.payment_completed_at is None

    def test_cancelled_sale_keeps_status(self, db_session, sale_factory, payment_factory):
        sale = sale_factory("50.00", status=SaleStatus.CANCELLED)
        payment_factory("50.00", sale=sale, status=PaymentStatus.CONFIRMED)
        confirmation_service.refresh_sale_cache(sale.id)
        db_session.commit()
        assert sale.status == SaleStatus.CANCELLED
        assert sale.paid_amount == Decimal("50.00")
