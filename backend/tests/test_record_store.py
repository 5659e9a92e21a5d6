# Overview: Pytest coverage for the record store's guarded update.

import pytest
from ledgerdesk.enums import PaymentStatus
from ledgerdesk.errors import PaymentNotFound, StoreConflict
from ledgerdesk.models import Payment
from ledgerdesk.services.record_store import RecordStore


def test_update_where_matches_expected_state(db_session, payment_factory):
    payment = payment_factory("10.00")
    store = RecordStore()

    updated = store.update_where(Payment, {"id": payment.id, "status": PaymentStatus.PENDING},
                                 {"status": PaymentStatus.CONFIRMED})
    assert updated == 1

    with pytest.raises(StoreConflict):
        store.update_where(Payment, {"id": payment.id, "status": PaymentStatus.PENDING},
                           {"status": PaymentStatus.CONFIRMED})


def test_update_where_none_filter_means_is_null(db_session, payment_factory):
    payment = payment_factory("10.00")
    store = RecordStore()
    assert store.update_where(Payment, {"id": payment.id, "matched_transfer_id": None}, {"match_confidence": 0.5}) == 1


def test_get_one_raises_given_error(db_session):
    with pytest.raises(PaymentNotFound):
        RecordStore().get_one(Payment, PaymentNotFound, id=424242)
