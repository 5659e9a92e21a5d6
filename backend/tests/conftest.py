"""
Pytest fixtures for ledgerdesk backend tests.

Provides test database setup, tenant fixtures, row factories and test client.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from ledgerdesk import create_app
from ledgerdesk.enums import MatchResult, PaymentCategory, PaymentStatus, SaleStatus, TransferSource
from ledgerdesk.extensions import db
from ledgerdesk.models import IncomingTransfer, Payment, Sale, Seller, Tenant
from ledgerdesk.services.record_store import RecordStore
from ledgerdesk.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Create Tenant A."""
    t = Tenant(name="Tenant A - Acme", code="ACME", is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def other_tenant(db_session):
    """Create Tenant B."""
    t = Tenant(name="Tenant B - Beta", code="BETA", is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def seller(db_session, tenant):
    s = Seller(tenant_id=tenant.id, name="Ana", is_active=True)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def sale_factory(db_session, tenant):
    """Create sales with a given total (defaults to tenant A, status confirmed)."""
    def _make(total="100.00", tenant_id=None, status=SaleStatus.CONFIRMED):
        sale = Sale(
            tenant_id=tenant_id or tenant.id,
            total_amount=Decimal(str(total)),
            paid_amount=Decimal("0.00"),
            balance_amount=Decimal(str(total)),
            status=status,
        )
        db_session.add(sale)
        db_session.commit()
        return sale
    return _make


@pytest.fixture(scope='function')
def payment_factory(db_session, tenant):
    """Insert pending payments directly, with control over created_at."""
    def _make(amount="100.00", sale=None, reference=None, created_at=None, method="transfer",
              status=PaymentStatus.PENDING, tenant_id=None):
        payment = Payment(
            tenant_id=tenant_id or tenant.id,
            sale_id=sale.id if sale is not None else None,
            amount=Decimal(str(amount)),
            method=method,
            payment_category=PaymentCategory.GATEWAY,
            status=status,
            match_confidence=0.0,
            match_result=MatchResult.NO_MATCH,
            reference=reference,
            idempotency_key=uuid.uuid4().hex,
            created_at=created_at or utcnow(),
        )
        db_session.add(payment)
        db_session.commit()
        return payment
    return _make


@pytest.fixture(scope='function')
def transfer_factory(db_session, tenant):
    """Insert unconsumed transfers directly."""
    def _make(amount="100.00", reference=None, raw_description="", received_at=None, tenant_id=None):
        transfer = IncomingTransfer(
            tenant_id=tenant_id or tenant.id,
            amount=Decimal(str(amount)),
            reference=reference,
            raw_description=raw_description,
            received_at=received_at or utcnow(),
            source=TransferSource.API,
            consumed=False,
        )
        db_session.add(transfer)
        db_session.commit()
        return transfer
    return _make


def hours_ago(hours: float):
    return utcnow() - timedelta(hours=hours)


def identity_headers(tenant_id, user_id=None) -> dict:
    """Headers the upstream auth layer forwards."""
    headers = {'X-Tenant-Id': str(tenant_id)}
    if user_id is not None:
        headers['X-User-Id'] = str(user_id)
    return headers


class RacingStore(RecordStore):
    """
    Record store that lets a competing writer in just before a guarded update.

    rival_write(session, patch) runs ahead of the next `races` update_where
    calls on `model`, in the same transaction, so the guarded write sees the
    rival's row state exactly as if another request had committed first.
    """

    def __init__(self, model, rival_write, races=1):
        super().__init__()
        self.model = model
        self.rival_write = rival_write
        self.races = races

    def update_where(self, model, filters, patch):
        if model is self.model and self.races > 0:
            self.races -= 1
            self.rival_write(self.session, patch)
        return super().update_where(model, filters, patch)


def link_transfer_to(rival_payment_id):
    """Rival write: another payment claims the transfer being confirmed."""
    def _write(session, patch):
        session.query(Payment).filter_by(id=rival_payment_id).update(
            {"matched_transfer_id": patch["matched_transfer_id"]}, synchronize_session=False
        )
    return _write
