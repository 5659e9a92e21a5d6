from __future__ import annotations

from ..enums import ConfirmationType, MatchResult, PaymentCategory, PaymentStatus, SaleStatus
from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import Money, enum_column


class Sale(db.Model):
    """
    Sale document owning zero or more payments.

    paid_amount and balance_amount are caches. The ledger service recomputes
    them from confirmed payments; nothing increments them in place.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=True, index=True)

    total_amount = db.Column(Money, nullable=False)

    # Caches (derived from payments)
    paid_amount = db.Column(Money, nullable=False, default="0.00")
    balance_amount = db.Column(Money, nullable=False, default="0.00")

    status = enum_column(SaleStatus, nullable=False, default=SaleStatus.CONFIRMED, index=True)
    payment_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "seller_id": self.seller_id,
            "total_amount": money_str(self.total_amount),
            "paid_amount": money_str(self.paid_amount),
            "balance_amount": money_str(self.balance_amount),
            "status": self.status.value,
            "payment_completed_at": to_utc_z(self.payment_completed_at),
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    One payment attempt against a sale.

    LIFECYCLE: pending -> confirmed. Confirmed is terminal here; only the
    status and match fields ever change after insert.

    IDEMPOTENCY: (tenant_id, idempotency_key) is unique, so a retried creation
    request resolves to the same row.

    MATCHING: matched_transfer_id is unique, so a transfer backs at most one
    payment.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "idempotency_key", name="uq_payments_tenant_idempotency"),
        db.UniqueConstraint("matched_transfer_id", name="uq_payments_matched_transfer"),
        db.Index("ix_payments_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    amount = db.Column(Money, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    payment_method_id = db.Column(db.String(64), nullable=True)
    payment_category = enum_column(PaymentCategory, nullable=False, default=PaymentCategory.GATEWAY)

    status = enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING, index=True)

    match_confidence = db.Column(db.Float, nullable=False, default=0.0)
    match_result = enum_column(MatchResult, nullable=False, default=MatchResult.NO_MATCH)
    matched_transfer_id = db.Column(db.Integer, db.ForeignKey("incoming_transfers.id"), nullable=True)

    reference = db.Column(db.String(128), nullable=True, index=True)
    external_reference = db.Column(db.String(128), nullable=True)
    idempotency_key = db.Column(db.String(64), nullable=False)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True))
    matched_transfer = db.relationship("IncomingTransfer", foreign_keys=[matched_transfer_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "amount": money_str(self.amount),
            "method": self.method,
            "payment_method_id": self.payment_method_id,
            "payment_category": self.payment_category.value,
            "status": self.status.value,
            "match_confidence": round(self.match_confidence or 0.0, 2),
            "match_result": self.match_result.value,
            "matched_transfer_id": self.matched_transfer_id,
            "reference": self.reference,
            "external_reference": self.external_reference,
            "idempotency_key": self.idempotency_key,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentConfirmation(db.Model):
    """
    Append-only record of each payment confirmation.

    CONFIRMATION TYPES:
    - auto: matching engine above the auto threshold, no human involved
    - assisted: a user accepted a suggested transfer match
    - manual: a user confirmed without a transfer
    """
    __tablename__ = "payment_confirmations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("incoming_transfers.id"), nullable=True, index=True)

    confirmation_type = enum_column(ConfirmationType, nullable=False)
    confidence_score = db.Column(db.Float, nullable=False, default=0.0)
    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("confirmations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "transfer_id": self.transfer_id,
            "confirmation_type": self.confirmation_type.value,
            "confidence_score": round(self.confidence_score, 2),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
