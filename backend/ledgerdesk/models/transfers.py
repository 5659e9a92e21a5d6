from __future__ import annotations

from ..enums import TransferSource
from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import Money, enum_column


class IncomingTransfer(db.Model):
    """
    Externally reported money receipt (bank statement line, API push, manual entry).

    CONSUMPTION: consumed flips false -> true exactly once, through a guarded
    update, when a payment is confirmed against this transfer. Consumed
    transfers are never offered to the matching engine again.

    consumed_by_payment_id is a plain backlink (no FK) because payments already
    reference transfers through matched_transfer_id.
    """
    __tablename__ = "incoming_transfers"
    __table_args__ = (
        db.Index("ix_transfers_tenant_consumed", "tenant_id", "consumed"),
        db.Index("ix_transfers_tenant_received", "tenant_id", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    amount = db.Column(Money, nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    origin_label = db.Column(db.String(255), nullable=True)
    raw_description = db.Column(db.Text, nullable=False, default="")
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    source = enum_column(TransferSource, nullable=False, default=TransferSource.MANUAL)

    consumed = db.Column(db.Boolean, nullable=False, default=False)
    consumed_by_payment_id = db.Column(db.Integer, nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "amount": money_str(self.amount),
            "reference": self.reference,
            "origin_label": self.origin_label,
            "raw_description": self.raw_description,
            "received_at": to_utc_z(self.received_at),
            "source": self.source.value,
            "consumed": self.consumed,
            "consumed_by_payment_id": self.consumed_by_payment_id,
            "consumed_at": to_utc_z(self.consumed_at),
            "created_at": to_utc_z(self.created_at),
        }
