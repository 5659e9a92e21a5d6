from __future__ import annotations

from ..enums import CashMethod, CashMovementType, CashPeriodKind, CashPeriodStatus
from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z
from .types import Money, enum_column


class CashPeriod(db.Model):
    """
    A period of cash accountability: a seller's session, a daily cash box,
    or a register shift. The three differ only in kind and owner.

    LIFECYCLE:
    - open: movements may be added
    - closed: closing_balance frozen from the movements present at close

    ONE OPEN PER OWNER: open_owner_key is "<kind>:<tenant>:<owner>" while the
    period is open and NULL once closed. The unique constraint turns a racing
    second open into an IntegrityError.
    """
    __tablename__ = "cash_periods"
    __table_args__ = (
        db.UniqueConstraint("open_owner_key", name="uq_cash_periods_open_owner"),
        db.Index("ix_cash_periods_owner_status", "tenant_id", "kind", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    kind = enum_column(CashPeriodKind, nullable=False)
    owner_id = db.Column(db.String(64), nullable=False)
    open_owner_key = db.Column(db.String(160), nullable=True)

    status = enum_column(CashPeriodStatus, nullable=False, default=CashPeriodStatus.OPEN, index=True)

    opening_balance = db.Column(Money, nullable=False, default="0.00")
    closing_balance = db.Column(Money, nullable=True)  # calculated, set at close
    reported_closing_balance = db.Column(Money, nullable=True)  # counted by the cashier
    difference = db.Column(Money, nullable=True)  # reported - calculated

    opened_by_user_id = db.Column(db.Integer, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "kind": self.kind.value,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "opening_balance": money_str(self.opening_balance),
            "closing_balance": money_str(self.closing_balance),
            "reported_closing_balance": money_str(self.reported_closing_balance),
            "difference": money_str(self.difference),
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
        }


class CashMovement(db.Model):
    """
    Immutable typed entry under a cash period.

    amount is stored unsigned; type decides the sign when folding:
    sale and manual_income add, refund and manual_expense subtract.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.UniqueConstraint("cash_period_id", "payment_id", name="uq_cash_movements_period_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_period_id = db.Column(db.Integer, db.ForeignKey("cash_periods.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    type = enum_column(CashMovementType, nullable=False)
    amount = db.Column(Money, nullable=False)
    payment_method = enum_column(CashMethod, nullable=False, default=CashMethod.NONE)

    reference_id = db.Column(db.String(64), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cash_period = db.relationship("CashPeriod", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_period_id": self.cash_period_id,
            "type": self.type.value,
            "amount": money_str(self.amount),
            "payment_method": self.payment_method.value,
            "reference_id": self.reference_id,
            "payment_id": self.payment_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class CashClosure(db.Model):
    """
    Immutable snapshot of a cash period's totals at the moment it closed.

    Written once, in the same unit of work that flips the period to closed.
    """
    __tablename__ = "cash_closures"
    __table_args__ = (
        db.UniqueConstraint("cash_period_id", name="uq_cash_closures_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_period_id = db.Column(db.Integer, db.ForeignKey("cash_periods.id"), nullable=False)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    total_income = db.Column(Money, nullable=False)
    total_expense = db.Column(Money, nullable=False)
    final_balance = db.Column(Money, nullable=False)
    income_cash = db.Column(Money, nullable=False)
    income_transfer = db.Column(Money, nullable=False)
    expense_cash = db.Column(Money, nullable=False)
    expense_transfer = db.Column(Money, nullable=False)

    reported_closing_balance = db.Column(Money, nullable=False)
    difference = db.Column(Money, nullable=False)
    movement_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cash_period = db.relationship("CashPeriod", backref=db.backref("closure", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_period_id": self.cash_period_id,
            "total_income": money_str(self.total_income),
            "total_expense": money_str(self.total_expense),
            "final_balance": money_str(self.final_balance),
            "income_cash": money_str(self.income_cash),
            "income_transfer": money_str(self.income_transfer),
            "expense_cash": money_str(self.expense_cash),
            "expense_transfer": money_str(self.expense_transfer),
            "reported_closing_balance": money_str(self.reported_closing_balance),
            "difference": money_str(self.difference),
            "movement_count": self.movement_count,
            "created_at": to_utc_z(self.created_at),
        }
