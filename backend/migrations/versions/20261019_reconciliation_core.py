"""Reconciliation core: tenants, sales, payments, transfers, cash periods

Revision ID: 20261019_reconciliation_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_reconciliation_core"
down_revision = None
branch_labels = None
depends_on = None


def _money(name, nullable=False, default=None):
    kwargs = {"nullable": nullable}
    if default is not None:
        kwargs["server_default"] = sa.text(f"'{default}'")
    return sa.Column(name, sa.String(24), **kwargs)


def _enum(name, nullable=False):
    return sa.Column(name, sa.String(32), nullable=nullable)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tenants", schema=None) as batch_op:
        batch_op.create_index("ix_tenants_code", ["code"], unique=True)
        batch_op.create_index("ix_tenants_is_active", ["is_active"], unique=False)

    op.create_table(
        "sellers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sellers", schema=None) as batch_op:
        batch_op.create_index("ix_sellers_tenant_id", ["tenant_id"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("seller_id", sa.Integer(), nullable=True),
        _money("total_amount"),
        _money("paid_amount", default="0.00"),
        _money("balance_amount", default="0.00"),
        _enum("status"),
        sa.Column("payment_completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["seller_id"], ["sellers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_sales_seller_id", ["seller_id"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_tenant_status", ["tenant_id", "status"], unique=False)

    op.create_table(
        "incoming_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        _money("amount"),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("origin_label", sa.String(255), nullable=True),
        sa.Column("raw_description", sa.Text(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        _enum("source"),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("consumed_by_payment_id", sa.Integer(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("incoming_transfers", schema=None) as batch_op:
        batch_op.create_index("ix_incoming_transfers_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_incoming_transfers_received_at", ["received_at"], unique=False)
        batch_op.create_index("ix_transfers_tenant_consumed", ["tenant_id", "consumed"], unique=False)
        batch_op.create_index("ix_transfers_tenant_received", ["tenant_id", "received_at"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        _money("amount"),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("payment_method_id", sa.String(64), nullable=True),
        _enum("payment_category"),
        _enum("status"),
        sa.Column("match_confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
        _enum("match_result"),
        sa.Column("matched_transfer_id", sa.Integer(), nullable=True),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("external_reference", sa.String(128), nullable=True),
        sa.Column("idempotency_key", sa.String(64), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["matched_transfer_id"], ["incoming_transfers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_payments_tenant_idempotency"),
        sa.UniqueConstraint("matched_transfer_id", name="uq_payments_matched_transfer"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_payments_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_payments_status", ["status"], unique=False)
        batch_op.create_index("ix_payments_reference", ["reference"], unique=False)
        batch_op.create_index("ix_payments_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_payments_tenant_status", ["tenant_id", "status"], unique=False)

    op.create_table(
        "payment_confirmations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("transfer_id", sa.Integer(), nullable=True),
        _enum("confirmation_type"),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("confirmed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["transfer_id"], ["incoming_transfers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_confirmations", schema=None) as batch_op:
        batch_op.create_index("ix_payment_confirmations_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_payment_confirmations_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_payment_confirmations_transfer_id", ["transfer_id"], unique=False)

    op.create_table(
        "cash_periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        _enum("kind"),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("open_owner_key", sa.String(160), nullable=True),
        _enum("status"),
        _money("opening_balance", default="0.00"),
        _money("closing_balance", nullable=True),
        _money("reported_closing_balance", nullable=True),
        _money("difference", nullable=True),
        sa.Column("opened_by_user_id", sa.Integer(), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("open_owner_key", name="uq_cash_periods_open_owner"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_periods", schema=None) as batch_op:
        batch_op.create_index("ix_cash_periods_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_cash_periods_status", ["status"], unique=False)
        batch_op.create_index("ix_cash_periods_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_cash_periods_owner_status", ["tenant_id", "kind", "owner_id", "status"], unique=False)

    op.create_table(
        "cash_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_period_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        _enum("type"),
        _money("amount"),
        _enum("payment_method"),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["cash_period_id"], ["cash_periods.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cash_period_id", "payment_id", name="uq_cash_movements_period_payment"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_movements", schema=None) as batch_op:
        batch_op.create_index("ix_cash_movements_cash_period_id", ["cash_period_id"], unique=False)
        batch_op.create_index("ix_cash_movements_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_cash_movements_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_cash_movements_created_at", ["created_at"], unique=False)

    op.create_table(
        "cash_closures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_period_id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        _money("total_income"),
        _money("total_expense"),
        _money("final_balance"),
        _money("income_cash"),
        _money("income_transfer"),
        _money("expense_cash"),
        _money("expense_transfer"),
        _money("reported_closing_balance"),
        _money("difference"),
        sa.Column("movement_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.ForeignKeyConstraint(["cash_period_id"], ["cash_periods.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cash_period_id", name="uq_cash_closures_period"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_closures", schema=None) as batch_op:
        batch_op.create_index("ix_cash_closures_tenant_id", ["tenant_id"], unique=False)


def downgrade():
    op.drop_table("cash_closures")
    op.drop_table("cash_movements")
    op.drop_table("cash_periods")
    op.drop_table("payment_confirmations")
    op.drop_table("payments")
    op.drop_table("incoming_transfers")
    op.drop_table("sales")
    op.drop_table("sellers")
    op.drop_table("tenants")
