"""initial schema

Revision ID: 202510010900
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=200), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "households",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "household_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id"),
            nullable=False,
            unique=True,
        ),
        *_timestamps(),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column(
            "created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("PERSONAL", "SHARED", name="expensetype"), nullable=False
        ),
        sa.Column(
            "category",
            sa.Enum("RECURRING", "ONE_TIME", name="expensecategory"),
            nullable=False,
        ),
        sa.Column("frequency", sa.Enum("MONTHLY", "YEARLY", name="expensefrequency")),
        sa.Column(
            "yearly_payment_strategy",
            sa.Enum("FULL", "INSTALLMENTS", name="yearlypaymentstrategy"),
        ),
        sa.Column(
            "installment_frequency",
            sa.Enum(
                "MONTHLY", "QUARTERLY", "SEMI_ANNUAL", name="installmentfrequency"
            ),
        ),
        sa.Column("installment_count", sa.Integer()),
        sa.Column("payment_month", sa.Integer()),
        sa.Column("month", sa.Integer()),
        sa.Column("year", sa.Integer()),
        sa.Column("paid_by_user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expense_amount_positive"),
        sa.CheckConstraint(
            "installment_count IS NULL OR installment_count > 0",
            name="ck_expense_installment_count_positive",
        ),
        sa.CheckConstraint(
            "payment_month IS NULL OR payment_month BETWEEN 1 AND 12",
            name="ck_expense_payment_month_range",
        ),
        sa.CheckConstraint(
            "month IS NULL OR month BETWEEN 1 AND 12",
            name="ck_expense_month_range",
        ),
    )
    op.create_index(
        "ix_expenses_household_type", "expenses", ["household_id", "type"]
    )

    op.create_table(
        "recurring_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id", sa.Integer(), sa.ForeignKey("expenses.id"), nullable=False
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "expense_id", "year", "month", name="uq_override_expense_month"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_override_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_override_month_range"),
    )

    op.create_table(
        "expense_payment_statuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id", sa.Integer(), sa.ForeignKey("expenses.id"), nullable=False
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PAID", "CANCELLED", name="paymentstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("paid_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("paid_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "expense_id", "year", "month", name="uq_payment_status_expense_month"
        ),
    )
    op.create_index(
        "ix_payment_status_month", "expense_payment_statuses", ["year", "month"]
    )

    op.create_table(
        "salaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("default_amount_cents", sa.Integer(), nullable=False),
        sa.Column("current_amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_salary_user_month"),
        sa.CheckConstraint(
            "default_amount_cents >= 0 AND current_amount_cents >= 0",
            name="ck_salary_amount_positive",
        ),
    )
    op.create_index(
        "ix_salary_household_month", "salaries", ["household_id", "year", "month"]
    )

    op.create_table(
        "savings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "reduces_from_salary",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "year", "month", "is_shared", name="uq_saving_user_month_kind"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_saving_amount_positive"),
    )
    op.create_index(
        "ix_saving_household_month", "savings", ["household_id", "year", "month"]
    )

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "paid_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "paid_to_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "household_id", "year", "month", name="uq_settlement_household_month"
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_settlement_amount_positive"),
    )


def downgrade():
    op.drop_table("settlements")
    op.drop_index("ix_saving_household_month", table_name="savings")
    op.drop_table("savings")
    op.drop_index("ix_salary_household_month", table_name="salaries")
    op.drop_table("salaries")
    op.drop_index("ix_payment_status_month", table_name="expense_payment_statuses")
    op.drop_table("expense_payment_statuses")
    op.drop_table("recurring_overrides")
    op.drop_index("ix_expenses_household_type", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("household_members")
    op.drop_table("households")
    op.drop_table("users")
