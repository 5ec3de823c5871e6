from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class ExpenseType(str, Enum):
    personal = "PERSONAL"
    shared = "SHARED"


class ExpenseCategory(str, Enum):
    recurring = "RECURRING"
    one_time = "ONE_TIME"


class ExpenseFrequency(str, Enum):
    monthly = "MONTHLY"
    yearly = "YEARLY"


class YearlyPaymentStrategy(str, Enum):
    full = "FULL"
    installments = "INSTALLMENTS"


class InstallmentFrequency(str, Enum):
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    semi_annual = "SEMI_ANNUAL"


class PaymentStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"
    cancelled = "CANCELLED"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")


class Household(Base, TimestampMixin):
    __tablename__ = "households"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    members: Mapped[list["HouseholdMember"]] = relationship(
        "HouseholdMember",
        back_populates="household",
        order_by="HouseholdMember.id",
    )


class HouseholdMember(Base, TimestampMixin):
    __tablename__ = "household_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, unique=True
    )

    household: Mapped["Household"] = relationship(
        "Household", back_populates="members"
    )
    user: Mapped["User"] = relationship("User")


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id"), nullable=False
    )
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[ExpenseType] = mapped_column(
        _value_enum(ExpenseType, "expensetype"), nullable=False
    )
    category: Mapped[ExpenseCategory] = mapped_column(
        _value_enum(ExpenseCategory, "expensecategory"), nullable=False
    )
    frequency: Mapped[Optional[ExpenseFrequency]] = mapped_column(
        _value_enum(ExpenseFrequency, "expensefrequency")
    )
    yearly_payment_strategy: Mapped[Optional[YearlyPaymentStrategy]] = mapped_column(
        _value_enum(YearlyPaymentStrategy, "yearlypaymentstrategy")
    )
    installment_frequency: Mapped[Optional[InstallmentFrequency]] = mapped_column(
        _value_enum(InstallmentFrequency, "installmentfrequency")
    )
    installment_count: Mapped[Optional[int]] = mapped_column(Integer)
    payment_month: Mapped[Optional[int]] = mapped_column(Integer)
    month: Mapped[Optional[int]] = mapped_column(Integer)
    year: Mapped[Optional[int]] = mapped_column(Integer)
    paid_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    overrides: Mapped[list["RecurringOverride"]] = relationship(
        "RecurringOverride",
        back_populates="expense",
        cascade="all, delete-orphan",
    )
    payment_statuses: Mapped[list["ExpensePaymentStatus"]] = relationship(
        "ExpensePaymentStatus",
        back_populates="expense",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_expenses_household_type", "household_id", "type"),
        CheckConstraint("amount_cents >= 0", name="ck_expense_amount_positive"),
        CheckConstraint(
            "installment_count IS NULL OR installment_count > 0",
            name="ck_expense_installment_count_positive",
        ),
        CheckConstraint(
            "payment_month IS NULL OR payment_month BETWEEN 1 AND 12",
            name="ck_expense_payment_month_range",
        ),
        CheckConstraint(
            "month IS NULL OR month BETWEEN 1 AND 12",
            name="ck_expense_month_range",
        ),
    )


class RecurringOverride(Base, TimestampMixin):
    __tablename__ = "recurring_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(ForeignKey("expenses.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="overrides")

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "year", "month", name="uq_override_expense_month"
        ),
        CheckConstraint("amount_cents >= 0", name="ck_override_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_override_month_range"),
    )


class ExpensePaymentStatus(Base, TimestampMixin):
    __tablename__ = "expense_payment_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(ForeignKey("expenses.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _value_enum(PaymentStatus, "paymentstatus"),
        nullable=False,
        default=PaymentStatus.pending,
    )
    paid_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    expense: Mapped["Expense"] = relationship(
        "Expense", back_populates="payment_statuses"
    )

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "year", "month", name="uq_payment_status_expense_month"
        ),
        Index("ix_payment_status_month", "year", "month"),
    )


class Salary(Base, TimestampMixin):
    __tablename__ = "salaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    default_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_salary_user_month"),
        Index("ix_salary_household_month", "household_id", "year", "month"),
        CheckConstraint(
            "default_amount_cents >= 0 AND current_amount_cents >= 0",
            name="ck_salary_amount_positive",
        ),
    )


class Saving(Base, TimestampMixin):
    __tablename__ = "savings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reduces_from_salary: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "year", "month", "is_shared", name="uq_saving_user_month_kind"
        ),
        Index("ix_saving_household_month", "household_id", "year", "month"),
        CheckConstraint("amount_cents >= 0", name="ck_saving_amount_positive"),
    )


class Settlement(Base, TimestampMixin):
    __tablename__ = "settlements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    paid_to_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "household_id", "year", "month", name="uq_settlement_household_month"
        ),
        CheckConstraint("amount_cents > 0", name="ck_settlement_amount_positive"),
    )
