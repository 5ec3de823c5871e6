"""Amount resolution for stored expenses.

Every expense is reduced to exactly one schedule variant. The variant decides
in which (year, month) periods the expense occurs and what it costs there
before any per-month override is applied.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from models import (
    Expense,
    ExpenseCategory,
    ExpenseFrequency,
    InstallmentFrequency,
    YearlyPaymentStrategy,
)
from periods import YearMonth

MONEY_ROUNDING = ROUND_HALF_UP

STEP_MONTHS = {
    InstallmentFrequency.monthly: 1,
    InstallmentFrequency.quarterly: 3,
    InstallmentFrequency.semi_annual: 6,
}

DEFAULT_INSTALLMENT_COUNT = {
    InstallmentFrequency.monthly: 12,
    InstallmentFrequency.quarterly: 4,
    InstallmentFrequency.semi_annual: 2,
}


def divide_cents(total_cents: int, parts: int) -> int:
    if parts <= 0:
        raise ValueError("Cannot divide an amount into zero parts")
    share = Decimal(total_cents) / Decimal(parts)
    return int(share.quantize(Decimal("1"), rounding=MONEY_ROUNDING))


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=MONEY_ROUNDING))


@dataclass(frozen=True)
class MonthlySchedule:
    amount_cents: int


@dataclass(frozen=True)
class YearlyFullSchedule:
    amount_cents: int
    payment_month: int


@dataclass(frozen=True)
class YearlyInstallmentSchedule:
    amount_cents: int
    anchor_month: int
    step_months: int
    count: int

    @property
    def installment_cents(self) -> int:
        return divide_cents(self.amount_cents, self.count)

    def is_installment_month(self, month: int) -> bool:
        return (month - self.anchor_month) % self.step_months == 0


@dataclass(frozen=True)
class OneTimeFullSchedule:
    amount_cents: int
    period: YearMonth


@dataclass(frozen=True)
class OneTimeInstallmentSchedule:
    amount_cents: int
    start: YearMonth
    step_months: int
    count: int

    @property
    def installment_cents(self) -> int:
        return divide_cents(self.amount_cents, self.count)

    def periods(self) -> list[YearMonth]:
        return [self.start.shift(i * self.step_months) for i in range(self.count)]


Schedule = Union[
    MonthlySchedule,
    YearlyFullSchedule,
    YearlyInstallmentSchedule,
    OneTimeFullSchedule,
    OneTimeInstallmentSchedule,
]

RECURRING_SCHEDULES = (MonthlySchedule, YearlyFullSchedule, YearlyInstallmentSchedule)


def _installment_count(expense: Expense) -> int:
    if expense.installment_count:
        return expense.installment_count
    return DEFAULT_INSTALLMENT_COUNT[expense.installment_frequency]


def _yearly_anchor_month(expense: Expense) -> int:
    if expense.payment_month:
        return expense.payment_month
    if expense.month:
        return expense.month
    if expense.created_at is not None:
        return expense.created_at.month
    return 1


def schedule_for(expense: Expense) -> Schedule:
    amount = expense.amount_cents
    strategy = expense.yearly_payment_strategy

    if expense.category == ExpenseCategory.one_time:
        if expense.month is None or expense.year is None:
            raise ValueError(f"One-time expense {expense.id} has no month/year")
        start = YearMonth(expense.year, expense.month)
        if strategy == YearlyPaymentStrategy.installments:
            if expense.installment_frequency is None:
                raise ValueError(
                    f"Expense {expense.id} uses installments without a frequency"
                )
            return OneTimeInstallmentSchedule(
                amount_cents=amount,
                start=start,
                step_months=STEP_MONTHS[expense.installment_frequency],
                count=_installment_count(expense),
            )
        return OneTimeFullSchedule(amount_cents=amount, period=start)

    if expense.frequency == ExpenseFrequency.yearly:
        if strategy == YearlyPaymentStrategy.installments:
            if expense.installment_frequency is None:
                raise ValueError(
                    f"Expense {expense.id} uses installments without a frequency"
                )
            return YearlyInstallmentSchedule(
                amount_cents=amount,
                anchor_month=_yearly_anchor_month(expense),
                step_months=STEP_MONTHS[expense.installment_frequency],
                count=_installment_count(expense),
            )
        if expense.payment_month is None:
            raise ValueError(f"Yearly expense {expense.id} has no payment month")
        return YearlyFullSchedule(amount_cents=amount, payment_month=expense.payment_month)

    return MonthlySchedule(amount_cents=amount)


def is_recurring(schedule: Schedule) -> bool:
    return isinstance(schedule, RECURRING_SCHEDULES)


def nominal_amount(schedule: Schedule, period: YearMonth) -> Optional[int]:
    """Cents due in ``period`` before overrides, or None when nothing occurs.

    None and 0 are different answers: 0 is an occurrence that costs nothing.
    """
    if isinstance(schedule, MonthlySchedule):
        return schedule.amount_cents
    if isinstance(schedule, YearlyFullSchedule):
        if period.month == schedule.payment_month:
            return schedule.amount_cents
        return None
    if isinstance(schedule, YearlyInstallmentSchedule):
        if schedule.is_installment_month(period.month):
            return schedule.installment_cents
        return None
    if isinstance(schedule, OneTimeFullSchedule):
        if period == schedule.period:
            return schedule.amount_cents
        return None
    if isinstance(schedule, OneTimeInstallmentSchedule):
        offset = period.months_since(schedule.start)
        if offset < 0 or offset % schedule.step_months:
            return None
        if offset // schedule.step_months >= schedule.count:
            return None
        return schedule.installment_cents
    raise TypeError(f"Unknown schedule: {schedule!r}")


def resolve_nominal_amount(expense: Expense, month: int, year: int) -> Optional[int]:
    return nominal_amount(schedule_for(expense), YearMonth(year, month))
