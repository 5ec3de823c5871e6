from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional

from models import Expense, PaymentStatus, RecurringOverride
from periods import YearMonth, window_around
from recurrence import (
    OneTimeFullSchedule,
    OneTimeInstallmentSchedule,
    Schedule,
    is_recurring,
    nominal_amount,
    schedule_for,
)


@dataclass(frozen=True)
class ResolvedAmount:
    amount_cents: int
    is_override: bool = False
    is_skipped: bool = False


@dataclass(frozen=True)
class TimelineMonth:
    month: int
    year: int
    label: str
    amount_cents: int
    nominal_cents: int
    is_override: bool
    is_skipped: bool
    is_past: bool
    is_current: bool
    is_editable: bool
    status: PaymentStatus = PaymentStatus.pending


def apply_override(
    nominal_cents: int, override: Optional[RecurringOverride]
) -> ResolvedAmount:
    if override is None:
        return ResolvedAmount(nominal_cents)
    if override.skipped:
        return ResolvedAmount(0, is_override=True, is_skipped=True)
    return ResolvedAmount(override.amount_cents, is_override=True)


def index_overrides(
    overrides: Iterable[RecurringOverride],
) -> dict[YearMonth, RecurringOverride]:
    return {YearMonth(o.year, o.month): o for o in overrides}


def resolve_amount(
    schedule: Schedule,
    period: YearMonth,
    override: Optional[RecurringOverride] = None,
) -> Optional[ResolvedAmount]:
    """Nominal amount with the override applied; None when nothing occurs.

    Overrides only ever apply to recurring schedules. One-time schedules are
    fixed by construction.
    """
    nominal = nominal_amount(schedule, period)
    if nominal is None:
        return None
    if not is_recurring(schedule):
        return ResolvedAmount(nominal)
    return apply_override(nominal, override)


def timeline_periods(
    schedule: Schedule, current: YearMonth, window_months: int
) -> list[YearMonth]:
    if isinstance(schedule, OneTimeInstallmentSchedule):
        return schedule.periods()
    if isinstance(schedule, OneTimeFullSchedule):
        return [schedule.period]
    return [
        period
        for period in window_around(current, window_months)
        if nominal_amount(schedule, period) is not None
    ]


def upcoming_periods(
    expense: Expense,
    start: YearMonth,
    today: date,
    *,
    window_months: int = 12,
) -> list[YearMonth]:
    """Timeline periods from ``start`` (inclusive) to the end of the window."""
    schedule = schedule_for(expense)
    current = YearMonth.from_date(today)
    return [
        period
        for period in timeline_periods(schedule, current, window_months)
        if period >= start
    ]


def build_timeline(
    expense: Expense,
    overrides: Iterable[RecurringOverride],
    today: date,
    *,
    statuses: Optional[Mapping[YearMonth, PaymentStatus]] = None,
    window_months: int = 12,
) -> list[TimelineMonth]:
    schedule = schedule_for(expense)
    current = YearMonth.from_date(today)
    editable_kind = is_recurring(schedule)
    by_period = index_overrides(overrides) if editable_kind else {}

    months: list[TimelineMonth] = []
    for period in timeline_periods(schedule, current, window_months):
        nominal = nominal_amount(schedule, period)
        if nominal is None:
            continue
        resolved = resolve_amount(schedule, period, by_period.get(period))
        is_past = period < current
        months.append(
            TimelineMonth(
                month=period.month,
                year=period.year,
                label=period.label,
                amount_cents=resolved.amount_cents,
                nominal_cents=nominal,
                is_override=resolved.is_override,
                is_skipped=resolved.is_skipped,
                is_past=is_past,
                is_current=period == current,
                is_editable=editable_kind and not is_past,
                status=(statuses or {}).get(period, PaymentStatus.pending),
            )
        )
    return months
