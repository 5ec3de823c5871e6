from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from cache import DashboardCache, settlement_ttl, summary_ttl
from config import get_settings
from models import (
    Expense,
    ExpensePaymentStatus,
    ExpenseType,
    Household,
    HouseholdMember,
    PaymentStatus,
    RecurringOverride,
    Salary,
    Saving,
    Settlement,
    utcnow,
)
from periods import YearMonth, local_today, month_range, year_months
from recurrence import is_recurring, nominal_amount, round_cents, schedule_for
from schemas import (
    DefaultAmountIn,
    ExpenseIn,
    HouseholdIn,
    OverrideIn,
    PeriodIn,
    SalaryIn,
    SavingIn,
    SkipIn,
    UpcomingOverrideIn,
)
from settlement import MemberBalance, SharedCharge, Transfer, member_balances, settle
from timeline import (
    TimelineMonth,
    build_timeline,
    index_overrides,
    resolve_amount,
    upcoming_periods,
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


def require_membership(session: Session, user_id: int) -> HouseholdMember:
    membership = session.scalar(
        select(HouseholdMember).where(HouseholdMember.user_id == user_id)
    )
    if not membership:
        logger.warning(f"membership_missing: user_id={user_id}")
        raise NotFoundError("You must be in a household to manage expenses")
    return membership


def find_expense(session: Session, user_id: int, expense_id: int) -> Expense:
    """Expense visible to ``user_id``: shared ones of the household, own personal ones."""
    membership = require_membership(session, user_id)
    expense = session.get(Expense, expense_id)
    if (
        not expense
        or expense.deleted_at is not None
        or expense.household_id != membership.household_id
        or (expense.type == ExpenseType.personal and expense.created_by_id != user_id)
    ):
        logger.warning(f"expense_missing: expense_id={expense_id} user_id={user_id}")
        raise NotFoundError("Expense not found")
    return expense


def _invalidate(cache: Optional[DashboardCache], household_id: int) -> None:
    if cache is not None:
        cache.invalidate_household(household_id)


class HouseholdService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: int, data: HouseholdIn) -> Household:
        self._require_no_household(user_id)
        household = Household(name=data.name)
        self.session.add(household)
        self.session.flush()
        self.session.add(HouseholdMember(household_id=household.id, user_id=user_id))
        self.session.commit()
        self.session.refresh(household)
        logger.info(f"household_created: household_id={household.id} user_id={user_id}")
        return household

    def join(self, user_id: int, household_id: int) -> HouseholdMember:
        self._require_no_household(user_id)
        if not self.session.get(Household, household_id):
            raise NotFoundError("Household not found")
        member = HouseholdMember(household_id=household_id, user_id=user_id)
        self.session.add(member)
        self.session.commit()
        self.session.refresh(member)
        logger.info(f"household_joined: household_id={household_id} user_id={user_id}")
        return member

    def members(self, household_id: int) -> list[HouseholdMember]:
        stmt = (
            select(HouseholdMember)
            .options(joinedload(HouseholdMember.user))
            .where(HouseholdMember.household_id == household_id)
            .order_by(HouseholdMember.id)
        )
        return self.session.scalars(stmt).all()

    def _require_no_household(self, user_id: int) -> None:
        existing = self.session.scalar(
            select(HouseholdMember.id).where(HouseholdMember.user_id == user_id)
        )
        if existing:
            raise ConflictError("You are already a member of a household")


class ExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def get(self, expense_id: int) -> Expense:
        return find_expense(self.session, self.user_id, expense_id)

    def list(
        self,
        *,
        expense_type: Optional[ExpenseType] = None,
        period: Optional[YearMonth] = None,
    ) -> list[Expense]:
        membership = require_membership(self.session, self.user_id)
        stmt = (
            select(Expense)
            .where(
                Expense.household_id == membership.household_id,
                Expense.deleted_at.is_(None),
                or_(
                    Expense.type == ExpenseType.shared,
                    Expense.created_by_id == self.user_id,
                ),
            )
            .order_by(Expense.created_at.desc(), Expense.id.desc())
        )
        if expense_type:
            stmt = stmt.where(Expense.type == expense_type)
        expenses = self.session.scalars(stmt).all()
        if period is None:
            return expenses
        return [
            e for e in expenses if nominal_amount(schedule_for(e), period) is not None
        ]

    def create(self, data: ExpenseIn) -> Expense:
        membership = require_membership(self.session, self.user_id)
        if data.paid_by_user_id is not None:
            self._validate_payer(data.paid_by_user_id, membership.household_id)
        expense = Expense(
            household_id=membership.household_id,
            created_by_id=self.user_id,
            **data.model_dump(),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        _invalidate(self.cache, membership.household_id)
        logger.info(
            f"expense_created: expense_id={expense.id} type={expense.type.value} "
            f"category={expense.category.value}"
        )
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        if data.type != expense.type:
            raise ValueError("Expense type cannot be changed")
        if data.paid_by_user_id is not None:
            self._validate_payer(data.paid_by_user_id, expense.household_id)
        for name, value in data.model_dump().items():
            setattr(expense, name, value)
        self.session.commit()
        self.session.refresh(expense)
        _invalidate(self.cache, expense.household_id)
        logger.info(f"expense_updated: expense_id={expense.id}")
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        expense.deleted_at = utcnow()
        self.session.commit()
        _invalidate(self.cache, expense.household_id)
        logger.info(f"expense_deleted: expense_id={expense.id}")

    def timeline(
        self, expense_id: int, today: Optional[date] = None
    ) -> list[TimelineMonth]:
        expense = self.get(expense_id)
        today = today or local_today()
        statuses = {
            YearMonth(s.year, s.month): s.status
            for s in self.session.scalars(
                select(ExpensePaymentStatus).where(
                    ExpensePaymentStatus.expense_id == expense.id
                )
            )
        }
        overrides = self.session.scalars(
            select(RecurringOverride).where(RecurringOverride.expense_id == expense.id)
        ).all()
        return build_timeline(
            expense,
            overrides,
            today,
            statuses=statuses,
            window_months=get_settings().timeline_window_months,
        )

    def _validate_payer(self, paid_by_user_id: int, household_id: int) -> None:
        member = self.session.scalar(
            select(HouseholdMember).where(HouseholdMember.user_id == paid_by_user_id)
        )
        if not member or member.household_id != household_id:
            logger.warning(
                f"payer_invalid: paid_by_user_id={paid_by_user_id} "
                f"household_id={household_id}"
            )
            raise NotFoundError("The specified payer is not a member of this household")


class RecurringOverrideService:
    """Per-month exceptions to a recurring expense's amount, including skips."""

    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def list(self, expense_id: int) -> list[RecurringOverride]:
        expense = find_expense(self.session, self.user_id, expense_id)
        stmt = (
            select(RecurringOverride)
            .where(RecurringOverride.expense_id == expense.id)
            .order_by(RecurringOverride.year.desc(), RecurringOverride.month.desc())
        )
        return self.session.scalars(stmt).all()

    def upsert(
        self,
        expense_id: int,
        year: int,
        month: int,
        data: OverrideIn,
        today: Optional[date] = None,
    ) -> RecurringOverride:
        expense = self._editable_expense(expense_id)
        period = YearMonth(year, month)
        self._require_editable_period(expense, period, today or local_today())
        [override] = self._save(
            expense, [(period, data.amount_cents, data.skipped)]
        )
        self.session.refresh(override)
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"override_saved: expense_id={expense.id} period={period} "
            f"skipped={override.skipped}"
        )
        return override

    def upsert_upcoming(
        self,
        expense_id: int,
        data: UpcomingOverrideIn,
        today: Optional[date] = None,
    ) -> list[RecurringOverride]:
        expense = self._editable_expense(expense_id)
        today = today or local_today()
        start = YearMonth(data.from_year, data.from_month)
        self._require_editable_period(expense, start, today)
        written = self._save(
            expense,
            [
                (period, data.amount_cents, data.skipped)
                for period in self._upcoming(expense, start, today)
            ],
        )
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"override_batch_saved: expense_id={expense.id} from={start} "
            f"count={len(written)}"
        )
        return written

    def delete(
        self,
        expense_id: int,
        year: int,
        month: int,
        today: Optional[date] = None,
    ) -> bool:
        expense = self._editable_expense(expense_id)
        period = YearMonth(year, month)
        self._require_not_past(period, today or local_today())
        result = self.session.execute(
            delete(RecurringOverride).where(
                RecurringOverride.expense_id == expense.id,
                RecurringOverride.year == period.year,
                RecurringOverride.month == period.month,
            )
        )
        self.session.commit()
        _invalidate(self.cache, expense.household_id)
        logger.info(f"override_deleted: expense_id={expense.id} period={period}")
        return bool(result.rowcount)

    def delete_upcoming(
        self,
        expense_id: int,
        from_year: int,
        from_month: int,
        today: Optional[date] = None,
    ) -> int:
        expense = self._editable_expense(expense_id)
        start = YearMonth(from_year, from_month)
        self._require_not_past(start, today or local_today())
        result = self.session.execute(
            delete(RecurringOverride).where(
                RecurringOverride.expense_id == expense.id,
                _at_or_after(start),
            )
        )
        self.session.commit()
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"override_upcoming_deleted: expense_id={expense.id} from={start} "
            f"count={result.rowcount}"
        )
        return result.rowcount

    def delete_all(self, expense_id: int) -> int:
        expense = find_expense(self.session, self.user_id, expense_id)
        result = self.session.execute(
            delete(RecurringOverride).where(RecurringOverride.expense_id == expense.id)
        )
        self.session.commit()
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"override_all_deleted: expense_id={expense.id} count={result.rowcount}"
        )
        return result.rowcount

    def has_later_overrides(self, expense_id: int, year: int, month: int) -> bool:
        """Whether anything after (year, month) would be touched by an upcoming undo."""
        expense = find_expense(self.session, self.user_id, expense_id)
        after = YearMonth(year, month).shift(1)
        found = self.session.scalar(
            select(RecurringOverride.id)
            .where(RecurringOverride.expense_id == expense.id, _at_or_after(after))
            .limit(1)
        )
        return found is not None

    def update_default_amount(self, expense_id: int, data: DefaultAmountIn) -> Expense:
        expense = self._editable_expense(expense_id)
        expense.amount_cents = data.amount_cents
        self.session.commit()
        self.session.refresh(expense)
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"default_amount_updated: expense_id={expense.id} "
            f"amount_cents={data.amount_cents}"
        )
        return expense

    def skip(
        self, expense_id: int, data: SkipIn, today: Optional[date] = None
    ) -> list[RecurringOverride]:
        """Zero the occurrence(s) while remembering what they would have cost."""
        expense = self._editable_expense(expense_id)
        today = today or local_today()
        start = YearMonth(data.year, data.month)
        self._require_editable_period(expense, start, today)
        periods = (
            self._upcoming(expense, start, today)
            if data.scope == "upcoming"
            else [start]
        )
        existing = index_overrides(
            self.session.scalars(
                select(RecurringOverride).where(
                    RecurringOverride.expense_id == expense.id, _at_or_after(start)
                )
            )
        )
        schedule = schedule_for(expense)
        rows = []
        for period in periods:
            current = existing.get(period)
            if current is not None and current.skipped:
                rows.append((period, current.amount_cents, True))
                continue
            resolved = resolve_amount(schedule, period, current)
            rows.append((period, resolved.amount_cents, True))
        written = self._save(expense, rows)
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"expense_skipped: expense_id={expense.id} from={start} "
            f"scope={data.scope} count={len(written)}"
        )
        return written

    def unskip(self, expense_id: int, data: SkipIn, today: Optional[date] = None) -> int:
        expense = self._editable_expense(expense_id)
        period = YearMonth(data.year, data.month)
        active = self.session.scalar(
            select(RecurringOverride).where(
                RecurringOverride.expense_id == expense.id,
                RecurringOverride.year == period.year,
                RecurringOverride.month == period.month,
                RecurringOverride.skipped.is_(True),
            )
        )
        if not active:
            raise ValueError("This expense is not skipped for the selected month")
        if data.scope == "upcoming":
            return self.delete_upcoming(expense.id, period.year, period.month, today)
        return int(self.delete(expense.id, period.year, period.month, today))

    def skipped_expense_ids(self, period: PeriodIn) -> list[int]:
        membership = require_membership(self.session, self.user_id)
        stmt = (
            select(RecurringOverride.expense_id)
            .join(Expense, Expense.id == RecurringOverride.expense_id)
            .where(
                Expense.household_id == membership.household_id,
                Expense.deleted_at.is_(None),
                RecurringOverride.year == period.year,
                RecurringOverride.month == period.month,
                RecurringOverride.skipped.is_(True),
            )
            .order_by(RecurringOverride.expense_id)
        )
        return list(self.session.scalars(stmt))

    def _editable_expense(self, expense_id: int) -> Expense:
        expense = find_expense(self.session, self.user_id, expense_id)
        if not is_recurring(schedule_for(expense)):
            logger.warning(f"override_rejected: expense_id={expense.id} not recurring")
            raise ValueError("Only recurring expenses can have overrides")
        return expense

    def _require_editable_period(
        self, expense: Expense, period: YearMonth, today: date
    ) -> None:
        self._require_not_past(period, today)
        if nominal_amount(schedule_for(expense), period) is None:
            raise ValueError(f"{expense.name} does not occur in {period}")

    @staticmethod
    def _require_not_past(period: YearMonth, today: date) -> None:
        if period < YearMonth.from_date(today):
            raise ValueError("Past months cannot be changed")

    def _upcoming(
        self, expense: Expense, start: YearMonth, today: date
    ) -> list[YearMonth]:
        periods = upcoming_periods(
            expense,
            start,
            today,
            window_months=get_settings().timeline_window_months,
        )
        if not periods:
            raise ValueError(f"{start} is beyond the editable timeline window")
        return periods

    def _find_override(
        self, expense_id: int, period: YearMonth
    ) -> Optional[RecurringOverride]:
        return self.session.scalar(
            select(RecurringOverride).where(
                RecurringOverride.expense_id == expense_id,
                RecurringOverride.year == period.year,
                RecurringOverride.month == period.month,
            )
        )

    def _write(self, expense_id: int, rows) -> list[RecurringOverride]:
        written = []
        for period, amount_cents, skipped in rows:
            override = self._find_override(expense_id, period)
            if override is None:
                override = RecurringOverride(
                    expense_id=expense_id, year=period.year, month=period.month
                )
                self.session.add(override)
            override.amount_cents = amount_cents
            override.skipped = skipped
            self.session.flush()
            written.append(override)
        self.session.commit()
        return written

    def _save(
        self, expense: Expense, rows: list[tuple[YearMonth, int, bool]]
    ) -> list[RecurringOverride]:
        """Upsert one row per period and commit.

        A concurrent insert of the same period surfaces as an IntegrityError.
        The batch is then replayed once as updates, so the last write wins.
        """
        expense_id = expense.id
        try:
            return self._write(expense_id, rows)
        except IntegrityError:
            self.session.rollback()
            logger.info(f"override_write_retried: expense_id={expense_id}")
            return self._write(expense_id, rows)


def _at_or_after(start: YearMonth):
    return or_(
        RecurringOverride.year > start.year,
        and_(
            RecurringOverride.year == start.year,
            RecurringOverride.month >= start.month,
        ),
    )


class ExpensePaymentService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def _status_row(
        self, expense_id: int, period: PeriodIn
    ) -> Optional[ExpensePaymentStatus]:
        return self.session.scalar(
            select(ExpensePaymentStatus).where(
                ExpensePaymentStatus.expense_id == expense_id,
                ExpensePaymentStatus.year == period.year,
                ExpensePaymentStatus.month == period.month,
            )
        )

    def _set_status(
        self, expense_id: int, period: PeriodIn, status: PaymentStatus
    ) -> ExpensePaymentStatus:
        expense = find_expense(self.session, self.user_id, expense_id)
        row = self._status_row(expense.id, period)
        if row is not None and row.status == status == PaymentStatus.paid:
            return row
        if row is None:
            row = ExpensePaymentStatus(
                expense_id=expense.id, year=period.year, month=period.month
            )
            self.session.add(row)
        row.status = status
        row.paid_by_id = self.user_id
        row.paid_at = utcnow() if status == PaymentStatus.paid else None
        self.session.commit()
        self.session.refresh(row)
        _invalidate(self.cache, expense.household_id)
        logger.info(
            f"payment_status_set: expense_id={expense.id} "
            f"period={period.year:04d}-{period.month:02d} status={status.value}"
        )
        return row

    def mark_paid(self, expense_id: int, period: PeriodIn) -> ExpensePaymentStatus:
        return self._set_status(expense_id, period, PaymentStatus.paid)

    def cancel(self, expense_id: int, period: PeriodIn) -> ExpensePaymentStatus:
        return self._set_status(expense_id, period, PaymentStatus.cancelled)

    def undo_paid(self, expense_id: int, period: PeriodIn) -> ExpensePaymentStatus:
        expense = find_expense(self.session, self.user_id, expense_id)
        if self._status_row(expense.id, period) is None:
            logger.warning(
                f"payment_status_missing: expense_id={expense.id} "
                f"period={period.year:04d}-{period.month:02d}"
            )
            raise NotFoundError("No payment status found for this expense and period")
        return self._set_status(expense.id, period, PaymentStatus.pending)

    def statuses(self, expense_id: int) -> list[ExpensePaymentStatus]:
        expense = find_expense(self.session, self.user_id, expense_id)
        stmt = (
            select(ExpensePaymentStatus)
            .where(ExpensePaymentStatus.expense_id == expense.id)
            .order_by(
                ExpensePaymentStatus.year.desc(), ExpensePaymentStatus.month.desc()
            )
        )
        return self.session.scalars(stmt).all()

    def batch_statuses(self, period: PeriodIn) -> dict[int, PaymentStatus]:
        """Status of every visible expense occurring in the period (default PENDING)."""
        target = YearMonth(period.year, period.month)
        expenses = ExpenseService(self.session, self.user_id).list(period=target)
        if not expenses:
            return {}
        stored = {
            row.expense_id: row.status
            for row in self.session.scalars(
                select(ExpensePaymentStatus).where(
                    ExpensePaymentStatus.expense_id.in_([e.id for e in expenses]),
                    ExpensePaymentStatus.year == target.year,
                    ExpensePaymentStatus.month == target.month,
                )
            )
        }
        return {e.id: stored.get(e.id, PaymentStatus.pending) for e in expenses}


class SalaryService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def get(self, period: PeriodIn) -> Optional[Salary]:
        return self.session.scalar(
            select(Salary).where(
                Salary.user_id == self.user_id,
                Salary.year == period.year,
                Salary.month == period.month,
            )
        )

    def upsert(self, data: SalaryIn) -> Salary:
        membership = require_membership(self.session, self.user_id)
        salary = self.get(data)
        if salary is None:
            salary = Salary(
                user_id=self.user_id,
                household_id=membership.household_id,
                year=data.year,
                month=data.month,
            )
            self.session.add(salary)
        salary.default_amount_cents = data.default_amount_cents
        salary.current_amount_cents = data.current_amount_cents
        self.session.commit()
        self.session.refresh(salary)
        _invalidate(self.cache, membership.household_id)
        logger.info(
            f"salary_saved: user_id={self.user_id} "
            f"period={data.year:04d}-{data.month:02d}"
        )
        return salary


class SavingService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def upsert(self, data: SavingIn, *, is_shared: bool) -> Saving:
        membership = require_membership(self.session, self.user_id)
        saving = self.session.scalar(
            select(Saving).where(
                Saving.user_id == self.user_id,
                Saving.year == data.year,
                Saving.month == data.month,
                Saving.is_shared == is_shared,
            )
        )
        if saving is None:
            saving = Saving(
                user_id=self.user_id,
                household_id=membership.household_id,
                year=data.year,
                month=data.month,
                is_shared=is_shared,
            )
            self.session.add(saving)
        saving.amount_cents = data.amount_cents
        saving.reduces_from_salary = data.reduces_from_salary
        self.session.commit()
        self.session.refresh(saving)
        _invalidate(self.cache, membership.household_id)
        logger.info(
            f"saving_saved: user_id={self.user_id} shared={is_shared} "
            f"period={data.year:04d}-{data.month:02d}"
        )
        return saving


@dataclass
class MemberIncome:
    user_id: int
    first_name: str
    last_name: str
    default_salary_cents: int
    current_salary_cents: int


@dataclass
class MemberExpenses:
    user_id: int
    first_name: str
    last_name: str
    personal_total_cents: int
    remaining_cents: int


@dataclass
class ExpenseSummary:
    personal: list[MemberExpenses]
    shared_total_cents: int
    total_cents: int
    remaining_cents: int


@dataclass
class MemberSavings:
    user_id: int
    first_name: str
    last_name: str
    personal_savings_cents: int
    shared_savings_cents: int
    remaining_budget_cents: int


@dataclass
class SavingsSummary:
    members: list[MemberSavings]
    total_personal_cents: int
    total_shared_cents: int
    total_cents: int
    total_remaining_budget_cents: int


@dataclass
class SettlementSummary:
    year: int
    month: int
    amount_cents: int
    owed_by_user_id: Optional[int]
    owed_by_first_name: Optional[str]
    owed_to_user_id: Optional[int]
    owed_to_first_name: Optional[str]
    message: str
    is_settled: bool
    balances: list[MemberBalance] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)


@dataclass
class Overview:
    mode: str
    year: int
    month: Optional[int]
    income: list[MemberIncome]
    total_default_income_cents: int
    total_current_income_cents: int
    expenses: ExpenseSummary
    savings: SavingsSummary
    settlement: Optional[SettlementSummary]


@dataclass
class _Occurrence:
    expense: Expense
    amount_cents: int
    paid: bool


class DashboardService:
    """Household income, expense, savings and settlement figures for a period."""

    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[DashboardCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache or DashboardCache()

    def overview(self, period: YearMonth, mode: str = "monthly") -> Overview:
        membership = require_membership(self.session, self.user_id)
        household_id = membership.household_id
        if mode not in ("monthly", "yearly"):
            raise ValueError(f"Unknown dashboard mode: {mode}")
        key = ("dashboard", household_id, (str(period), mode, self.user_id))
        if mode == "yearly":
            return self.cache.get_or_set(
                key, summary_ttl(), lambda: self._yearly(household_id, period.year)
            )
        return self.cache.get_or_set(
            key, summary_ttl(), lambda: self._monthly(household_id, period)
        )

    def settlement(self, period: YearMonth) -> SettlementSummary:
        membership = require_membership(self.session, self.user_id)
        household_id = membership.household_id
        key = ("settlement", household_id, (str(period), self.user_id))
        return self.cache.get_or_set(
            key,
            settlement_ttl(),
            lambda: self._settlement(
                household_id,
                period,
                self._members(household_id),
                self._occurrences(household_id, period),
            ),
        )

    def mark_settlement_paid(self, period: YearMonth) -> Settlement:
        membership = require_membership(self.session, self.user_id)
        household_id = membership.household_id
        if self._settlement_record(household_id, period):
            logger.warning(
                f"settlement_conflict: household_id={household_id} period={period}"
            )
            raise ConflictError(
                "Settlement has already been marked as paid for this month"
            )

        summary = self._settlement(
            household_id,
            period,
            self._members(household_id),
            self._occurrences(household_id, period),
        )
        if summary.amount_cents == 0:
            logger.warning(
                f"settlement_not_needed: household_id={household_id} period={period}"
            )
            raise ValueError("No settlement needed, shared expenses are balanced")

        record = Settlement(
            household_id=household_id,
            year=period.year,
            month=period.month,
            amount_cents=summary.amount_cents,
            paid_by_user_id=summary.owed_by_user_id,
            paid_to_user_id=summary.owed_to_user_id,
            paid_at=utcnow(),
        )
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning(
                f"settlement_conflict: household_id={household_id} period={period}"
            )
            raise ConflictError(
                "Settlement has already been marked as paid for this month"
            ) from exc
        self.session.refresh(record)
        self.cache.invalidate_household(household_id)
        logger.info(
            f"settlement_paid: settlement_id={record.id} household_id={household_id} "
            f"period={period} amount_cents={record.amount_cents}"
        )
        return record

    def savings_history(
        self, months: int = 12, today: Optional[date] = None
    ) -> list[dict[str, int]]:
        membership = require_membership(self.session, self.user_id)
        end = YearMonth.from_date(today or local_today())
        start = end.shift(-(months - 1))
        periods = month_range(start, end)
        rows = self.session.scalars(
            select(Saving).where(
                Saving.household_id == membership.household_id,
                or_(
                    Saving.year > start.year,
                    and_(Saving.year == start.year, Saving.month >= start.month),
                ),
                or_(
                    Saving.year < end.year,
                    and_(Saving.year == end.year, Saving.month <= end.month),
                ),
            )
        ).all()
        history = {
            p: {"year": p.year, "month": p.month, "personal_cents": 0, "shared_cents": 0}
            for p in periods
        }
        for row in rows:
            bucket = history[YearMonth(row.year, row.month)]
            kind = "shared_cents" if row.is_shared else "personal_cents"
            bucket[kind] += row.amount_cents
        return [history[p] for p in periods]

    def _members(self, household_id: int) -> list[HouseholdMember]:
        return HouseholdService(self.session).members(household_id)

    def _settlement_record(
        self, household_id: int, period: YearMonth
    ) -> Optional[Settlement]:
        return self.session.scalar(
            select(Settlement).where(
                Settlement.household_id == household_id,
                Settlement.year == period.year,
                Settlement.month == period.month,
            )
        )

    def _occurrences(self, household_id: int, period: YearMonth) -> list[_Occurrence]:
        """Every expense occurring in the period, at its resolved amount.

        Skipped and cancelled occurrences are left out entirely.
        """
        expenses = self.session.scalars(
            select(Expense)
            .where(Expense.household_id == household_id, Expense.deleted_at.is_(None))
            .order_by(Expense.id)
        ).all()
        if not expenses:
            return []
        ids = [e.id for e in expenses]
        overrides = {
            o.expense_id: o
            for o in self.session.scalars(
                select(RecurringOverride).where(
                    RecurringOverride.expense_id.in_(ids),
                    RecurringOverride.year == period.year,
                    RecurringOverride.month == period.month,
                )
            )
        }
        statuses = {
            s.expense_id: s.status
            for s in self.session.scalars(
                select(ExpensePaymentStatus).where(
                    ExpensePaymentStatus.expense_id.in_(ids),
                    ExpensePaymentStatus.year == period.year,
                    ExpensePaymentStatus.month == period.month,
                )
            )
        }

        occurrences = []
        for expense in expenses:
            resolved = resolve_amount(
                schedule_for(expense), period, overrides.get(expense.id)
            )
            if resolved is None or resolved.is_skipped:
                continue
            status = statuses.get(expense.id, PaymentStatus.pending)
            if status == PaymentStatus.cancelled:
                continue
            occurrences.append(
                _Occurrence(
                    expense=expense,
                    amount_cents=resolved.amount_cents,
                    paid=status == PaymentStatus.paid,
                )
            )
        return occurrences

    def _monthly(self, household_id: int, period: YearMonth) -> Overview:
        members = self._members(household_id)
        occurrences = self._occurrences(household_id, period)
        income = self._income(household_id, period, members)
        expenses = self._expenses(members, occurrences)
        savings = self._savings(household_id, period, members, income, expenses)
        settlement = self._settlement(household_id, period, members, occurrences)
        return Overview(
            mode="monthly",
            year=period.year,
            month=period.month,
            income=income,
            total_default_income_cents=sum(m.default_salary_cents for m in income),
            total_current_income_cents=sum(m.current_salary_cents for m in income),
            expenses=expenses,
            savings=savings,
            settlement=settlement,
        )

    def _yearly(self, household_id: int, year: int) -> Overview:
        months = [self._monthly(household_id, p) for p in year_months(year)]

        def avg(values) -> int:
            values = list(values)
            return round_cents(Decimal(sum(values)) / Decimal(len(values)))

        first = months[0]
        income = [
            MemberIncome(
                user_id=m.user_id,
                first_name=m.first_name,
                last_name=m.last_name,
                default_salary_cents=avg(o.income[i].default_salary_cents for o in months),
                current_salary_cents=avg(o.income[i].current_salary_cents for o in months),
            )
            for i, m in enumerate(first.income)
        ]
        personal = [
            MemberExpenses(
                user_id=m.user_id,
                first_name=m.first_name,
                last_name=m.last_name,
                personal_total_cents=avg(
                    o.expenses.personal[i].personal_total_cents for o in months
                ),
                remaining_cents=avg(o.expenses.personal[i].remaining_cents for o in months),
            )
            for i, m in enumerate(first.expenses.personal)
        ]
        savings_members = [
            MemberSavings(
                user_id=m.user_id,
                first_name=m.first_name,
                last_name=m.last_name,
                personal_savings_cents=avg(
                    o.savings.members[i].personal_savings_cents for o in months
                ),
                shared_savings_cents=avg(
                    o.savings.members[i].shared_savings_cents for o in months
                ),
                remaining_budget_cents=avg(
                    o.savings.members[i].remaining_budget_cents for o in months
                ),
            )
            for i, m in enumerate(first.savings.members)
        ]
        return Overview(
            mode="yearly",
            year=year,
            month=None,
            income=income,
            total_default_income_cents=avg(o.total_default_income_cents for o in months),
            total_current_income_cents=avg(o.total_current_income_cents for o in months),
            expenses=ExpenseSummary(
                personal=personal,
                shared_total_cents=avg(o.expenses.shared_total_cents for o in months),
                total_cents=avg(o.expenses.total_cents for o in months),
                remaining_cents=avg(o.expenses.remaining_cents for o in months),
            ),
            savings=SavingsSummary(
                members=savings_members,
                total_personal_cents=avg(o.savings.total_personal_cents for o in months),
                total_shared_cents=avg(o.savings.total_shared_cents for o in months),
                total_cents=avg(o.savings.total_cents for o in months),
                total_remaining_budget_cents=avg(
                    o.savings.total_remaining_budget_cents for o in months
                ),
            ),
            settlement=None,
        )

    def _income(
        self, household_id: int, period: YearMonth, members: list[HouseholdMember]
    ) -> list[MemberIncome]:
        salaries = {
            s.user_id: s
            for s in self.session.scalars(
                select(Salary).where(
                    Salary.household_id == household_id,
                    Salary.year == period.year,
                    Salary.month == period.month,
                )
            )
        }
        income = []
        for member in members:
            salary = salaries.get(member.user_id)
            income.append(
                MemberIncome(
                    user_id=member.user_id,
                    first_name=member.user.first_name,
                    last_name=member.user.last_name,
                    default_salary_cents=salary.default_amount_cents if salary else 0,
                    current_salary_cents=salary.current_amount_cents if salary else 0,
                )
            )
        return income

    def _expenses(
        self, members: list[HouseholdMember], occurrences: list[_Occurrence]
    ) -> ExpenseSummary:
        personal = []
        for member in members:
            own = [
                o
                for o in occurrences
                if o.expense.type == ExpenseType.personal
                and o.expense.created_by_id == member.user_id
            ]
            personal.append(
                MemberExpenses(
                    user_id=member.user_id,
                    first_name=member.user.first_name,
                    last_name=member.user.last_name,
                    personal_total_cents=sum(o.amount_cents for o in own),
                    remaining_cents=sum(o.amount_cents for o in own if not o.paid),
                )
            )
        member_ids = {m.user_id for m in members}
        shared = [o for o in occurrences if o.expense.type == ExpenseType.shared]
        shared_total = sum(o.amount_cents for o in shared)
        counted = [
            o
            for o in occurrences
            if o.expense.type == ExpenseType.shared
            or o.expense.created_by_id in member_ids
        ]
        total = sum(p.personal_total_cents for p in personal) + shared_total
        paid = sum(o.amount_cents for o in counted if o.paid)
        return ExpenseSummary(
            personal=personal,
            shared_total_cents=shared_total,
            total_cents=total,
            remaining_cents=total - paid,
        )

    def _savings(
        self,
        household_id: int,
        period: YearMonth,
        members: list[HouseholdMember],
        income: list[MemberIncome],
        expenses: ExpenseSummary,
    ) -> SavingsSummary:
        records = self.session.scalars(
            select(Saving).where(
                Saving.household_id == household_id,
                Saving.year == period.year,
                Saving.month == period.month,
            )
        ).all()
        by_member = {(s.user_id, s.is_shared): s for s in records}
        salary_by_user = {m.user_id: m.current_salary_cents for m in income}
        personal_by_user = {p.user_id: p.personal_total_cents for p in expenses.personal}
        fair_share = Decimal(expenses.shared_total_cents) / Decimal(len(members) or 1)

        result = []
        for member in members:
            personal_saving = by_member.get((member.user_id, False))
            shared_saving = by_member.get((member.user_id, True))
            deductions = sum(
                s.amount_cents
                for s in (personal_saving, shared_saving)
                if s is not None and s.reduces_from_salary
            )
            remaining = (
                Decimal(salary_by_user.get(member.user_id, 0))
                - personal_by_user.get(member.user_id, 0)
                - fair_share
                - deductions
            )
            result.append(
                MemberSavings(
                    user_id=member.user_id,
                    first_name=member.user.first_name,
                    last_name=member.user.last_name,
                    personal_savings_cents=personal_saving.amount_cents
                    if personal_saving
                    else 0,
                    shared_savings_cents=shared_saving.amount_cents
                    if shared_saving
                    else 0,
                    remaining_budget_cents=round_cents(remaining),
                )
            )

        total_personal = sum(m.personal_savings_cents for m in result)
        total_shared = sum(m.shared_savings_cents for m in result)
        return SavingsSummary(
            members=result,
            total_personal_cents=total_personal,
            total_shared_cents=total_shared,
            total_cents=total_personal + total_shared,
            total_remaining_budget_cents=sum(m.remaining_budget_cents for m in result),
        )

    def _settlement(
        self,
        household_id: int,
        period: YearMonth,
        members: list[HouseholdMember],
        occurrences: list[_Occurrence],
    ) -> SettlementSummary:
        charges = [
            SharedCharge(o.amount_cents, o.expense.paid_by_user_id)
            for o in occurrences
            if o.expense.type == ExpenseType.shared
        ]
        balances = member_balances([m.user_id for m in members], charges)
        transfers = settle(balances)
        record = self._settlement_record(household_id, period)

        if not transfers:
            return SettlementSummary(
                year=period.year,
                month=period.month,
                amount_cents=0,
                owed_by_user_id=None,
                owed_by_first_name=None,
                owed_to_user_id=None,
                owed_to_first_name=None,
                message="All shared expenses are balanced, no settlement needed.",
                is_settled=record is not None,
                balances=balances,
                transfers=[],
            )

        headline = transfers[0]
        names = {m.user_id: m.user.first_name for m in members}
        return SettlementSummary(
            year=period.year,
            month=period.month,
            amount_cents=headline.amount_cents,
            owed_by_user_id=headline.from_user_id,
            owed_by_first_name=names[headline.from_user_id],
            owed_to_user_id=headline.to_user_id,
            owed_to_first_name=names[headline.to_user_id],
            message=self._settlement_message(headline, names),
            is_settled=record is not None
            and record.amount_cents >= headline.amount_cents,
            balances=balances,
            transfers=transfers,
        )

    def _settlement_message(self, transfer: Transfer, names: dict[int, str]) -> str:
        symbol = get_settings().currency_symbol
        amount = f"{symbol}{transfer.amount_cents / 100:.2f}"
        debtor = names[transfer.from_user_id]
        creditor = names[transfer.to_user_id]
        if transfer.from_user_id == self.user_id:
            return f"You owe {creditor} {amount}"
        if transfer.to_user_id == self.user_id:
            return f"{debtor} owes you {amount}"
        return f"{debtor} owes {creditor} {amount}"
