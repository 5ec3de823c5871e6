from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from cache import DashboardCache
from database import Base
from models import (
    ExpenseCategory,
    ExpenseFrequency,
    ExpenseType,
    Salary,
    Settlement,
    User,
    YearlyPaymentStrategy,
)
from periods import YearMonth
from schemas import ExpenseIn, HouseholdIn, PeriodIn, SalaryIn, SavingIn, SkipIn
from services import (
    ConflictError,
    DashboardService,
    ExpensePaymentService,
    ExpenseService,
    HouseholdService,
    RecurringOverrideService,
    SalaryService,
    SavingService,
)

JUNE = YearMonth(2025, 6)


def _setup(session: Session, cache: DashboardCache):
    alex = User(email="alex@example.com", first_name="Alex", last_name="Lee")
    sam = User(email="sam@example.com", first_name="Sam", last_name="Roe")
    session.add_all([alex, sam])
    session.commit()
    household = HouseholdService(session).create(alex.id, HouseholdIn(name="Home"))
    HouseholdService(session).join(sam.id, household.id)

    SalaryService(session, alex.id, cache).upsert(
        SalaryIn(
            year=2025, month=6, default_amount_cents=300_000, current_amount_cents=300_000
        )
    )
    SalaryService(session, sam.id, cache).upsert(
        SalaryIn(
            year=2025, month=6, default_amount_cents=210_000, current_amount_cents=200_000
        )
    )

    expenses = ExpenseService(session, alex.id, cache)
    rent = expenses.create(
        ExpenseIn(
            name="Rent",
            amount_cents=40_000,
            type=ExpenseType.shared,
            category=ExpenseCategory.recurring,
            frequency=ExpenseFrequency.monthly,
            paid_by_user_id=alex.id,
        )
    )
    gym = expenses.create(
        ExpenseIn(
            name="Gym",
            amount_cents=3000,
            type=ExpenseType.personal,
            category=ExpenseCategory.recurring,
            frequency=ExpenseFrequency.monthly,
        )
    )
    return alex, sam, rent, gym


def test_monthly_overview_totals() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)
        SavingService(session, alex.id, cache).upsert(
            SavingIn(year=2025, month=6, amount_cents=10_000), is_shared=False
        )
        SavingService(session, sam.id, cache).upsert(
            SavingIn(year=2025, month=6, amount_cents=5000, reduces_from_salary=False),
            is_shared=True,
        )

        overview = DashboardService(session, alex.id, cache).overview(JUNE)

        assert overview.total_default_income_cents == 510_000
        assert overview.total_current_income_cents == 500_000
        assert overview.expenses.shared_total_cents == 40_000
        assert overview.expenses.total_cents == 43_000
        assert overview.expenses.remaining_cents == 43_000
        personal = {p.user_id: p.personal_total_cents for p in overview.expenses.personal}
        assert personal == {alex.id: 3000, sam.id: 0}

        budgets = {m.user_id: m.remaining_budget_cents for m in overview.savings.members}
        assert budgets[alex.id] == 300_000 - 3000 - 20_000 - 10_000
        assert budgets[sam.id] == 200_000 - 20_000
        assert overview.savings.total_personal_cents == 10_000
        assert overview.savings.total_shared_cents == 5000
        assert overview.savings.total_cents == 15_000


def test_settlement_message_is_relative_to_requester() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)

        for_alex = DashboardService(session, alex.id, cache).settlement(JUNE)
        for_sam = DashboardService(session, sam.id, cache).settlement(JUNE)

        assert for_alex.amount_cents == 20_000
        assert for_alex.owed_by_user_id == sam.id
        assert for_alex.owed_to_user_id == alex.id
        assert for_alex.message == "Sam owes you €200.00"
        assert for_sam.message == "You owe Alex €200.00"
        assert not for_alex.is_settled


def test_mark_settlement_paid_once_per_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)
        dashboard = DashboardService(session, sam.id, cache)
        assert not dashboard.overview(JUNE).settlement.is_settled

        record = dashboard.mark_settlement_paid(JUNE)

        assert record.amount_cents == 20_000
        assert record.paid_by_user_id == sam.id
        assert record.paid_to_user_id == alex.id
        assert dashboard.overview(JUNE).settlement.is_settled
        with pytest.raises(ConflictError):
            dashboard.mark_settlement_paid(JUNE)


def test_concurrent_settlement_payment_is_a_conflict(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)
        DashboardService(session, sam.id, cache).mark_settlement_paid(JUNE)

        # Alex checked before Sam's record was committed
        dashboard = DashboardService(session, alex.id, cache)
        monkeypatch.setattr(dashboard, "_settlement_record", lambda *args: None)

        with pytest.raises(ConflictError, match="already been marked as paid"):
            dashboard.mark_settlement_paid(JUNE)
        assert len(session.scalars(select(Settlement)).all()) == 1


def test_nothing_to_settle_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, _, rent, _ = _setup(session, cache)
        ExpenseService(session, alex.id, cache).delete(rent.id)
        dashboard = DashboardService(session, alex.id, cache)

        summary = dashboard.settlement(JUNE)
        assert summary.amount_cents == 0
        assert summary.owed_by_user_id is None
        with pytest.raises(ValueError, match="No settlement needed"):
            dashboard.mark_settlement_paid(JUNE)


def test_paid_skipped_and_cancelled_occurrences() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, _, rent, gym = _setup(session, cache)
        payments = ExpensePaymentService(session, alex.id, cache)
        payments.mark_paid(rent.id, PeriodIn(year=2025, month=6))

        june = DashboardService(session, alex.id, cache).overview(JUNE)
        assert june.expenses.total_cents == 43_000
        assert june.expenses.remaining_cents == 3000

        RecurringOverrideService(session, alex.id, cache).skip(
            rent.id, SkipIn(year=2025, month=7), today=date(2025, 6, 1)
        )
        payments.cancel(gym.id, PeriodIn(year=2025, month=7))

        july = DashboardService(session, alex.id, cache).overview(YearMonth(2025, 7))
        assert july.expenses.shared_total_cents == 0
        assert july.expenses.total_cents == 0
        assert july.settlement.amount_cents == 0


def test_yearly_mode_averages_months_without_settlement() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, _, _, _ = _setup(session, cache)
        ExpenseService(session, alex.id, cache).create(
            ExpenseIn(
                name="Insurance",
                amount_cents=12_000,
                type=ExpenseType.shared,
                category=ExpenseCategory.recurring,
                frequency=ExpenseFrequency.yearly,
                yearly_payment_strategy=YearlyPaymentStrategy.full,
                payment_month=3,
            )
        )

        overview = DashboardService(session, alex.id, cache).overview(JUNE, "yearly")

        assert overview.mode == "yearly"
        assert overview.month is None
        assert overview.settlement is None
        assert overview.expenses.shared_total_cents == 41_000
        assert overview.total_current_income_cents == 500_000 // 12 + 1
        income = {m.user_id: m.current_salary_cents for m in overview.income}
        assert income[alex.id] == 25_000


def test_unknown_mode_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, _, _, _ = _setup(session, DashboardCache())
        with pytest.raises(ValueError):
            DashboardService(session, alex.id).overview(JUNE, "weekly")


def test_mutations_invalidate_cached_overview() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)
        dashboard = DashboardService(session, alex.id, cache)
        assert dashboard.overview(JUNE).expenses.shared_total_cents == 40_000

        ExpenseService(session, sam.id, cache).create(
            ExpenseIn(
                name="Internet",
                amount_cents=4000,
                type=ExpenseType.shared,
                category=ExpenseCategory.recurring,
                frequency=ExpenseFrequency.monthly,
            )
        )
        assert dashboard.overview(JUNE).expenses.shared_total_cents == 44_000

        # Writes that bypass the services are not seen until invalidation
        salary = session.scalar(select(Salary).where(Salary.user_id == alex.id))
        salary.current_amount_cents = 1
        session.commit()
        assert dashboard.overview(JUNE).total_current_income_cents == 500_000

        cache.invalidate_household(salary.household_id)
        assert dashboard.overview(JUNE).total_current_income_cents == 200_001


def test_savings_history_covers_last_months() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    cache = DashboardCache()

    with Session(engine) as session:
        alex, sam, _, _ = _setup(session, cache)
        SavingService(session, alex.id, cache).upsert(
            SavingIn(year=2025, month=5, amount_cents=1000), is_shared=False
        )
        SavingService(session, sam.id, cache).upsert(
            SavingIn(year=2025, month=5, amount_cents=500), is_shared=False
        )
        SavingService(session, sam.id, cache).upsert(
            SavingIn(year=2025, month=6, amount_cents=700), is_shared=True
        )
        SavingService(session, sam.id, cache).upsert(
            SavingIn(year=2025, month=1, amount_cents=9999), is_shared=True
        )

        history = DashboardService(session, alex.id, cache).savings_history(
            3, today=date(2025, 6, 15)
        )

        assert history == [
            {"year": 2025, "month": 4, "personal_cents": 0, "shared_cents": 0},
            {"year": 2025, "month": 5, "personal_cents": 1500, "shared_cents": 0},
            {"year": 2025, "month": 6, "personal_cents": 0, "shared_cents": 700},
        ]
