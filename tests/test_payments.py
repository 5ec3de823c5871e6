import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import (
    ExpenseCategory,
    ExpenseFrequency,
    ExpenseType,
    PaymentStatus,
    User,
    YearlyPaymentStrategy,
)
from schemas import ExpenseIn, HouseholdIn, PeriodIn
from services import (
    ExpensePaymentService,
    ExpenseService,
    HouseholdService,
    NotFoundError,
)


def _setup(session: Session):
    alex = User(email="alex@example.com", first_name="Alex", last_name="Lee")
    session.add(alex)
    session.commit()
    HouseholdService(session).create(alex.id, HouseholdIn(name="Home"))
    expenses = ExpenseService(session, alex.id)
    rent = expenses.create(
        ExpenseIn(
            name="Rent",
            amount_cents=90_000,
            type=ExpenseType.shared,
            category=ExpenseCategory.recurring,
            frequency=ExpenseFrequency.monthly,
        )
    )
    insurance = expenses.create(
        ExpenseIn(
            name="Insurance",
            amount_cents=24_000,
            type=ExpenseType.personal,
            category=ExpenseCategory.recurring,
            frequency=ExpenseFrequency.yearly,
            yearly_payment_strategy=YearlyPaymentStrategy.full,
            payment_month=3,
        )
    )
    return alex, rent, insurance


def test_mark_paid_is_idempotent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, rent, _ = _setup(session)
        payments = ExpensePaymentService(session, alex.id)
        june = PeriodIn(year=2025, month=6)

        first = payments.mark_paid(rent.id, june)
        second = payments.mark_paid(rent.id, june)

        assert first.id == second.id
        assert second.status == PaymentStatus.paid
        assert second.paid_at == first.paid_at
        assert second.paid_by_id == alex.id
        assert len(payments.statuses(rent.id)) == 1


def test_undo_paid_resets_to_pending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, rent, _ = _setup(session)
        payments = ExpensePaymentService(session, alex.id)
        june = PeriodIn(year=2025, month=6)

        with pytest.raises(NotFoundError):
            payments.undo_paid(rent.id, june)

        payments.mark_paid(rent.id, june)
        undone = payments.undo_paid(rent.id, june)

        assert undone.status == PaymentStatus.pending
        assert undone.paid_at is None


def test_cancel_and_status_history_order() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, rent, _ = _setup(session)
        payments = ExpensePaymentService(session, alex.id)

        payments.mark_paid(rent.id, PeriodIn(year=2025, month=4))
        payments.cancel(rent.id, PeriodIn(year=2025, month=6))
        payments.mark_paid(rent.id, PeriodIn(year=2025, month=5))

        history = payments.statuses(rent.id)
        assert [(s.year, s.month, s.status) for s in history] == [
            (2025, 6, PaymentStatus.cancelled),
            (2025, 5, PaymentStatus.paid),
            (2025, 4, PaymentStatus.paid),
        ]


def test_batch_statuses_default_to_pending_for_applicable_expenses() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, rent, insurance = _setup(session)
        payments = ExpensePaymentService(session, alex.id)
        payments.mark_paid(insurance.id, PeriodIn(year=2025, month=3))

        march = payments.batch_statuses(PeriodIn(year=2025, month=3))
        assert march == {
            rent.id: PaymentStatus.pending,
            insurance.id: PaymentStatus.paid,
        }

        # Insurance only occurs in March
        april = payments.batch_statuses(PeriodIn(year=2025, month=4))
        assert april == {rent.id: PaymentStatus.pending}


def test_deleted_expense_has_no_statuses() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alex, rent, _ = _setup(session)
        ExpenseService(session, alex.id).delete(rent.id)
        payments = ExpensePaymentService(session, alex.id)

        assert rent.id not in payments.batch_statuses(PeriodIn(year=2025, month=6))
        with pytest.raises(NotFoundError):
            payments.mark_paid(rent.id, PeriodIn(year=2025, month=6))
