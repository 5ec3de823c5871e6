import logging
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Path, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from cache import get_dashboard_cache
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db
from models import ExpenseType, User
from periods import YearMonth, resolve_month_year
from schemas import (
    DefaultAmountIn,
    ExpenseIn,
    ExpenseOut,
    HouseholdIn,
    OverrideIn,
    OverrideOut,
    PaymentStatusOut,
    PeriodIn,
    SalaryIn,
    SavingIn,
    SettlementRecordOut,
    SkipIn,
    UpcomingOverrideIn,
)
from services import (
    ConflictError,
    DashboardService,
    ExpensePaymentService,
    ExpenseService,
    HouseholdService,
    NotFoundError,
    RecurringOverrideService,
    SalaryService,
    SavingService,
    require_membership,
)

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Household Budget")


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    try:
        user_id = int(x_user_id or "")
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Not authenticated") from exc
    if not db.get(User, user_id):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None),
    user_id: int = Depends(get_current_user_id),
) -> int:
    if not validate_csrf_token(x_csrf_token or "", user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user_id


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def period_from_query(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
) -> YearMonth:
    return resolve_month_year(month, year)


@app.get("/api/csrf-token")
def api_csrf_token(user_id: int = Depends(get_current_user_id)):
    return {"csrf_token": generate_csrf_token(user_id)}


@app.post("/api/households", status_code=201)
def api_create_household(
    payload: HouseholdIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        household = HouseholdService(db).create(user_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": household.id, "name": household.name}


@app.post("/api/households/{household_id}/members", status_code=201)
def api_join_household(
    household_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        member = HouseholdService(db).join(user_id, household_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"household_id": member.household_id, "user_id": member.user_id}


@app.get("/api/households/me")
def api_my_household(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    service = HouseholdService(db)
    try:
        membership = require_membership(db, user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "id": membership.household_id,
        "name": membership.household.name,
        "members": [
            {
                "user_id": m.user_id,
                "first_name": m.user.first_name,
                "last_name": m.user.last_name,
                "email": m.user.email,
            }
            for m in service.members(membership.household_id)
        ],
    }


@app.get("/api/expenses", response_model=list[ExpenseOut])
def api_list_expenses(
    expense_type: Optional[ExpenseType] = Query(default=None, alias="type"),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    period = None
    if month is not None or year is not None:
        period = resolve_month_year(month, year)
    try:
        return ExpenseService(db, user_id).list(
            expense_type=expense_type, period=period
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def api_create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        return ExpenseService(db, user_id, get_dashboard_cache()).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def api_get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return ExpenseService(db, user_id).get(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def api_update_expense(
    expense_id: int,
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        return ExpenseService(db, user_id, get_dashboard_cache()).update(
            expense_id, payload
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        ExpenseService(db, user_id, get_dashboard_cache()).delete(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/expenses/{expense_id}/timeline")
def api_expense_timeline(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        months = ExpenseService(db, user_id).timeline(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"expense_id": expense_id, "months": [asdict(m) for m in months]}


@app.get("/api/expenses/{expense_id}/overrides", response_model=list[OverrideOut])
def api_list_overrides(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return RecurringOverrideService(db, user_id).list(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}/overrides")
def api_delete_all_overrides(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        deleted = service.delete_all(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted}


@app.post(
    "/api/expenses/{expense_id}/overrides/upcoming",
    response_model=list[OverrideOut],
)
def api_upsert_upcoming_overrides(
    expense_id: int,
    payload: UpcomingOverrideIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        return service.upsert_upcoming(expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}/overrides/upcoming")
def api_delete_upcoming_overrides(
    expense_id: int,
    from_year: int = Query(..., ge=1970, le=3000),
    from_month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        deleted = service.delete_upcoming(expense_id, from_year, from_month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted}


@app.put(
    "/api/expenses/{expense_id}/overrides/{year}/{month}",
    response_model=OverrideOut,
)
def api_upsert_override(
    expense_id: int,
    payload: OverrideIn,
    year: int = Path(..., ge=1970, le=3000),
    month: int = Path(..., ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        return service.upsert(expense_id, year, month, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}/overrides/{year}/{month}")
def api_delete_override(
    expense_id: int,
    year: int = Path(..., ge=1970, le=3000),
    month: int = Path(..., ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        deleted = service.delete(expense_id, year, month)
        has_later = service.has_later_overrides(expense_id, year, month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted, "has_upcoming_overrides": has_later}


@app.put("/api/expenses/{expense_id}/default-amount", response_model=ExpenseOut)
def api_update_default_amount(
    expense_id: int,
    payload: DefaultAmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        return service.update_default_amount(expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/expenses/{expense_id}/skip", response_model=list[OverrideOut])
def api_skip_expense(
    expense_id: int,
    payload: SkipIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        return service.skip(expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/expenses/{expense_id}/unskip")
def api_unskip_expense(
    expense_id: int,
    payload: SkipIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = RecurringOverrideService(db, user_id, get_dashboard_cache())
    try:
        deleted = service.unskip(expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted}


@app.get("/api/skips")
def api_skip_statuses(
    period: YearMonth = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    target = PeriodIn(year=period.year, month=period.month)
    try:
        skipped = RecurringOverrideService(db, user_id).skipped_expense_ids(target)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"year": period.year, "month": period.month, "skipped_expense_ids": skipped}


@app.post(
    "/api/expenses/{expense_id}/payments/{action}",
    response_model=PaymentStatusOut,
)
def api_set_payment_status(
    expense_id: int,
    action: Literal["paid", "undo", "cancel"],
    payload: PeriodIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = ExpensePaymentService(db, user_id, get_dashboard_cache())
    handlers = {
        "paid": service.mark_paid,
        "undo": service.undo_paid,
        "cancel": service.cancel,
    }
    try:
        return handlers[action](expense_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get(
    "/api/expenses/{expense_id}/payments",
    response_model=list[PaymentStatusOut],
)
def api_payment_statuses(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return ExpensePaymentService(db, user_id).statuses(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/payments")
def api_batch_payment_statuses(
    period: YearMonth = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    target = PeriodIn(year=period.year, month=period.month)
    try:
        statuses = ExpensePaymentService(db, user_id).batch_statuses(target)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "year": period.year,
        "month": period.month,
        "statuses": {str(k): v.value for k, v in statuses.items()},
    }


@app.put("/api/salary")
def api_upsert_salary(
    payload: SalaryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    try:
        salary = SalaryService(db, user_id, get_dashboard_cache()).upsert(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "year": salary.year,
        "month": salary.month,
        "default_amount_cents": salary.default_amount_cents,
        "current_amount_cents": salary.current_amount_cents,
    }


@app.put("/api/savings/{kind}")
def api_upsert_saving(
    kind: Literal["personal", "shared"],
    payload: SavingIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = SavingService(db, user_id, get_dashboard_cache())
    try:
        saving = service.upsert(payload, is_shared=kind == "shared")
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "year": saving.year,
        "month": saving.month,
        "amount_cents": saving.amount_cents,
        "is_shared": saving.is_shared,
        "reduces_from_salary": saving.reduces_from_salary,
    }


@app.get("/api/dashboard")
def api_dashboard(
    mode: Literal["monthly", "yearly"] = "monthly",
    period: YearMonth = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        overview = DashboardService(db, user_id, get_dashboard_cache()).overview(
            period, mode
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return asdict(overview)


@app.get("/api/dashboard/settlement")
def api_settlement(
    period: YearMonth = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        summary = DashboardService(db, user_id, get_dashboard_cache()).settlement(
            period
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return asdict(summary)


@app.post(
    "/api/dashboard/settlement/paid",
    response_model=SettlementRecordOut,
    status_code=201,
)
def api_mark_settlement_paid(
    payload: PeriodIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(require_csrf),
):
    service = DashboardService(db, user_id, get_dashboard_cache())
    try:
        return service.mark_settlement_paid(YearMonth(payload.year, payload.month))
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/dashboard/savings-history")
def api_savings_history(
    months: int = Query(default=12, ge=1, le=60),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        history = DashboardService(db, user_id, get_dashboard_cache()).savings_history(
            months
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"months": history}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
