import tomllib
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from coach import CoachClient, CoachSession, CoachUnavailable
from config import get_settings
from database import SessionLocal, init_db
from insights import parse_mood
from periods import DateRange, InvalidDateRange, MonthKey, parse_date_range
from scheduler import SchedulerManager
from schemas import BudgetIn, CategoryIn, CategoryUpdateIn, CoachRequestIn, ExpenseIn
from services import (
    AnalyticsService,
    BudgetService,
    CategoryConflict,
    CategoryNotFound,
    CategoryService,
    ExpenseNotFound,
    ExpenseService,
    expense_to_record,
)

app = FastAPI(title="Spending Analytics")


def _load_app_version() -> str:
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


coach_session = CoachSession()
scheduler_manager = SchedulerManager(coach_session)


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def range_from_query(start_date: Optional[str], end_date: Optional[str]) -> DateRange:
    try:
        return parse_date_range(start_date, end_date)
    except InvalidDateRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def month_from_path(month: str) -> MonthKey:
    try:
        return MonthKey.parse(month)
    except InvalidDateRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/expenses")
def api_expenses(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    items = ExpenseService(db).list_recent(limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [expense_to_record(e) for e in items[:limit]],
        "limit": limit,
        "offset": offset,
        "has_more": has_more,
    }


@app.post("/api/expenses", status_code=201)
def api_create_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_to_record(expense)


@app.get("/api/expenses/summary")
def api_expenses_summary(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    date_range = range_from_query(start_date, end_date)
    return AnalyticsService(db).summary(date_range)


@app.delete("/api/expenses/{expense_id}")
def api_delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).soft_delete(expense_id)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": expense_id}


@app.patch("/api/expenses/{expense_id}/category")
def api_update_expense_category(
    expense_id: int, payload: CategoryUpdateIn, db: Session = Depends(get_db)
):
    try:
        expense = ExpenseService(db).update_category(expense_id, payload.category)
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_to_record(expense)


@app.patch("/api/expenses/{expense_id}/items/{index}/category")
def api_update_item_category(
    expense_id: int,
    index: int,
    payload: CategoryUpdateIn,
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db).update_item_category(
            expense_id, index, payload.category
        )
    except ExpenseNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_to_record(expense)


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [
        {
            "id": ref.id,
            "name": ref.name,
            "icon": ref.icon,
            "color": ref.color,
            "isCustom": ref.is_custom,
        }
        for ref in CategoryService(db).list_categories()
    ]


@app.post("/api/categories", status_code=201)
def api_create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "id": category.name,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
        "isCustom": True,
    }


@app.delete("/api/categories/{name}")
def api_delete_category(name: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(name)
    except CategoryNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CategoryConflict as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"deleted": name}


@app.get("/api/budgets")
def api_budget_months(db: Session = Depends(get_db)):
    return {"months": BudgetService(db).list_months()}


@app.get("/api/budgets/{month}")
def api_budget(month: str, db: Session = Depends(get_db)):
    key = month_from_path(month)
    resolved = BudgetService(db).resolved(key)
    return {
        "month": str(resolved.month),
        "sourceMonth": str(resolved.source_month) if resolved.source_month else None,
        "isDefault": resolved.is_default,
        "budgets": resolved.amounts,
        "total": resolved.total,
    }


@app.put("/api/budgets/{month}")
def api_save_budget(month: str, payload: BudgetIn, db: Session = Depends(get_db)):
    key = month_from_path(month)
    try:
        budgets = BudgetService(db).upsert_month(key, payload.budgets)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"month": str(key), "budgets": budgets}


@app.delete("/api/budgets/{month}")
def api_delete_budget(month: str, db: Session = Depends(get_db)):
    key = month_from_path(month)
    deleted = BudgetService(db).delete_month(key)
    if not deleted:
        raise HTTPException(status_code=404, detail="Budget not found")
    return {"deleted": str(key)}


@app.get("/api/analysis")
def api_analysis(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    mood: Optional[str] = None,
    db: Session = Depends(get_db),
):
    date_range = range_from_query(start_date, end_date)
    snapshot = AnalyticsService(db).snapshot(date_range, parse_mood(mood))
    coach_session.observe(snapshot)
    return snapshot


@app.get("/api/coach/state")
def api_coach_state():
    return coach_session.state()


@app.post("/api/coach/open")
def api_coach_open():
    coach_session.open()
    return coach_session.state()


@app.post("/api/coach/close")
def api_coach_close():
    coach_session.close()
    return coach_session.state()


@app.post("/api/ai/coach")
def api_coach(payload: CoachRequestIn, db: Session = Depends(get_db)):
    settings = get_settings()
    if not settings.coach_url:
        raise HTTPException(status_code=503, detail="Coach service is not configured")
    date_range = range_from_query(payload.start_date, payload.end_date)
    snapshot = AnalyticsService(db).snapshot(date_range, parse_mood(payload.mood))
    client = CoachClient(settings.coach_url, timeout=settings.coach_timeout_secs)
    try:
        message = coach_session.request_insights(
            snapshot,
            client,
            [m.model_dump() for m in payload.conversation],
        )
    except CoachUnavailable as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {
        "message": message,
        "discarded": message is None,
        "signature": snapshot.signature,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
