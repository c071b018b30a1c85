import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from cashback import (
    CategoryCycleStats,
    CycleGroup,
    CycleSummary,
    ExpenseCashback,
    OverallSummary,
)
from config import get_settings
from database import SessionLocal, init_db, session_scope
from models import Category
from periods import BillingCycle, local_today
from schemas import CategoryIn, CategoryOut, ExpenseIn, ExpenseOut, SettingsIn
from services import (
    BackupService,
    CashbackService,
    CategoryService,
    ExpenseService,
    SettingsService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cashback Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        CategoryService(session).ensure_defaults()
    logger.info("startup: database ready")


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name} date: {value}"
        ) from exc


def reference_date_from_request(request: Request) -> date:
    return _parse_date(request.query_params.get("date"), "reference") or local_today()


def cycle_payload(cycle: BillingCycle) -> dict[str, object]:
    return {"key": cycle.key, "start": cycle.start, "end": cycle.end}


def category_payload(category: Optional[Category]) -> Optional[dict[str, object]]:
    if category is None:
        return None
    return CategoryOut.model_validate(category).model_dump()


def stats_payload(stats: CategoryCycleStats) -> dict[str, object]:
    return {
        "total_spent": stats.total_spent,
        "raw_cashback": stats.raw_cashback,
        "effective_cashback": stats.effective_cashback,
        "has_limit": stats.has_limit,
        "monthly_limit": stats.monthly_limit,
        "limit_used_percent": stats.limit_used_percent,
        "remaining_limit": stats.remaining_limit,
        "is_limit_reached": stats.is_limit_reached,
        "expense_count": stats.expense_count,
    }


def summary_payload(summary: OverallSummary, currency: str) -> dict[str, object]:
    return {
        "currency": currency,
        "total_spent": summary.total_spent,
        "total_cashback": summary.total_cashback,
        "total_potential_cashback": summary.total_potential_cashback,
        "lost_to_capping": summary.lost_to_capping,
        "expense_count": summary.expense_count,
        "billing_cycle": cycle_payload(summary.billing_cycle),
        "category_stats": [
            {"category": category_payload(entry.category), **stats_payload(entry.stats)}
            for entry in summary.category_stats
        ],
    }


def expense_row_payload(row: ExpenseCashback) -> dict[str, object]:
    expense = ExpenseOut.model_validate(row.expense).model_dump()
    expense.update(
        {
            "category_name": row.category.name if row.category else None,
            "category_color": row.category.color if row.category else None,
            "cycle_key": row.cycle_key,
            "cashback": {
                "raw": row.cashback.raw,
                "eligible": row.cashback.eligible,
                "lost": row.cashback.lost,
            },
        }
    )
    return expense


def cycle_summary_payload(summary: CycleSummary) -> dict[str, object]:
    return {
        "total_spent": summary.total_spent,
        "total_cashback": summary.total_cashback,
        "total_potential_cashback": summary.total_potential_cashback,
        "lost_to_capping": summary.lost_to_capping,
        "expense_count": summary.expense_count,
    }


def group_payload(group: CycleGroup) -> dict[str, object]:
    return {
        "cycle": cycle_payload(group.cycle),
        "summary": cycle_summary_payload(group.summary),
        "expenses": [expense_row_payload(row) for row in group.expenses],
    }


@app.get("/api/cycle")
def api_cycle(request: Request, db: Session = Depends(get_db)):
    today = reference_date_from_request(request)
    return cycle_payload(CashbackService(db).current_cycle(today))


@app.get("/api/summary")
def api_summary(request: Request, db: Session = Depends(get_db)):
    today = reference_date_from_request(request)
    service = CashbackService(db)
    currency = service.settings.get().currency
    return summary_payload(service.overview(today), currency)


@app.get("/api/categories")
def api_list_categories(db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    category = CategoryService(db).create(data)
    return category_payload(category)


@app.put("/api/categories/{category_id}")
def api_update_category(
    category_id: str, data: CategoryIn, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}")
def api_delete_category(category_id: str, db: Session = Depends(get_db)):
    try:
        removed = CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": category_id, "expenses_removed": removed}


@app.get("/api/categories/{category_id}/stats")
def api_category_stats(
    category_id: str, request: Request, db: Session = Depends(get_db)
):
    today = reference_date_from_request(request)
    try:
        stats = CashbackService(db).category_stats(category_id, today)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return stats_payload(stats)


@app.get("/api/expenses")
def api_list_expenses(request: Request, db: Session = Depends(get_db)):
    scope = request.query_params.get("scope", "cycle")
    if scope not in ("cycle", "all"):
        raise HTTPException(status_code=400, detail="scope must be 'cycle' or 'all'")
    today = reference_date_from_request(request)
    service = CashbackService(db)
    rows = service.expense_rows(current_only=scope == "cycle", today=today)
    payload: dict[str, object] = {
        "scope": scope,
        "count": len(rows),
        "items": [expense_row_payload(row) for row in rows],
    }
    if scope == "cycle":
        payload["billing_cycle"] = cycle_payload(service.current_cycle(today))
    return payload


@app.post("/api/expenses", status_code=201)
def api_create_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseOut.model_validate(expense).model_dump()


@app.put("/api/expenses/{expense_id}")
def api_update_expense(expense_id: str, data: ExpenseIn, db: Session = Depends(get_db)):
    service = ExpenseService(db)
    try:
        service.get(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        expense = service.update(expense_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseOut.model_validate(expense).model_dump()


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(expense_id: str, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/cycles")
def api_cycles(request: Request, db: Session = Depends(get_db)):
    start = _parse_date(request.query_params.get("start"), "start")
    end = _parse_date(request.query_params.get("end"), "end")
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="Start date must be before end date")
    groups = CashbackService(db).cycles(
        cycle_key=request.query_params.get("cycle"), start=start, end=end
    )
    return {key: group_payload(group) for key, group in groups.items()}


@app.get("/api/settings")
def api_get_settings(db: Session = Depends(get_db)):
    return SettingsService(db).get().model_dump()


@app.put("/api/settings")
def api_save_settings(data: SettingsIn, db: Session = Depends(get_db)):
    saved = SettingsService(db).save(data)
    logger.info(
        f"settings_saved: billing_cycle_start={saved.billing_cycle_start} "
        f"currency={saved.currency}"
    )
    return saved.model_dump()


@app.get("/api/export", response_class=StreamingResponse)
def api_export(db: Session = Depends(get_db)):
    payload = BackupService(db).export_json()
    filename = f"cashback-backup-{local_today().isoformat()}.json"
    return StreamingResponse(
        iter([payload]),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/import")
async def api_import(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="Backup must be UTF-8") from exc
    if not text.strip():
        raise HTTPException(status_code=400, detail="Empty backup")
    result = BackupService(db).import_json(text)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.model_dump()


@app.post("/api/clear")
def api_clear(db: Session = Depends(get_db)):
    BackupService(db).clear_all()
    CategoryService(db).ensure_defaults()
    return {"cleared": True}
