import logging
from datetime import date
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from auth import SignInRequired, require_identity
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db
from models import TransactionType, User
from money import format_amount, parse_amount
from schemas import BudgetItemIn, CategoryIn, TransactionIn
from services import (
    BudgetService,
    CategoryService,
    MetricsService,
    TransactionService,
    UserConflict,
    UserNotFound,
    UserService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title="Budget")
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

templates.env.filters["money"] = format_amount
templates.env.globals["TransactionType"] = TransactionType
templates.env.globals["csrf_token"] = generate_csrf_token


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    identity = require_identity(request)
    return UserService(db).sync(identity)


@app.exception_handler(SignInRequired)
def redirect_to_sign_in(request: Request, _exc: SignInRequired):
    sign_in_url = get_settings().sign_in_url
    target = quote(str(request.url.path), safe="/")
    return RedirectResponse(url=f"{sign_in_url}?rd={target}", status_code=303)


@app.exception_handler(OperationalError)
def store_unavailable(request: Request, exc: OperationalError):
    logger.error(
        "store_unavailable: path=%s error=%s", request.url.path, exc.orig, exc_info=exc
    )
    return PlainTextResponse("Database unavailable", status_code=503)


@app.exception_handler(UserConflict)
def user_conflict(_request: Request, exc: UserConflict):
    logger.warning("user_conflict: %s", exc)
    return PlainTextResponse(str(exc), status_code=409)


def render(
    request: Request, template: str, context: dict[str, object], status_code: int = 200
) -> HTMLResponse:
    return templates.TemplateResponse(
        request, template, context, status_code=status_code
    )


def month_from_request(request: Request) -> tuple[int, int]:
    today = date.today()
    try:
        year = int(request.query_params.get("year", today.year))
        month = int(request.query_params.get("month", today.month))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid month") from exc
    if not 1 <= month <= 12 or not 1970 <= year <= 3000:
        raise HTTPException(status_code=400, detail="Invalid month")
    return year, month


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not str(value).strip():
        return None
    return int(value)


async def checked_form(request: Request, user: User):
    form = await request.form()
    if not validate_csrf_token(str(form.get("csrf_token", "")), user.id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def budget_item_payload_from_form(form) -> BudgetItemIn:
    return BudgetItemIn(
        category_id=int(form["category_id"]),
        name=form["name"],
        planned_amount=parse_amount(form.get("planned_amount") or "0"),
        month=int(form["month"]),
        year=int(form["year"]),
    )


def redirect_to(request: Request, route: str, **query: object) -> RedirectResponse:
    url = str(request.app.url_path_for(route))
    if query:
        url = f"{url}?{urlencode(query)}"
    return RedirectResponse(url=url, status_code=303)


@app.get("/healthz")
def healthz(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
def dashboard(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    try:
        data = MetricsService(db, user.id).user_transactions()
    except UserNotFound as exc:
        return render(
            request, "not_found.html", {"message": str(exc)}, status_code=404
        )
    today = date.today()
    return render(
        request,
        "dashboard.html",
        {
            "user": data.user,
            "transactions": data.transactions,
            "summary": data.summary(),
            "budget_items": BudgetService(db, user.id).items_for_month(
                today.year, today.month
            ),
            "today": today,
        },
    )


@app.get("/budget", response_class=HTMLResponse)
def budget_page(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    year, month = month_from_request(request)
    return render(
        request,
        "budget.html",
        {
            "user": user,
            "year": year,
            "month": month,
            "cards": BudgetService(db, user.id).cards_for_month(year, month),
            "categories": CategoryService(db, user.id).list_all(),
        },
    )


@app.post("/categories")
async def create_category(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    form = await checked_form(request, user)
    try:
        data = CategoryIn(name=form["name"], type=TransactionType(form["type"]))
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    CategoryService(db, user.id).create(data)
    return redirect_to(request, "budget_page")


@app.post("/categories/{category_id}/delete")
async def delete_category(
    category_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    await checked_form(request, user)
    try:
        CategoryService(db, user.id).delete(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return redirect_to(request, "budget_page")


@app.post("/budget-items")
async def create_budget_item(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    form = await checked_form(request, user)
    try:
        data = budget_item_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        BudgetService(db, user.id).create_item(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return redirect_to(request, "budget_page", year=data.year, month=data.month)


@app.post("/budget-items/{item_id}")
async def update_budget_item(
    item_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    form = await checked_form(request, user)
    try:
        data = budget_item_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        BudgetService(db, user.id).update_item(item_id, data)
    except ValueError as exc:
        status_code = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    return redirect_to(request, "budget_page", year=data.year, month=data.month)


@app.post("/budget-items/{item_id}/delete")
async def delete_budget_item(
    item_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    await checked_form(request, user)
    try:
        BudgetService(db, user.id).delete_item(item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return redirect_to(request, "budget_page")


@app.post("/transactions")
async def create_transaction(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    form = await checked_form(request, user)
    try:
        data = TransactionIn(
            date=date.fromisoformat(form["date"]),
            type=TransactionType(form["type"]),
            amount=parse_amount(form["amount"]),
            description=form["description"],
            budget_item_id=_optional_int(form.get("budget_item_id")),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        TransactionService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return redirect_to(request, "dashboard")


@app.post("/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    await checked_form(request, user)
    try:
        TransactionService(db, user.id).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return redirect_to(request, "dashboard")
