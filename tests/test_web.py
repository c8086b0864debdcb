from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from auth import EMAIL_HEADER, NAME_HEADER, USER_HEADER
from csrf import generate_csrf_token
from database import get_db
from main import app
from models import Transaction, User
from seed import DEMO_USER_ID, seed_demo_data
from services import BudgetService, CategoryService


@pytest.fixture
def client(engine):
    def override_get_db():
        db = Session(engine, expire_on_commit=False)
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user_id: str, **extra: str) -> dict[str, str]:
    return {USER_HEADER: user_id, **extra}


def test_anonymous_request_redirects_to_sign_in(client) -> None:
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/oauth2/sign_in")


def test_first_visit_syncs_user(client, engine) -> None:
    headers = as_user(
        "user_new", **{EMAIL_HEADER: "new@example.com", NAME_HEADER: "Newbie"}
    )
    resp = client.get("/", headers=headers)
    assert resp.status_code == 200
    assert "No transactions found for this user." in resp.text
    assert "$0.00" in resp.text

    with Session(engine) as s:
        user = s.get(User, "user_new")
        assert user.email == "new@example.com"
        assert user.name == "Newbie"


def test_dashboard_shows_summary(client, session) -> None:
    seed_demo_data(session)

    resp = client.get("/", headers=as_user(DEMO_USER_ID))

    assert resp.status_code == 200
    assert "$5,400.00" in resp.text
    assert "$1,450.82" in resp.text
    assert "$3,949.18" in resp.text
    assert "Recent Transactions (7)" in resp.text


def test_budget_page_lists_cards(client, session) -> None:
    seed_demo_data(session)

    resp = client.get("/budget?year=2025&month=1", headers=as_user(DEMO_USER_ID))

    assert resp.status_code == 200
    assert "Streaming Services" in resp.text
    assert "$404.18" in resp.text


def test_budget_page_rejects_bad_month(client) -> None:
    resp = client.get("/budget?year=2025&month=13", headers=as_user("u"))
    assert resp.status_code == 400


def test_create_transaction_requires_csrf(client) -> None:
    resp = client.post(
        "/transactions",
        headers=as_user("u"),
        data={
            "csrf_token": "bogus",
            "date": "2025-01-01",
            "type": "expense",
            "amount": "1.00",
            "description": "x",
        },
    )
    assert resp.status_code == 400


def test_create_transaction(client, engine) -> None:
    resp = client.post(
        "/transactions",
        headers=as_user("u"),
        data={
            "csrf_token": generate_csrf_token("u"),
            "date": "2025-01-05",
            "type": "expense",
            "amount": "85.43",
            "description": "Whole Foods",
            "budget_item_id": "",
        },
        follow_redirects=False,
    )
    assert resp.status_code == 303

    with Session(engine) as s:
        txn = s.scalars(select(Transaction)).one()
        assert txn.user_id == "u"
        assert txn.amount == Decimal("85.43")
        assert txn.budget_item_id is None


def test_create_transaction_rejects_unknown_type(client) -> None:
    resp = client.post(
        "/transactions",
        headers=as_user("u"),
        data={
            "csrf_token": generate_csrf_token("u"),
            "date": "2025-01-05",
            "type": "savings",
            "amount": "1.00",
            "description": "x",
        },
    )
    assert resp.status_code == 400


def test_healthz(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_create_budget_item_redirects_to_its_month(client, session) -> None:
    seed_demo_data(session)
    food = next(
        c for c in CategoryService(session, DEMO_USER_ID).list_all() if c.name == "Food"
    )

    resp = client.post(
        "/budget-items",
        headers=as_user(DEMO_USER_ID),
        data={
            "csrf_token": generate_csrf_token(DEMO_USER_ID),
            "category_id": str(food.id),
            "name": "Rent",
            "planned_amount": "$1,200",
            "month": "3",
            "year": "2025",
        },
        follow_redirects=False,
    )

    assert resp.status_code == 303
    assert resp.headers["location"] == "/budget?year=2025&month=3"
    items = BudgetService(session, DEMO_USER_ID).items_for_month(2025, 3)
    assert [(i.name, i.planned_amount) for i in items] == [("Rent", Decimal("1200.00"))]


def test_budget_item_type_switch_with_transactions_is_rejected(client, session) -> None:
    seed_demo_data(session)
    budgets = BudgetService(session, DEMO_USER_ID)
    salary_item = next(
        i for i in budgets.items_for_month(2025, 1) if i.name == "Monthly Salary"
    )
    food = next(
        c for c in CategoryService(session, DEMO_USER_ID).list_all() if c.name == "Food"
    )

    resp = client.post(
        f"/budget-items/{salary_item.id}",
        headers=as_user(DEMO_USER_ID),
        data={
            "csrf_token": generate_csrf_token(DEMO_USER_ID),
            "category_id": str(food.id),
            "name": "Monthly Salary",
            "planned_amount": "5,000.00",
            "month": "1",
            "year": "2025",
        },
        follow_redirects=False,
    )

    assert resp.status_code == 400
    assert "type mismatch" in resp.text
