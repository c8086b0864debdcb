import argparse
import logging
import time
from datetime import date
from decimal import Decimal

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from models import BudgetItem, Category, Transaction, TransactionType, User


logger = logging.getLogger(__name__)

DEMO_USER_ID = "user_123"

DEMO_CATEGORIES = [
    ("Salary", TransactionType.income),
    ("Side Hustle", TransactionType.income),
    ("Housing", TransactionType.expense),
    ("Food", TransactionType.expense),
    ("Transportation", TransactionType.expense),
    ("Entertainment", TransactionType.expense),
]

# (category, item, planned)
DEMO_BUDGET_ITEMS = [
    ("Salary", "Monthly Salary", "5000.00"),
    ("Side Hustle", "Freelance Work", "800.00"),
    ("Housing", "Rent", "1200.00"),
    ("Housing", "Utilities", "150.00"),
    ("Food", "Groceries", "400.00"),
    ("Food", "Dining Out", "200.00"),
    ("Transportation", "Gas", "120.00"),
    ("Entertainment", "Streaming Services", "45.00"),
]

# (budget item, amount, description, day of month)
DEMO_TRANSACTIONS = [
    ("Monthly Salary", "5000.00", "January Salary Deposit", 1),
    ("Freelance Work", "400.00", "Website Project Payment", 15),
    ("Rent", "1200.00", "January Rent Payment", 1),
    ("Groceries", "85.43", "Whole Foods", 5),
    ("Groceries", "67.89", "Target Groceries", 12),
    ("Dining Out", "42.50", "Pizza Night", 10),
    ("Gas", "55.00", "Shell Gas Station", 8),
]


def reset_database(engine: Engine) -> None:
    from database import Base

    start = time.monotonic()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    logger.info("reset_database: elapsed_ms=%d", (time.monotonic() - start) * 1000)


def seed_demo_data(
    session: Session, *, year: int = 2025, month: int = 1
) -> User:
    user = User(id=DEMO_USER_ID, name="John Doe", email="john@example.com")
    session.add(user)

    categories = {
        name: Category(user=user, name=name, type=txn_type)
        for name, txn_type in DEMO_CATEGORIES
    }
    session.add_all(categories.values())

    items = {
        item_name: BudgetItem(
            user=user,
            category=categories[category_name],
            name=item_name,
            planned_amount=Decimal(planned),
            month=month,
            year=year,
        )
        for category_name, item_name, planned in DEMO_BUDGET_ITEMS
    }
    session.add_all(items.values())

    transactions = [
        Transaction(
            user=user,
            budget_item=items[item_name],
            amount=Decimal(amount),
            description=description,
            date=date(year, month, day),
            type=items[item_name].category.type,
        )
        for item_name, amount, description, day in DEMO_TRANSACTIONS
    ]
    session.add_all(transactions)
    session.commit()

    logger.info(
        "seed_demo_data: user=%s categories=%d budget_items=%d transactions=%d",
        user.id,
        len(categories),
        len(items),
        len(transactions),
    )
    return user


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed the budget database")
    parser.add_argument(
        "--reset", action="store_true", help="drop and recreate all tables first"
    )
    args = parser.parse_args(argv)

    from config import get_settings
    from database import engine, session_scope

    logging.basicConfig(level=get_settings().log_level)
    if args.reset:
        reset_database(engine)
    with session_scope() as session:
        seed_demo_data(session)


if __name__ == "__main__":
    main()
