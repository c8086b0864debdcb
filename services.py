from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from models import BudgetItem, Category, Transaction, TransactionType, User
from money import quantize
from schemas import BudgetItemIn, CategoryIn, ExternalIdentity, TransactionIn


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
PLACEHOLDER_EMAIL_DOMAIN = "users.noreply.invalid"
MAX_EMAIL_LOCAL_PART = 64


class UserNotFound(ValueError):
    pass


class UserConflict(ValueError):
    pass


class _Amounted(Protocol):
    type: TransactionType
    amount: Decimal


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class TransactionSummary:
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    net_amount: Decimal = ZERO


def summarize_transactions(transactions: Iterable[_Amounted]) -> TransactionSummary:
    """Total income, total expenses and their difference.

    Sums are exact fixed-point; rounding to cents happens once, on the totals,
    so the result does not depend on the order of ``transactions``. Amounts
    count by magnitude: the direction comes from ``type``, so a signed
    ``-85.43`` expense and a stored ``85.43`` one add up the same.
    """
    income = ZERO
    expenses = ZERO
    for txn in transactions:
        txn_type = TransactionType(txn.type)
        if txn_type == TransactionType.income:
            income += abs(_as_decimal(txn.amount))
        elif txn_type == TransactionType.expense:
            expenses += abs(_as_decimal(txn.amount))
        else:  # pragma: no cover
            raise ValueError(f"Unhandled transaction type: {txn_type!r}")
    return TransactionSummary(
        total_income=quantize(income),
        total_expenses=quantize(expenses),
        net_amount=quantize(income - expenses),
    )


@dataclass
class UserTransactions:
    user: User
    transactions: list[Transaction]

    def summary(self) -> TransactionSummary:
        return summarize_transactions(self.transactions)


@dataclass
class BudgetLine:
    item: BudgetItem
    planned: Decimal
    actual: Decimal

    @property
    def remaining(self) -> Decimal:
        return quantize(self.planned - self.actual)


@dataclass
class BudgetCard:
    category: Category
    lines: list[BudgetLine] = field(default_factory=list)

    @property
    def planned_total(self) -> Decimal:
        return quantize(sum((line.planned for line in self.lines), ZERO))

    @property
    def actual_total(self) -> Decimal:
        return quantize(sum((line.actual for line in self.lines), ZERO))

    @property
    def remaining_total(self) -> Decimal:
        return quantize(self.planned_total - self.actual_total)


def placeholder_email(user_id: str) -> str:
    local = user_id
    if len(local) > MAX_EMAIL_LOCAL_PART:
        local = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
    return f"{local}@{PLACEHOLDER_EMAIL_DOMAIN}"


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound(f"No user found with ID: {user_id}")
        return user

    def _insert_ignoring_duplicates(self, values: dict[str, object]):
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite_insert(User).values(**values).on_conflict_do_nothing()
        if dialect == "postgresql":
            return pg_insert(User).values(**values).on_conflict_do_nothing()
        return insert(User).values(**values)

    def sync(self, identity: ExternalIdentity) -> User:
        """Make sure a local user row exists for an authenticated identity.

        Existing rows are left untouched. A concurrent insert of the same id
        is not an error: the unique key decides the winner and both callers
        get the stored row back. Commits (or rolls back) the session, so call
        it before doing any other work in the request.
        """
        values = {
            "id": identity.id,
            "email": (identity.email or "").strip().lower()
            or placeholder_email(identity.id),
            "name": identity.display_name(),
        }
        try:
            result = self.session.execute(self._insert_ignoring_duplicates(values))
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("user_sync: id=%s outcome=duplicate_insert", identity.id)
        else:
            if result.rowcount:
                logger.info("user_sync: id=%s outcome=created", identity.id)

        user = self.session.get(User, identity.id)
        if not user:
            raise UserConflict(
                f"Email {values['email']} already belongs to another user"
            )
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _category(self, category_id: int) -> Category:
        return CategoryService(self.session, self.user_id).get(category_id)

    def get_item(self, item_id: int) -> BudgetItem:
        item = self.session.get(BudgetItem, item_id)
        if not item or item.user_id != self.user_id:
            raise ValueError("Budget item not found")
        return item

    def _has_transactions(self, item_id: int) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.budget_item_id == item_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def create_item(self, data: BudgetItemIn) -> BudgetItem:
        self._category(data.category_id)
        item = BudgetItem(
            user_id=self.user_id,
            category_id=data.category_id,
            name=data.name.strip(),
            planned_amount=quantize(data.planned_amount),
            month=data.month,
            year=data.year,
        )
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update_item(self, item_id: int, data: BudgetItemIn) -> BudgetItem:
        item = self.get_item(item_id)
        category = self._category(data.category_id)
        if category.type != item.category.type and self._has_transactions(item.id):
            raise ValueError("Budget item category type mismatch")
        item.category_id = data.category_id
        item.name = data.name.strip()
        item.planned_amount = quantize(data.planned_amount)
        item.month = data.month
        item.year = data.year
        self.session.commit()
        self.session.refresh(item)
        return item

    def delete_item(self, item_id: int) -> None:
        item = self.get_item(item_id)
        self.session.delete(item)
        self.session.commit()

    def items_for_month(self, year: int, month: int) -> list[BudgetItem]:
        stmt = (
            select(BudgetItem)
            .options(
                joinedload(BudgetItem.category),
                selectinload(BudgetItem.transactions),
            )
            .where(
                BudgetItem.user_id == self.user_id,
                BudgetItem.year == year,
                BudgetItem.month == month,
            )
            .order_by(BudgetItem.name, BudgetItem.id)
        )
        return list(self.session.scalars(stmt).unique().all())

    def cards_for_month(self, year: int, month: int) -> list[BudgetCard]:
        cards: dict[int, BudgetCard] = {}
        for item in self.items_for_month(year, month):
            card = cards.setdefault(item.category_id, BudgetCard(item.category))
            actual = sum((_as_decimal(t.amount) for t in item.transactions), ZERO)
            card.lines.append(
                BudgetLine(
                    item=item,
                    planned=quantize(_as_decimal(item.planned_amount)),
                    actual=quantize(actual),
                )
            )
        return sorted(
            cards.values(),
            key=lambda c: (
                c.category.type != TransactionType.income,
                c.category.name.lower(),
                c.category.id,
            ),
        )


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        if data.budget_item_id is not None:
            item = BudgetService(self.session, self.user_id).get_item(
                data.budget_item_id
            )
            if item.category.type != data.type:
                raise ValueError("Budget item category type mismatch")
        txn = Transaction(
            user_id=self.user_id,
            budget_item_id=data.budget_item_id,
            amount=quantize(data.amount),
            description=data.description.strip(),
            date=data.date,
            type=data.type,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.budget_item).joinedload(BudgetItem.category)
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(self, limit: Optional[int] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.budget_item).joinedload(BudgetItem.category)
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class MetricsService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def user_transactions(self) -> UserTransactions:
        """The user with all of their transactions, newest first.

        Raises ``UserNotFound`` when there is no such user; a known user
        without transactions gets an empty list.
        """
        user = UserService(self.session).get(self.user_id)
        transactions = TransactionService(self.session, self.user_id).list()
        return UserTransactions(user=user, transactions=transactions)

    def summary(self) -> TransactionSummary:
        return self.user_transactions().summary()
