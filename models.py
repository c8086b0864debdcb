from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


def transaction_type_enum() -> SAEnum:
    return SAEnum(
        TransactionType,
        name="transactiontype",
        values_callable=lambda enum_cls: [member.value for member in enum_cls],
        create_constraint=True,
        validate_strings=True,
    )


MONEY = Numeric(10, 2, asdecimal=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class User(Base, CreatedAtMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))

    categories: Mapped[list["Category"]] = relationship(
        "Category",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    budget_items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Category(Base, CreatedAtMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        transaction_type_enum(), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="categories")
    budget_items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_categories_user_type", "user_id", "type"),)


class BudgetItem(Base, TimestampMixin):
    __tablename__ = "budget_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    planned_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="budget_items")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="budget_items"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="budget_item", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("month >= 1 AND month <= 12", name="ck_budget_item_month"),
        CheckConstraint(
            "planned_amount >= 0", name="ck_budget_item_planned_non_negative"
        ),
        Index("ix_budget_items_user_period", "user_id", "year", "month"),
    )


class Transaction(Base, CreatedAtMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    budget_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_items.id", ondelete="SET NULL")
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        transaction_type_enum(), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="transactions")
    budget_item: Mapped[Optional["BudgetItem"]] = relationship(
        "BudgetItem", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_budget_item", "budget_item_id"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
    )
