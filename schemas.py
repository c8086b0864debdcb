from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class ExternalIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=120)
    last_name: Optional[str] = Field(default=None, max_length=120)

    def display_name(self) -> Optional[str]:
        if self.name and self.name.strip():
            return self.name.strip()
        parts = [p.strip() for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts) or None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class BudgetItemIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=255)
    planned_amount: Decimal = Field(
        default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2
    )
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)


class TransactionIn(BaseModel):
    date: date
    type: TransactionType
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    budget_item_id: Optional[int] = None
