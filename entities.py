from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from errors import InvalidInterval
from money import require_positive, signed_cents
from recurrence import Custom, Daily, Monthly, Recurrence, Weekly
from targets import Target

INCOME_GROUP_NAME = "Income"


def new_id() -> str:
    return str(uuid4())


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    cash = "cash"
    checking = "checking"
    savings = "savings"
    credit_card = "credit_card"


class AccountCategory(str, Enum):
    personal = "personal"
    business = "business"
    investment = "investment"
    shared = "shared"


class PlannedMode(str, Enum):
    automatic = "automatic"
    manual = "manual"


class EntityKind(str, Enum):
    account = "account"
    category_group = "category_group"
    category = "category"
    transaction = "transaction"
    planned_transaction = "planned_transaction"


@dataclass(frozen=True)
class Account:
    name: str
    type: AccountType
    category: AccountCategory = AccountCategory.personal
    balance_cents: int = 0
    cleared_balance_cents: int = 0
    is_archived: bool = False
    notes: Optional[str] = None
    last_reconciled_at: Optional[date] = None
    last_reconciled_cents: Optional[int] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)

    kind = EntityKind.account


@dataclass(frozen=True)
class Category:
    group_id: str
    name: str
    emoji: Optional[str] = None
    allocated_cents: int = 0
    spent_cents: int = 0
    target: Optional[Target] = None
    position: int = 0
    id: str = field(default_factory=new_id)

    kind = EntityKind.category

    @property
    def available_cents(self) -> int:
        return self.allocated_cents - self.spent_cents


@dataclass(frozen=True)
class CategoryGroup:
    name: str
    emoji: Optional[str] = None
    categories: tuple[Category, ...] = ()
    position: int = 0
    id: str = field(default_factory=new_id)

    kind = EntityKind.category_group

    @property
    def is_income(self) -> bool:
        return self.name.strip().lower() == INCOME_GROUP_NAME.lower()


@dataclass(frozen=True)
class Transaction:
    """A posted movement of money. Never edited once recorded."""

    date: date
    payee: str
    type: TransactionType
    amount_cents: int
    account_id: str
    category_id: Optional[str] = None
    to_account_id: Optional[str] = None
    note: Optional[str] = None
    transfer_id: Optional[str] = None
    planned_id: Optional[str] = None
    occurrence_date: Optional[date] = None
    id: str = field(default_factory=new_id)

    kind = EntityKind.transaction

    def __post_init__(self) -> None:
        require_positive(self.amount_cents)
        if not isinstance(self.type, TransactionType):
            object.__setattr__(self, "type", TransactionType(self.type))

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.income

    @property
    def is_transfer(self) -> bool:
        return self.to_account_id is not None

    @property
    def signed_cents(self) -> int:
        return signed_cents(self.amount_cents, self.is_income)

    @property
    def idempotency_key(self) -> Optional[tuple[str, date]]:
        if self.planned_id is None or self.occurrence_date is None:
            return None
        return (self.planned_id, self.occurrence_date)


@dataclass(frozen=True)
class PlannedTransaction:
    title: str
    type: TransactionType
    amount_cents: int
    account_id: str
    recurrence: Recurrence
    next_due_date: date
    mode: PlannedMode = PlannedMode.automatic
    category_id: Optional[str] = None
    note: Optional[str] = None
    is_active: bool = True
    last_processed_date: Optional[date] = None
    id: str = field(default_factory=new_id)

    kind = EntityKind.planned_transaction

    def __post_init__(self) -> None:
        require_positive(self.amount_cents)
        if not isinstance(self.recurrence, (Daily, Weekly, Monthly, Custom)):
            raise InvalidInterval(f"Unsupported recurrence: {self.recurrence!r}")
        if not isinstance(self.type, TransactionType):
            object.__setattr__(self, "type", TransactionType(self.type))
        if not isinstance(self.mode, PlannedMode):
            object.__setattr__(self, "mode", PlannedMode(self.mode))

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.income

    def is_due(self, on: date) -> bool:
        return self.is_active and self.next_due_date <= on
