from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from entities import (
    AccountCategory,
    AccountType,
    PlannedMode,
    PlannedTransaction,
    Transaction,
    TransactionType,
)
from errors import InvalidInterval
from recurrence import (
    Custom,
    Daily,
    EveryDays,
    EveryMonths,
    EveryYears,
    IntervalUnit,
    Monthly,
    MonthlyOnDay,
    Recurrence,
    Weekly,
)
from targets import (
    ByDateTarget,
    CustomTarget,
    MonthlyTarget,
    NoDateTarget,
    Target,
    WeeklyTarget,
)

TargetKind = Literal["monthly", "weekly", "by_date", "custom", "no_date"]
IntervalKind = Literal["days", "months", "years", "monthly_on_day"]
Frequency = Literal["daily", "weekly", "monthly", "custom"]


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    category: AccountCategory = AccountCategory.personal
    notes: Optional[str] = Field(None, max_length=500)
    opening_balance_cents: int = 0
    opened_on: Optional[date] = None


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    payee: str = Field(..., min_length=1, max_length=200)
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    account_id: str
    category_id: Optional[str] = None
    to_account_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=500)

    def to_entity(self) -> Transaction:
        return Transaction(
            date=self.date,
            payee=self.payee,
            type=self.type,
            amount_cents=self.amount_cents,
            account_id=self.account_id,
            category_id=self.category_id,
            to_account_id=self.to_account_id,
            note=self.note,
        )


class TransferIn(BaseModel):
    from_account_id: str
    to_account_id: str
    amount_cents: int = Field(..., gt=0)
    date: date
    note: Optional[str] = Field(None, max_length=500)


class AllocationIn(BaseModel):
    amount_cents: int = Field(..., gt=0)


class ReconcileIn(BaseModel):
    cleared_balance_cents: int
    as_of: date


class TargetIn(BaseModel):
    kind: TargetKind
    amount_cents: int = Field(..., ge=0)
    due: Optional[date] = None
    interval: Optional[IntervalKind] = None
    interval_value: Optional[int] = None

    def to_target(self) -> Target:
        if self.kind == "monthly":
            return MonthlyTarget(self.amount_cents)
        if self.kind == "weekly":
            return WeeklyTarget(self.amount_cents)
        if self.kind == "no_date":
            return NoDateTarget(self.amount_cents)
        if self.kind == "by_date":
            if self.due is None:
                raise InvalidInterval("By-date target requires a due date")
            return ByDateTarget(self.amount_cents, self.due)
        if self.interval is None or self.interval_value is None:
            raise InvalidInterval("Custom target requires interval and interval_value")
        interval_types = {
            "days": EveryDays,
            "months": EveryMonths,
            "years": EveryYears,
            "monthly_on_day": MonthlyOnDay,
        }
        return CustomTarget(
            self.amount_cents, interval_types[self.interval](self.interval_value)
        )

    @classmethod
    def from_target(cls, target: Target) -> "TargetIn":
        if isinstance(target, MonthlyTarget):
            return cls(kind="monthly", amount_cents=target.amount_cents)
        if isinstance(target, WeeklyTarget):
            return cls(kind="weekly", amount_cents=target.amount_cents)
        if isinstance(target, NoDateTarget):
            return cls(kind="no_date", amount_cents=target.amount_cents)
        if isinstance(target, ByDateTarget):
            return cls(kind="by_date", amount_cents=target.amount_cents, due=target.due)
        interval = target.interval
        if isinstance(interval, MonthlyOnDay):
            return cls(
                kind="custom",
                amount_cents=target.amount_cents,
                interval="monthly_on_day",
                interval_value=interval.day,
            )
        names = {EveryDays: "days", EveryMonths: "months", EveryYears: "years"}
        return cls(
            kind="custom",
            amount_cents=target.amount_cents,
            interval=names[type(interval)],
            interval_value=interval.count,
        )


class CategoryGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    emoji: Optional[str] = Field(None, max_length=16)


class CategoryIn(BaseModel):
    group_id: str
    name: str = Field(..., min_length=1, max_length=100)
    emoji: Optional[str] = Field(None, max_length=16)
    target: Optional[TargetIn] = None


class PlannedTransactionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    account_id: str
    category_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=500)
    mode: PlannedMode = PlannedMode.automatic
    frequency: Frequency
    interval_count: Optional[int] = Field(None, gt=0)
    interval_unit: Optional[IntervalUnit] = None
    next_due_date: date
    is_active: bool = True

    def recurrence(self) -> Recurrence:
        if self.frequency == "daily":
            return Daily()
        if self.frequency == "weekly":
            return Weekly()
        if self.frequency == "monthly":
            return Monthly()
        if self.interval_count is None or self.interval_unit is None:
            raise InvalidInterval("Custom recurrence requires interval_count and interval_unit")
        return Custom(self.interval_count, self.interval_unit)

    def to_entity(self, planned_id: Optional[str] = None) -> PlannedTransaction:
        fields = dict(
            title=self.title,
            type=self.type,
            amount_cents=self.amount_cents,
            account_id=self.account_id,
            category_id=self.category_id,
            note=self.note,
            mode=self.mode,
            recurrence=self.recurrence(),
            next_due_date=self.next_due_date,
            is_active=self.is_active,
        )
        if planned_id is not None:
            fields["id"] = planned_id
        return PlannedTransaction(**fields)


class ProcessIn(BaseModel):
    next_due_date: date
    effective_date: Optional[date] = None
