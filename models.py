from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from entities import AccountCategory, AccountType, PlannedMode, TransactionType
from recurrence import IntervalUnit


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class AccountRow(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    category: Mapped[AccountCategory] = mapped_column(
        SAEnum(AccountCategory), nullable=False, default=AccountCategory.personal
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cleared_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    last_reconciled_at: Mapped[Optional[date]] = mapped_column(Date)
    last_reconciled_cents: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (Index("ix_accounts_budget", "budget_id"),)


class CategoryGroupRow(Base, TimestampMixin):
    __tablename__ = "category_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16))
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    categories: Mapped[list["CategoryRow"]] = relationship(
        "CategoryRow", back_populates="group", order_by="CategoryRow.position"
    )

    __table_args__ = (Index("ix_category_groups_budget", "budget_id", "position"),)


class CategoryRow(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    group_id: Mapped[str] = mapped_column(
        ForeignKey("category_groups.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16))
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    allocated_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # target_type is one of: monthly, weekly, by_date, custom, no_date
    target_type: Mapped[Optional[str]] = mapped_column(String(20))
    target_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    target_due: Mapped[Optional[date]] = mapped_column(Date)
    # interval_type is one of: days, months, years, monthly_on_day
    target_interval_type: Mapped[Optional[str]] = mapped_column(String(20))
    target_interval_value: Mapped[Optional[int]] = mapped_column(Integer)

    group: Mapped["CategoryGroupRow"] = relationship(
        "CategoryGroupRow", back_populates="categories"
    )

    __table_args__ = (
        Index("ix_categories_budget_group", "budget_id", "group_id", "position"),
        CheckConstraint(
            "target_amount_cents IS NULL OR target_amount_cents >= 0",
            name="ck_category_target_amount_positive",
        ),
    )


class TransactionRow(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    payee: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    to_account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("categories.id"))
    note: Mapped[Optional[str]] = mapped_column(Text)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(36))
    planned_id: Mapped[Optional[str]] = mapped_column(String(36))
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        UniqueConstraint(
            "budget_id",
            "planned_id",
            "occurrence_date",
            name="uq_txn_planned_occurrence",
        ),
        Index("ix_transactions_budget_date", "budget_id", "date"),
        Index("ix_transactions_budget_account_date", "budget_id", "account_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class PlannedTransactionRow(Base, TimestampMixin):
    __tablename__ = "planned_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("categories.id"))
    note: Mapped[Optional[str]] = mapped_column(Text)
    mode: Mapped[PlannedMode] = mapped_column(
        SAEnum(PlannedMode), nullable=False, default=PlannedMode.automatic
    )
    # recurrence_type is one of: daily, weekly, monthly, custom
    recurrence_type: Mapped[str] = mapped_column(String(20), nullable=False)
    recurrence_interval: Mapped[Optional[int]] = mapped_column(Integer)
    recurrence_period: Mapped[Optional[IntervalUnit]] = mapped_column(
        SAEnum(IntervalUnit)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_processed_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint(
            "recurrence_interval IS NULL OR recurrence_interval > 0",
            name="ck_planned_interval_positive",
        ),
        CheckConstraint("amount_cents > 0", name="ck_planned_amount_positive"),
        Index("ix_planned_budget_due", "budget_id", "is_active", "next_due_date"),
    )
