"""Persistence boundary for the ledger.

The ledger only knows the abstract ``Repository``. ``SqlAlchemyRepository``
is the shipped implementation; the string-keyed encodings of targets and
recurrences exist only in the row mapping below.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from database import SessionLocal, session_scope
from entities import (
    Account,
    Category,
    CategoryGroup,
    EntityKind,
    PlannedTransaction,
    Transaction,
)
from errors import DuplicateApplication, PersistenceFailure
from models import (
    AccountRow,
    CategoryGroupRow,
    CategoryRow,
    PlannedTransactionRow,
    TransactionRow,
)
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

logger = logging.getLogger(__name__)

Entity = Union[Account, CategoryGroup, Category, Transaction, PlannedTransaction]

# Parents before children when writing, children before parents when deleting.
_WRITE_ORDER = [
    EntityKind.account,
    EntityKind.category_group,
    EntityKind.category,
    EntityKind.planned_transaction,
    EntityKind.transaction,
]

_ROW_TYPES = {
    EntityKind.account: AccountRow,
    EntityKind.category_group: CategoryGroupRow,
    EntityKind.category: CategoryRow,
    EntityKind.transaction: TransactionRow,
    EntityKind.planned_transaction: PlannedTransactionRow,
}


@dataclass
class ChangeSet:
    """Entities to upsert and (kind, id) pairs to remove, applied as one unit."""

    saved: list[Entity] = field(default_factory=list)
    deleted: list[tuple[EntityKind, str]] = field(default_factory=list)

    def save(self, entity: Entity) -> None:
        key = (entity.kind, entity.id)
        self.saved = [e for e in self.saved if (e.kind, e.id) != key]
        self.deleted = [d for d in self.deleted if d != key]
        self.saved.append(entity)

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        self.saved = [e for e in self.saved if (e.kind, e.id) != (kind, entity_id)]
        if (kind, entity_id) not in self.deleted:
            self.deleted.append((kind, entity_id))

    def is_empty(self) -> bool:
        return not self.saved and not self.deleted


class Repository(ABC):
    @abstractmethod
    def load_accounts(self, budget_id: str) -> list[Account]: ...

    @abstractmethod
    def load_category_groups(self, budget_id: str) -> list[CategoryGroup]: ...

    @abstractmethod
    def load_transactions(self, budget_id: str) -> list[Transaction]: ...

    @abstractmethod
    def load_planned_transactions(self, budget_id: str) -> list[PlannedTransaction]: ...

    @abstractmethod
    def commit(self, budget_id: str, changes: ChangeSet) -> None:
        """Apply every change or none. Raises ``PersistenceFailure``."""

    def save(self, budget_id: str, entity: Entity) -> None:
        self.commit(budget_id, ChangeSet(saved=[entity]))

    def delete(self, budget_id: str, kind: EntityKind, entity_id: str) -> None:
        self.commit(budget_id, ChangeSet(deleted=[(kind, entity_id)]))


class SqlAlchemyRepository(Repository):
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def load_accounts(self, budget_id: str) -> list[Account]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.budget_id == budget_id)
            .order_by(AccountRow.name)
        )
        return self._load(stmt, _account_from_row)

    def load_category_groups(self, budget_id: str) -> list[CategoryGroup]:
        stmt = (
            select(CategoryGroupRow)
            .options(selectinload(CategoryGroupRow.categories))
            .where(CategoryGroupRow.budget_id == budget_id)
            .order_by(CategoryGroupRow.position, CategoryGroupRow.name)
        )
        return self._load(stmt, _group_from_row)

    def load_transactions(self, budget_id: str) -> list[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.budget_id == budget_id)
            .order_by(TransactionRow.date, TransactionRow.created_at)
        )
        return self._load(stmt, _transaction_from_row)

    def load_planned_transactions(self, budget_id: str) -> list[PlannedTransaction]:
        stmt = (
            select(PlannedTransactionRow)
            .where(PlannedTransactionRow.budget_id == budget_id)
            .order_by(PlannedTransactionRow.next_due_date)
        )
        return self._load(stmt, _planned_from_row)

    def commit(self, budget_id: str, changes: ChangeSet) -> None:
        if changes.is_empty():
            return
        saved = sorted(changes.saved, key=lambda e: _WRITE_ORDER.index(e.kind))
        deleted = sorted(
            changes.deleted, key=lambda d: _WRITE_ORDER.index(d[0]), reverse=True
        )
        try:
            with session_scope(self.session_factory) as session:
                for kind, entity_id in deleted:
                    row_type = _ROW_TYPES[kind]
                    session.execute(
                        delete(row_type).where(
                            row_type.id == entity_id, row_type.budget_id == budget_id
                        )
                    )
                for entity in saved:
                    session.merge(_to_row(budget_id, entity))
                    session.flush()
        except IntegrityError as exc:
            message = str(exc.orig)
            if "planned_id" in message or "uq_txn_planned_occurrence" in message:
                raise DuplicateApplication(
                    "Planned occurrence was already recorded"
                ) from exc
            raise PersistenceFailure("Store rejected the change set", exc) from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Could not write change set", exc) from exc
        logger.debug(
            f"repository_commit: budget={budget_id} "
            f"saved={len(saved)} deleted={len(deleted)}"
        )

    def _load(self, stmt, from_row) -> list:
        try:
            with session_scope(self.session_factory) as session:
                items = [from_row(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Could not load from store", exc) from exc
        return [item for item in items if item is not None]


def _to_row(budget_id: str, entity: Entity):
    if isinstance(entity, Account):
        return AccountRow(
            id=entity.id,
            budget_id=budget_id,
            name=entity.name,
            type=entity.type,
            category=entity.category,
            balance_cents=entity.balance_cents,
            cleared_balance_cents=entity.cleared_balance_cents,
            is_archived=entity.is_archived,
            notes=entity.notes,
            last_reconciled_at=entity.last_reconciled_at,
            last_reconciled_cents=entity.last_reconciled_cents,
            created_at=entity.created_at,
        )
    if isinstance(entity, CategoryGroup):
        return CategoryGroupRow(
            id=entity.id,
            budget_id=budget_id,
            name=entity.name,
            emoji=entity.emoji,
            position=entity.position,
        )
    if isinstance(entity, Category):
        return CategoryRow(
            id=entity.id,
            budget_id=budget_id,
            group_id=entity.group_id,
            name=entity.name,
            emoji=entity.emoji,
            position=entity.position,
            allocated_cents=entity.allocated_cents,
            spent_cents=entity.spent_cents,
            **_target_columns(entity.target),
        )
    if isinstance(entity, Transaction):
        return TransactionRow(
            id=entity.id,
            budget_id=budget_id,
            date=entity.date,
            payee=entity.payee,
            type=entity.type,
            amount_cents=entity.amount_cents,
            account_id=entity.account_id,
            to_account_id=entity.to_account_id,
            category_id=entity.category_id,
            note=entity.note,
            transfer_id=entity.transfer_id,
            planned_id=entity.planned_id,
            occurrence_date=entity.occurrence_date,
        )
    return PlannedTransactionRow(
        id=entity.id,
        budget_id=budget_id,
        title=entity.title,
        type=entity.type,
        amount_cents=entity.amount_cents,
        account_id=entity.account_id,
        category_id=entity.category_id,
        note=entity.note,
        mode=entity.mode,
        is_active=entity.is_active,
        next_due_date=entity.next_due_date,
        last_processed_date=entity.last_processed_date,
        **_recurrence_columns(entity.recurrence),
    )


def _account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        type=row.type,
        category=row.category,
        balance_cents=row.balance_cents,
        cleared_balance_cents=row.cleared_balance_cents,
        is_archived=row.is_archived,
        notes=row.notes,
        last_reconciled_at=row.last_reconciled_at,
        last_reconciled_cents=row.last_reconciled_cents,
        created_at=row.created_at,
    )


def _group_from_row(row: CategoryGroupRow) -> CategoryGroup:
    categories = tuple(
        Category(
            id=cat.id,
            group_id=row.id,
            name=cat.name,
            emoji=cat.emoji,
            position=cat.position,
            allocated_cents=cat.allocated_cents,
            spent_cents=cat.spent_cents,
            target=_target_from_row(cat),
        )
        for cat in row.categories
    )
    return CategoryGroup(
        id=row.id,
        name=row.name,
        emoji=row.emoji,
        position=row.position,
        categories=categories,
    )


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        date=row.date,
        payee=row.payee,
        type=row.type,
        amount_cents=row.amount_cents,
        account_id=row.account_id,
        to_account_id=row.to_account_id,
        category_id=row.category_id,
        note=row.note,
        transfer_id=row.transfer_id,
        planned_id=row.planned_id,
        occurrence_date=row.occurrence_date,
    )


def _planned_from_row(row: PlannedTransactionRow) -> Optional[PlannedTransaction]:
    try:
        recurrence = _recurrence_from_row(row)
    except ValueError as exc:
        logger.warning(f"planned_row_skipped: id={row.id} error={exc}")
        return None
    return PlannedTransaction(
        id=row.id,
        title=row.title,
        type=row.type,
        amount_cents=row.amount_cents,
        account_id=row.account_id,
        category_id=row.category_id,
        note=row.note,
        mode=row.mode,
        recurrence=recurrence,
        is_active=row.is_active,
        next_due_date=row.next_due_date,
        last_processed_date=row.last_processed_date,
    )


def _target_columns(target: Optional[Target]) -> dict[str, object]:
    columns: dict[str, object] = {
        "target_type": None,
        "target_amount_cents": None,
        "target_due": None,
        "target_interval_type": None,
        "target_interval_value": None,
    }
    if target is None:
        return columns
    columns["target_amount_cents"] = target.amount_cents
    if isinstance(target, MonthlyTarget):
        columns["target_type"] = "monthly"
    elif isinstance(target, WeeklyTarget):
        columns["target_type"] = "weekly"
    elif isinstance(target, ByDateTarget):
        columns["target_type"] = "by_date"
        columns["target_due"] = target.due
    elif isinstance(target, NoDateTarget):
        columns["target_type"] = "no_date"
    else:
        columns["target_type"] = "custom"
        interval = target.interval
        if isinstance(interval, EveryDays):
            columns["target_interval_type"] = "days"
            columns["target_interval_value"] = interval.count
        elif isinstance(interval, EveryMonths):
            columns["target_interval_type"] = "months"
            columns["target_interval_value"] = interval.count
        elif isinstance(interval, EveryYears):
            columns["target_interval_type"] = "years"
            columns["target_interval_value"] = interval.count
        else:
            columns["target_interval_type"] = "monthly_on_day"
            columns["target_interval_value"] = interval.day
    return columns


def _target_from_row(row: CategoryRow) -> Optional[Target]:
    if row.target_type is None:
        return None
    amount = row.target_amount_cents or 0
    try:
        if row.target_type == "monthly":
            return MonthlyTarget(amount)
        if row.target_type == "weekly":
            return WeeklyTarget(amount)
        if row.target_type == "no_date":
            return NoDateTarget(amount)
        if row.target_type == "by_date" and row.target_due is not None:
            return ByDateTarget(amount, row.target_due)
        if row.target_type == "custom":
            value = row.target_interval_value
            interval_types = {
                "days": EveryDays,
                "months": EveryMonths,
                "years": EveryYears,
                "monthly_on_day": MonthlyOnDay,
            }
            interval_type = interval_types.get(row.target_interval_type or "")
            if interval_type is not None:
                return CustomTarget(amount, interval_type(value))
    except ValueError as exc:
        logger.warning(f"target_row_ignored: category={row.id} error={exc}")
        return None
    logger.warning(f"target_row_ignored: category={row.id} type={row.target_type}")
    return None


def _recurrence_columns(recurrence: Recurrence) -> dict[str, object]:
    columns: dict[str, object] = {
        "recurrence_interval": None,
        "recurrence_period": None,
    }
    if isinstance(recurrence, Daily):
        columns["recurrence_type"] = "daily"
    elif isinstance(recurrence, Weekly):
        columns["recurrence_type"] = "weekly"
    elif isinstance(recurrence, Monthly):
        columns["recurrence_type"] = "monthly"
    else:
        columns["recurrence_type"] = "custom"
        columns["recurrence_interval"] = recurrence.interval
        columns["recurrence_period"] = recurrence.period
    return columns


def _recurrence_from_row(row: PlannedTransactionRow) -> Recurrence:
    if row.recurrence_type == "daily":
        return Daily()
    if row.recurrence_type == "weekly":
        return Weekly()
    if row.recurrence_type == "monthly":
        return Monthly()
    if row.recurrence_type == "custom":
        return Custom(
            interval=row.recurrence_interval or 0,
            period=row.recurrence_period or IntervalUnit.day,
        )
    raise ValueError(f"Invalid recurrence type: {row.recurrence_type}")
