from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from database import Base, create_ledger_engine
from entities import (
    Account,
    AccountType,
    Category,
    CategoryGroup,
    EntityKind,
    PlannedMode,
    PlannedTransaction,
    Transaction,
    TransactionType,
)
from errors import DuplicateApplication, PersistenceFailure
from models import CategoryRow, PlannedTransactionRow
from recurrence import Custom, EveryYears, IntervalUnit
from repository import ChangeSet, SqlAlchemyRepository
from targets import ByDateTarget, CustomTarget


def make_repository():
    engine = create_ledger_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SqlAlchemyRepository(factory), engine


def test_change_set_keeps_last_write_per_entity():
    changes = ChangeSet()
    account = Account(name="Cash", type=AccountType.cash)
    changes.save(account)
    changes.save(Account(name="Wallet", type=AccountType.cash, id=account.id))
    assert [a.name for a in changes.saved] == ["Wallet"]

    changes.delete(EntityKind.account, account.id)
    assert changes.saved == []
    assert changes.deleted == [(EntityKind.account, account.id)]
    assert not changes.is_empty()


def test_commit_round_trips_every_entity_kind():
    repo, _ = make_repository()
    account = Account(name="Checking", type=AccountType.checking, balance_cents=1000)
    group = CategoryGroup(name="Goals")
    trip = Category(
        group_id=group.id,
        name="Trip",
        target=ByDateTarget(50000, date(2025, 8, 1)),
    )
    insurance = Category(
        group_id=group.id,
        name="Insurance",
        position=1,
        target=CustomTarget(60000, EveryYears(1)),
    )
    tx = Transaction(
        date=date(2025, 1, 3),
        payee="Travel agent",
        type=TransactionType.expense,
        amount_cents=2000,
        account_id=account.id,
        category_id=trip.id,
    )
    plan = PlannedTransaction(
        title="Savings",
        type=TransactionType.expense,
        amount_cents=5000,
        account_id=account.id,
        category_id=trip.id,
        recurrence=Custom(2, IntervalUnit.month),
        next_due_date=date(2025, 2, 1),
        mode=PlannedMode.manual,
    )
    repo.commit(
        "home",
        ChangeSet(saved=[tx, plan, insurance, trip, group, account]),
    )

    assert repo.load_accounts("home") == [account]
    groups = repo.load_category_groups("home")
    assert [c.name for c in groups[0].categories] == ["Trip", "Insurance"]
    assert groups[0].categories[0].target == ByDateTarget(50000, date(2025, 8, 1))
    assert groups[0].categories[1].target == CustomTarget(60000, EveryYears(1))
    assert repo.load_transactions("home") == [tx]
    assert repo.load_planned_transactions("home") == [plan]
    assert repo.load_accounts("elsewhere") == []


def test_duplicate_occurrence_is_rejected_by_the_store():
    repo, _ = make_repository()
    account = Account(name="Checking", type=AccountType.checking)
    repo.save("home", account)

    def occurrence():
        return Transaction(
            date=date(2025, 1, 1),
            payee="Salary",
            type=TransactionType.income,
            amount_cents=100,
            account_id=account.id,
            planned_id="plan-1",
            occurrence_date=date(2025, 1, 1),
        )

    repo.save("home", occurrence())
    with pytest.raises(DuplicateApplication):
        repo.save("home", occurrence())
    assert len(repo.load_transactions("home")) == 1


def test_store_errors_become_persistence_failures():
    repo, engine = make_repository()
    Base.metadata.drop_all(engine)
    with pytest.raises(PersistenceFailure) as excinfo:
        repo.load_accounts("home")
    assert isinstance(excinfo.value.cause, OperationalError)
    with pytest.raises(PersistenceFailure):
        repo.save("home", Account(name="Cash", type=AccountType.cash))


def test_unreadable_rows_are_skipped():
    repo, engine = make_repository()
    account = Account(name="Checking", type=AccountType.checking)
    group = CategoryGroup(name="Misc")
    category = Category(group_id=group.id, name="Odd")
    repo.commit("home", ChangeSet(saved=[account, group, category]))

    with Session(engine) as session:
        session.add(
            PlannedTransactionRow(
                id="broken",
                budget_id="home",
                title="Broken",
                type=TransactionType.expense,
                amount_cents=100,
                account_id=account.id,
                recurrence_type="hourly",
                next_due_date=date(2025, 1, 1),
            )
        )
        row = session.scalars(select(CategoryRow)).one()
        row.target_type = "mystery"
        session.commit()

    assert repo.load_planned_transactions("home") == []
    assert repo.load_category_groups("home")[0].categories[0].target is None
