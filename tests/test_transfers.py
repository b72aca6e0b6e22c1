from datetime import date

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, create_ledger_engine
from entities import AccountType, Transaction, TransactionType
from errors import AccountArchived, InvalidAmount, InvalidTransfer, NotFound
from ledger import Ledger
from repository import SqlAlchemyRepository


def make_ledger() -> Ledger:
    engine = create_ledger_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return Ledger.load("home", SqlAlchemyRepository(factory))


def total(ledger: Ledger) -> int:
    return sum(a.balance_cents for a in ledger.accounts())


def test_transfer_moves_money_and_conserves_total():
    ledger = make_ledger()
    checking = ledger.open_account("Checking", AccountType.checking, opening_balance_cents=95000)
    savings = ledger.open_account("Savings", AccountType.savings)
    before = total(ledger)

    withdrawal_id, deposit_id = ledger.create_transfer(
        checking.id, savings.id, 20000, date(2025, 2, 1), "rainy day"
    )

    assert ledger.account_balance(checking.id) == 75000
    assert ledger.account_balance(savings.id) == 20000
    assert total(ledger) == before

    withdrawal = ledger.transaction(withdrawal_id)
    deposit = ledger.transaction(deposit_id)
    assert withdrawal.transfer_id == deposit.transfer_id
    assert withdrawal.type == TransactionType.expense
    assert deposit.type == TransactionType.income
    assert withdrawal.is_transfer and deposit.is_transfer


def test_transfer_never_touches_spent():
    ledger = make_ledger()
    checking = ledger.open_account("Checking", AccountType.checking, opening_balance_cents=10000)
    savings = ledger.open_account("Savings", AccountType.savings)
    group = ledger.add_category_group("Everyday")
    groceries = ledger.add_category(group.id, "Groceries")

    ledger.add_transaction(
        Transaction(
            date=date(2025, 2, 1),
            payee="Move",
            type=TransactionType.expense,
            amount_cents=3000,
            account_id=checking.id,
            to_account_id=savings.id,
            category_id=groceries.id,
        )
    )

    assert ledger.category(groceries.id).spent_cents == 0
    assert ledger.account_balance(checking.id) == 7000
    assert ledger.account_balance(savings.id) == 3000


def test_single_record_transfer_shows_in_both_registers():
    ledger = make_ledger()
    checking = ledger.open_account("Checking", AccountType.checking, opening_balance_cents=10000)
    savings = ledger.open_account("Savings", AccountType.savings)
    tx = ledger.record(
        on=date(2025, 2, 1),
        payee="Move",
        type=TransactionType.expense,
        amount_cents=1000,
        account_id=checking.id,
        to_account_id=savings.id,
    )
    assert tx in ledger.transactions_for_account(savings.id)
    assert tx in ledger.transactions_for_account(checking.id)


def test_invalid_transfers_are_rejected():
    ledger = make_ledger()
    checking = ledger.open_account("Checking", AccountType.checking, opening_balance_cents=10000)
    savings = ledger.open_account("Savings", AccountType.savings)
    before = ledger.snapshot

    with pytest.raises(InvalidTransfer):
        ledger.create_transfer(checking.id, checking.id, 100, date(2025, 2, 1))
    with pytest.raises(InvalidAmount):
        ledger.create_transfer(checking.id, savings.id, 0, date(2025, 2, 1))
    with pytest.raises(NotFound):
        ledger.create_transfer(checking.id, "nowhere", 100, date(2025, 2, 1))

    ledger.archive_account(savings.id)
    archived = ledger.snapshot
    with pytest.raises(AccountArchived):
        ledger.create_transfer(checking.id, savings.id, 100, date(2025, 2, 1))

    assert ledger.snapshot is archived
    assert before.accounts[checking.id].balance_cents == 10000
    assert ledger.account_balance(checking.id) == 10000


def test_deleting_one_leg_removes_both():
    ledger = make_ledger()
    checking = ledger.open_account("Checking", AccountType.checking, opening_balance_cents=10000)
    savings = ledger.open_account("Savings", AccountType.savings)
    withdrawal_id, deposit_id = ledger.create_transfer(
        checking.id, savings.id, 4000, date(2025, 2, 1)
    )

    removed = ledger.delete_transaction(deposit_id)

    assert sorted(removed) == sorted([withdrawal_id, deposit_id])
    assert ledger.account_balance(checking.id) == 10000
    assert ledger.account_balance(savings.id) == 0
