"""Budget ledger: the one place account and category balances change.

A ``Ledger`` is bound to a single budget id. Readers get the last
published ``LedgerSnapshot`` without locking. Every mutation runs under
the ledger lock on a copy-on-write ``Draft``; the draft's change set is
committed through the repository and the new snapshot is published only
once the commit succeeded. A failed commit leaves the published state
untouched.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterator, Mapping, Optional

from config import get_settings
from entities import (
    Account,
    AccountCategory,
    AccountType,
    Category,
    CategoryGroup,
    EntityKind,
    PlannedTransaction,
    Transaction,
    TransactionType,
    new_id,
)
from errors import (
    AccountArchived,
    DuplicateApplication,
    InvalidAmount,
    InvalidInterval,
    InvalidTransfer,
    NotFound,
    PersistenceFailure,
)
from money import require_cents, require_positive
from periods import ALL_TIME, Period, month_period
from repository import ChangeSet, Repository
from targets import (
    ByDateTarget,
    CustomTarget,
    MonthlyTarget,
    NoDateTarget,
    Target,
    TargetProgress,
    WeeklyTarget,
    progress,
)

logger = logging.getLogger(__name__)

TRANSFER_PAYEE = "Transfer"
STARTING_BALANCE_PAYEE = "Starting Balance"


def balance_effects(tx: Transaction) -> dict[str, int]:
    """Signed balance change per account id caused by ``tx``.

    A single-record transfer moves its counterpart by the opposite amount.
    Each leg of a paired transfer only moves its own account.
    """
    effects = {tx.account_id: tx.signed_cents}
    if tx.to_account_id is not None and tx.transfer_id is None:
        effects[tx.to_account_id] = -tx.signed_cents
    return effects


def charges_category(tx: Transaction) -> bool:
    return tx.category_id is not None and not tx.is_income and not tx.is_transfer


def budgetable_balance(accounts: Mapping[str, Account]) -> int:
    total = 0
    for account in accounts.values():
        if account.is_archived:
            continue
        if account.type == AccountType.credit_card:
            total += max(0, account.balance_cents)
        else:
            total += account.balance_cents
    return total


def allocated_total(groups: Mapping[str, CategoryGroup]) -> int:
    return sum(
        category.allocated_cents
        for group in groups.values()
        for category in group.categories
    )


@dataclass(frozen=True)
class LedgerSnapshot:
    """Consistent, read-only view of one budget. Treat the mappings as frozen."""

    accounts: Mapping[str, Account] = field(default_factory=dict)
    groups: Mapping[str, CategoryGroup] = field(default_factory=dict)
    category_groups: Mapping[str, str] = field(default_factory=dict)
    transactions: Mapping[str, Transaction] = field(default_factory=dict)
    planned: Mapping[str, PlannedTransaction] = field(default_factory=dict)
    occurrences: Mapping[tuple[str, date], str] = field(default_factory=dict)

    def category(self, category_id: str) -> Optional[Category]:
        group_id = self.category_groups.get(category_id)
        if group_id is None:
            return None
        for category in self.groups[group_id].categories:
            if category.id == category_id:
                return category
        return None


class Draft:
    """Mutable working copy of a snapshot that records what it changes."""

    def __init__(self, snapshot: LedgerSnapshot) -> None:
        self.accounts = dict(snapshot.accounts)
        self.groups = dict(snapshot.groups)
        self.category_groups = dict(snapshot.category_groups)
        self.transactions = dict(snapshot.transactions)
        self.planned = dict(snapshot.planned)
        self.occurrences = dict(snapshot.occurrences)
        self.changes = ChangeSet()

    def account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFound("account", account_id)
        return account

    def open_account(self, account_id: str) -> Account:
        account = self.account(account_id)
        if account.is_archived:
            raise AccountArchived(account_id)
        return account

    def group(self, group_id: str) -> CategoryGroup:
        group = self.groups.get(group_id)
        if group is None:
            raise NotFound("category group", group_id)
        return group

    def category(self, category_id: str) -> Category:
        group_id = self.category_groups.get(category_id)
        if group_id is not None:
            for category in self.groups[group_id].categories:
                if category.id == category_id:
                    return category
        raise NotFound("category", category_id)

    def transaction(self, transaction_id: str) -> Transaction:
        tx = self.transactions.get(transaction_id)
        if tx is None:
            raise NotFound("transaction", transaction_id)
        return tx

    def planned_transaction(self, planned_id: str) -> PlannedTransaction:
        planned = self.planned.get(planned_id)
        if planned is None:
            raise NotFound("planned transaction", planned_id)
        return planned

    def put_account(self, account: Account) -> None:
        self.accounts[account.id] = account
        self.changes.save(account)

    def put_group(self, group: CategoryGroup) -> None:
        self.groups[group.id] = group
        self.changes.save(group)

    def put_category(self, category: Category) -> None:
        group = self.group(category.group_id)
        if category.id in self.category_groups:
            categories = tuple(
                category if existing.id == category.id else existing
                for existing in group.categories
            )
        else:
            categories = group.categories + (category,)
        self.groups[group.id] = replace(group, categories=categories)
        self.category_groups[category.id] = group.id
        self.changes.save(category)

    def put_transaction(self, tx: Transaction) -> None:
        self.transactions[tx.id] = tx
        if tx.idempotency_key is not None:
            self.occurrences[tx.idempotency_key] = tx.id
        self.changes.save(tx)

    def put_planned(self, planned: PlannedTransaction) -> None:
        self.planned[planned.id] = planned
        self.changes.save(planned)

    def remove_transaction(self, tx: Transaction) -> None:
        del self.transactions[tx.id]
        if tx.idempotency_key is not None:
            self.occurrences.pop(tx.idempotency_key, None)
        self.changes.delete(EntityKind.transaction, tx.id)

    def remove_planned(self, planned_id: str) -> None:
        del self.planned[planned_id]
        self.changes.delete(EntityKind.planned_transaction, planned_id)

    def remove_account(self, account_id: str) -> None:
        del self.accounts[account_id]
        self.changes.delete(EntityKind.account, account_id)

    def freeze(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            accounts=self.accounts,
            groups=self.groups,
            category_groups=self.category_groups,
            transactions=self.transactions,
            planned=self.planned,
            occurrences=self.occurrences,
        )


class Ledger:
    def __init__(
        self,
        budget_id: str,
        repository: Repository,
        *,
        snapshot: Optional[LedgerSnapshot] = None,
        week_start: Optional[int] = None,
    ) -> None:
        self.budget_id = budget_id
        self.repository = repository
        self.week_start = get_settings().week_start if week_start is None else week_start
        self._snapshot = snapshot or LedgerSnapshot()
        self._lock = threading.RLock()

    @classmethod
    def load(cls, budget_id: str, repository: Repository, **kwargs) -> "Ledger":
        draft = Draft(LedgerSnapshot())
        for account in repository.load_accounts(budget_id):
            draft.accounts[account.id] = account
        for group in repository.load_category_groups(budget_id):
            draft.groups[group.id] = group
            for category in group.categories:
                draft.category_groups[category.id] = group.id
        for tx in repository.load_transactions(budget_id):
            draft.transactions[tx.id] = tx
            if tx.idempotency_key is not None:
                draft.occurrences[tx.idempotency_key] = tx.id
        for planned in repository.load_planned_transactions(budget_id):
            draft.planned[planned.id] = planned
        ledger = cls(budget_id, repository, snapshot=draft.freeze(), **kwargs)
        logger.info(
            f"ledger_loaded: budget={budget_id} accounts={len(draft.accounts)} "
            f"transactions={len(draft.transactions)} planned={len(draft.planned)}"
        )
        return ledger

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot

    @contextmanager
    def mutation(self) -> Iterator[Draft]:
        """Serialize a change: yield a draft, commit it, then publish it.

        Any exception raised inside the block, or by the commit, discards
        the draft.
        """
        with self._lock:
            draft = Draft(self._snapshot)
            yield draft
            if draft.changes.is_empty():
                return
            try:
                self.repository.commit(self.budget_id, draft.changes)
            except PersistenceFailure as exc:
                logger.warning(
                    f"ledger_rollback: budget={self.budget_id} "
                    f"saved={len(draft.changes.saved)} error={exc}"
                )
                raise
            self._snapshot = draft.freeze()

    # Transactions

    def stage_transaction(self, draft: Draft, tx: Transaction) -> None:
        """Validate ``tx`` and apply it to ``draft``. Nothing is committed here."""
        if tx.id in draft.transactions:
            raise DuplicateApplication(f"Transaction already recorded: {tx.id}")
        key = tx.idempotency_key
        if key is not None and key in draft.occurrences:
            raise DuplicateApplication(
                f"Planned transaction {key[0]} already recorded for {key[1]}"
            )
        draft.open_account(tx.account_id)
        if tx.to_account_id is not None:
            if tx.to_account_id == tx.account_id:
                raise InvalidTransfer("Cannot transfer to the same account")
            draft.open_account(tx.to_account_id)
        if tx.category_id is not None:
            draft.category(tx.category_id)
        elif not tx.is_income and not tx.is_transfer:
            raise NotFound("category", None)

        self._apply_effects(draft, tx, 1)
        draft.put_transaction(tx)

    def _unstage_transaction(self, draft: Draft, tx: Transaction) -> None:
        self._apply_effects(draft, tx, -1)
        draft.remove_transaction(tx)

    def _apply_effects(self, draft: Draft, tx: Transaction, sign: int) -> None:
        for account_id, delta in balance_effects(tx).items():
            account = draft.accounts.get(account_id)
            if account is None:
                continue
            draft.put_account(
                replace(
                    account,
                    balance_cents=account.balance_cents + sign * delta,
                    cleared_balance_cents=account.cleared_balance_cents + sign * delta,
                )
            )
        if charges_category(tx):
            category = draft.category(tx.category_id)
            draft.put_category(
                replace(category, spent_cents=category.spent_cents + sign * tx.amount_cents)
            )

    def add_transaction(self, tx: Transaction) -> Transaction:
        with self.mutation() as draft:
            self.stage_transaction(draft, tx)
        logger.info(
            f"transaction_added: budget={self.budget_id} id={tx.id} "
            f"type={tx.type.value} amount_cents={tx.amount_cents} account={tx.account_id}"
        )
        return tx

    def record(
        self,
        *,
        on: date,
        payee: str,
        type: TransactionType,
        amount_cents: int,
        account_id: str,
        category_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Transaction:
        return self.add_transaction(
            Transaction(
                date=on,
                payee=payee,
                type=type,
                amount_cents=amount_cents,
                account_id=account_id,
                category_id=category_id,
                to_account_id=to_account_id,
                note=note,
            )
        )

    def create_transfer(
        self,
        from_id: str,
        to_id: str,
        amount_cents: int,
        on: date,
        note: Optional[str] = None,
    ) -> tuple[str, str]:
        require_positive(amount_cents)
        if from_id == to_id:
            raise InvalidTransfer("Cannot transfer to the same account")
        transfer_id = new_id()
        withdrawal = Transaction(
            date=on,
            payee=TRANSFER_PAYEE,
            type=TransactionType.expense,
            amount_cents=amount_cents,
            account_id=from_id,
            to_account_id=to_id,
            note=note,
            transfer_id=transfer_id,
        )
        deposit = Transaction(
            date=on,
            payee=TRANSFER_PAYEE,
            type=TransactionType.income,
            amount_cents=amount_cents,
            account_id=to_id,
            to_account_id=from_id,
            note=note,
            transfer_id=transfer_id,
        )
        with self.mutation() as draft:
            self.stage_transaction(draft, withdrawal)
            self.stage_transaction(draft, deposit)
        logger.info(
            f"transfer_created: budget={self.budget_id} from={from_id} to={to_id} "
            f"amount_cents={amount_cents} transfer={transfer_id}"
        )
        return withdrawal.id, deposit.id

    def delete_transaction(self, transaction_id: str) -> list[str]:
        """Reverse and remove a transaction; both legs go for a paired transfer."""
        with self.mutation() as draft:
            tx = draft.transaction(transaction_id)
            legs = [tx]
            if tx.transfer_id is not None:
                legs += [
                    other
                    for other in draft.transactions.values()
                    if other.transfer_id == tx.transfer_id and other.id != tx.id
                ]
            for leg in legs:
                for account_id in balance_effects(leg):
                    draft.open_account(account_id)
            for leg in legs:
                self._unstage_transaction(draft, leg)
        removed = [leg.id for leg in legs]
        logger.info(f"transaction_deleted: budget={self.budget_id} ids={removed}")
        return removed

    # Envelopes

    def allocate(self, category_id: str, amount_cents: int) -> Category:
        require_positive(amount_cents)
        with self.mutation() as draft:
            category = draft.category(category_id)
            updated = replace(
                category, allocated_cents=category.allocated_cents + amount_cents
            )
            draft.put_category(updated)
            remaining = budgetable_balance(draft.accounts) - allocated_total(draft.groups)
        if remaining < 0:
            logger.warning(
                f"allocation_exceeds_funds: budget={self.budget_id} "
                f"category={category_id} available_to_budget={remaining}"
            )
        return updated

    def deallocate(self, category_id: str, amount_cents: int) -> Category:
        require_positive(amount_cents)
        with self.mutation() as draft:
            category = draft.category(category_id)
            if amount_cents > category.allocated_cents:
                raise InvalidAmount(
                    f"Cannot release {amount_cents}, only "
                    f"{category.allocated_cents} allocated"
                )
            updated = replace(
                category, allocated_cents=category.allocated_cents - amount_cents
            )
            draft.put_category(updated)
        return updated

    def set_target(self, category_id: str, target: Optional[Target]) -> Category:
        if target is not None and not isinstance(
            target, (MonthlyTarget, WeeklyTarget, ByDateTarget, CustomTarget, NoDateTarget)
        ):
            raise InvalidInterval(f"Unsupported target: {target!r}")
        with self.mutation() as draft:
            updated = replace(draft.category(category_id), target=target)
            draft.put_category(updated)
        logger.info(
            f"target_set: budget={self.budget_id} category={category_id} "
            f"target={type(target).__name__ if target else None}"
        )
        return updated

    def clear_target(self, category_id: str) -> Category:
        return self.set_target(category_id, None)

    def add_category_group(self, name: str, emoji: Optional[str] = None) -> CategoryGroup:
        with self.mutation() as draft:
            group = CategoryGroup(name=name.strip(), emoji=emoji, position=len(draft.groups))
            draft.put_group(group)
        return group

    def add_category(
        self,
        group_id: str,
        name: str,
        emoji: Optional[str] = None,
        target: Optional[Target] = None,
    ) -> Category:
        with self.mutation() as draft:
            group = draft.group(group_id)
            category = Category(
                group_id=group_id,
                name=name.strip(),
                emoji=emoji,
                target=target,
                position=len(group.categories),
            )
            draft.put_category(category)
        return category

    # Accounts

    def open_account(
        self,
        name: str,
        account_type: AccountType,
        category: AccountCategory = AccountCategory.personal,
        *,
        notes: Optional[str] = None,
        opening_balance_cents: int = 0,
        opened_on: Optional[date] = None,
    ) -> Account:
        require_cents(opening_balance_cents)
        account = Account(name=name.strip(), type=account_type, category=category, notes=notes)
        with self.mutation() as draft:
            draft.put_account(account)
            if opening_balance_cents:
                starting = Transaction(
                    date=opened_on or account.created_at.date(),
                    payee=STARTING_BALANCE_PAYEE,
                    type=(
                        TransactionType.income
                        if opening_balance_cents > 0
                        else TransactionType.expense
                    ),
                    amount_cents=abs(opening_balance_cents),
                    account_id=account.id,
                )
                # opening card debt is an uncategorized expense
                self._apply_effects(draft, starting, 1)
                draft.put_transaction(starting)
            account = draft.accounts[account.id]
        logger.info(
            f"account_opened: budget={self.budget_id} id={account.id} "
            f"type={account.type.value} balance_cents={account.balance_cents}"
        )
        return account

    def archive_account(self, account_id: str) -> Account:
        with self.mutation() as draft:
            updated = replace(draft.account(account_id), is_archived=True)
            draft.put_account(updated)
        return updated

    def restore_account(self, account_id: str) -> Account:
        with self.mutation() as draft:
            updated = replace(draft.account(account_id), is_archived=False)
            draft.put_account(updated)
        return updated

    def reconcile(self, account_id: str, cleared_balance_cents: int, as_of: date) -> Account:
        require_cents(cleared_balance_cents)
        with self.mutation() as draft:
            updated = replace(
                draft.open_account(account_id),
                cleared_balance_cents=cleared_balance_cents,
                last_reconciled_at=as_of,
                last_reconciled_cents=cleared_balance_cents,
            )
            draft.put_account(updated)
        logger.info(
            f"account_reconciled: budget={self.budget_id} id={account_id} "
            f"cleared_cents={cleared_balance_cents} as_of={as_of}"
        )
        return updated

    def delete_account(self, account_id: str) -> int:
        """Remove an account and every transaction that references it.

        Effects of the removed transactions on surviving accounts and
        categories are reversed. Returns the number of removed transactions.
        """
        with self.mutation() as draft:
            draft.account(account_id)
            doomed = [
                tx
                for tx in draft.transactions.values()
                if account_id in (tx.account_id, tx.to_account_id)
            ]
            for tx in doomed:
                self._unstage_transaction(draft, tx)
            for planned in list(draft.planned.values()):
                if planned.account_id == account_id:
                    draft.remove_planned(planned.id)
            draft.remove_account(account_id)
        logger.info(
            f"account_deleted: budget={self.budget_id} id={account_id} "
            f"transactions_removed={len(doomed)}"
        )
        return len(doomed)

    # Queries

    def accounts(self, include_archived: bool = True) -> list[Account]:
        items = self._snapshot.accounts.values()
        if not include_archived:
            items = [a for a in items if not a.is_archived]
        return sorted(items, key=lambda a: (a.name.lower(), a.id))

    def account(self, account_id: str) -> Account:
        account = self._snapshot.accounts.get(account_id)
        if account is None:
            raise NotFound("account", account_id)
        return account

    def account_balance(self, account_id: str) -> int:
        return self.account(account_id).balance_cents

    def category_groups(self) -> list[CategoryGroup]:
        return sorted(self._snapshot.groups.values(), key=lambda g: (g.position, g.name))

    def categories(self) -> list[Category]:
        return [c for group in self.category_groups() for c in group.categories]

    def category(self, category_id: str) -> Category:
        category = self._snapshot.category(category_id)
        if category is None:
            raise NotFound("category", category_id)
        return category

    def category_available(self, category_id: str) -> int:
        return self.category(category_id).available_cents

    def transaction(self, transaction_id: str) -> Transaction:
        tx = self._snapshot.transactions.get(transaction_id)
        if tx is None:
            raise NotFound("transaction", transaction_id)
        return tx

    def transactions(self) -> list[Transaction]:
        return sorted(self._snapshot.transactions.values(), key=lambda t: (t.date, t.id))

    def planned_transactions(self) -> list[PlannedTransaction]:
        return sorted(
            self._snapshot.planned.values(), key=lambda p: (p.next_due_date, p.title)
        )

    def planned_transaction(self, planned_id: str) -> PlannedTransaction:
        planned = self._snapshot.planned.get(planned_id)
        if planned is None:
            raise NotFound("planned transaction", planned_id)
        return planned

    def total_balance(self) -> int:
        return budgetable_balance(self._snapshot.accounts)

    def total_allocated(self) -> int:
        return allocated_total(self._snapshot.groups)

    def available_to_budget(self) -> int:
        snapshot = self._snapshot
        return budgetable_balance(snapshot.accounts) - allocated_total(snapshot.groups)

    def total_unallocated(self) -> int:
        return self.available_to_budget()

    def transactions_for_account(
        self, account_id: str, period: Period = ALL_TIME
    ) -> list[Transaction]:
        """Register of one account: its own rows plus single-record transfers into it."""
        self.account(account_id)
        rows = [
            tx
            for tx in self._snapshot.transactions.values()
            if period.contains(tx.date)
            and (
                tx.account_id == account_id
                or (tx.to_account_id == account_id and tx.transfer_id is None)
            )
        ]
        return sorted(rows, key=lambda t: (t.date, t.id))

    def monthly_spending(self, category_id: str, year: int, month: int) -> int:
        self.category(category_id)
        window = month_period(year, month)
        return sum(
            tx.amount_cents
            for tx in self._snapshot.transactions.values()
            if tx.category_id == category_id
            and charges_category(tx)
            and window.contains(tx.date)
        )

    def target_progress(self, category_id: str, today: date) -> Optional[TargetProgress]:
        category = self.category(category_id)
        if category.target is None:
            return None
        return progress(category.target, category.allocated_cents, today, self.week_start)
