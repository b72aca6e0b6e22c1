import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Callable, Optional, Union

from config import get_settings
from entities import PlannedMode, PlannedTransaction, Transaction, TransactionType
from errors import (
    DuplicateApplication,
    LedgerError,
    NotFound,
    PlannedTransactionInactive,
    StalledSchedule,
)
from ledger import Draft, Ledger
from recurrence import describe, next_occurrence, reference_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManualDueEvent:
    """Reminder payload for a manual planned transaction awaiting confirmation."""

    planned_id: str
    title: str
    type: TransactionType
    amount_cents: int
    due_date: date
    schedule: str


@dataclass
class BatchResult:
    processed: list[Transaction] = field(default_factory=list)
    failures: list[tuple[str, LedgerError]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled


class PlannedTransactionScheduler:
    """Turns due planned transactions into ledger transactions.

    Every occurrence is recorded at most once: the transaction carries the
    ``(planned_id, occurrence_date)`` key and the planned item's advanced due
    date is committed in the same change set.
    """

    def __init__(
        self,
        ledger: Ledger,
        *,
        tz_name: Optional[str] = None,
        max_catch_up: Optional[int] = None,
        on_manual_due: Optional[Callable[[ManualDueEvent], None]] = None,
    ) -> None:
        settings = get_settings()
        self.ledger = ledger
        self.tz_name = tz_name or settings.timezone
        self.max_catch_up = settings.max_catch_up if max_catch_up is None else max_catch_up
        self.on_manual_due = on_manual_due

    def today(self, now: Union[date, datetime]) -> date:
        return reference_date(now, self.tz_name)

    def _due(self, now: Union[date, datetime], mode: PlannedMode) -> list[PlannedTransaction]:
        today = self.today(now)
        return [
            planned
            for planned in self.ledger.planned_transactions()
            if planned.mode == mode and planned.is_due(today)
        ]

    def due_automatic(self, now: Union[date, datetime]) -> list[PlannedTransaction]:
        return self._due(now, PlannedMode.automatic)

    def due_manual(self, now: Union[date, datetime]) -> list[PlannedTransaction]:
        return self._due(now, PlannedMode.manual)

    def manual_due_events(self, now: Union[date, datetime]) -> list[ManualDueEvent]:
        events = [
            ManualDueEvent(
                planned_id=planned.id,
                title=planned.title,
                type=planned.type,
                amount_cents=planned.amount_cents,
                due_date=planned.next_due_date,
                schedule=describe(planned.recurrence),
            )
            for planned in self.due_manual(now)
        ]
        if self.on_manual_due is not None:
            for event in events:
                self.on_manual_due(event)
        logger.info(
            f"manual_due: budget={self.ledger.budget_id} count={len(events)}"
        )
        return events

    def process(
        self, planned: PlannedTransaction, effective_date: Optional[date] = None
    ) -> Transaction:
        """Record the occurrence due on ``planned.next_due_date`` and advance it."""
        ledger = self.ledger
        with ledger.mutation() as draft:
            current = draft.planned_transaction(planned.id)
            if not current.is_active:
                raise PlannedTransactionInactive(current.id)
            if current.next_due_date != planned.next_due_date:
                raise DuplicateApplication(
                    f"Planned transaction {current.id} already processed for "
                    f"{planned.next_due_date}"
                )
            due = current.next_due_date
            following = next_occurrence(due, current.recurrence)
            if following <= due:
                raise StalledSchedule(
                    f"Planned transaction {current.id} cannot advance past {due}"
                )
            tx = Transaction(
                date=effective_date or due,
                payee=current.title,
                type=current.type,
                amount_cents=current.amount_cents,
                account_id=current.account_id,
                category_id=current.category_id,
                note=current.note,
                planned_id=current.id,
                occurrence_date=due,
            )
            ledger.stage_transaction(draft, tx)
            draft.put_planned(
                replace(current, next_due_date=following, last_processed_date=due)
            )
        logger.info(
            f"planned_processed: budget={ledger.budget_id} planned={current.id} "
            f"occurrence={due} next_due={following} transaction={tx.id}"
        )
        return tx

    def run_due(
        self,
        now: Union[date, datetime],
        cancel: Optional[threading.Event] = None,
    ) -> BatchResult:
        """Process every due automatic item, catching up missed occurrences.

        A failing item is recorded in ``failures`` and does not stop the
        batch. ``cancel`` is checked between items only.
        """
        today = self.today(now)
        result = BatchResult()
        for planned in self.due_automatic(today):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            current = planned
            posted = 0
            try:
                while current.is_due(today) and posted < self.max_catch_up:
                    result.processed.append(self.process(current))
                    posted += 1
                    current = self.ledger.planned_transaction(current.id)
            except LedgerError as exc:
                logger.warning(
                    f"planned_failed: budget={self.ledger.budget_id} "
                    f"planned={planned.id} error={exc}"
                )
                result.failures.append((planned.id, exc))
                continue
            if current.is_due(today):
                logger.warning(
                    f"catch_up_capped: planned={planned.id} posted={posted} "
                    f"next_due={current.next_due_date}"
                )
        logger.info(
            f"scheduler_run: budget={self.ledger.budget_id} today={today} "
            f"processed={len(result.processed)} failures={len(result.failures)} "
            f"cancelled={result.cancelled}"
        )
        return result

    def _validate(self, draft: Draft, planned: PlannedTransaction) -> None:
        draft.open_account(planned.account_id)
        if planned.category_id is not None:
            draft.category(planned.category_id)
        elif not planned.is_income:
            raise NotFound("category", None)

    def add(self, planned: PlannedTransaction) -> PlannedTransaction:
        with self.ledger.mutation() as draft:
            if planned.id in draft.planned:
                raise DuplicateApplication(f"Planned transaction exists: {planned.id}")
            self._validate(draft, planned)
            draft.put_planned(planned)
        logger.info(
            f"planned_added: budget={self.ledger.budget_id} id={planned.id} "
            f"schedule={describe(planned.recurrence)!r} next_due={planned.next_due_date}"
        )
        return planned

    def update(self, planned: PlannedTransaction) -> PlannedTransaction:
        with self.ledger.mutation() as draft:
            stored = draft.planned_transaction(planned.id)
            self._validate(draft, planned)
            planned = replace(planned, last_processed_date=stored.last_processed_date)
            draft.put_planned(planned)
        return planned

    def _set_active(self, planned_id: str, active: bool) -> PlannedTransaction:
        with self.ledger.mutation() as draft:
            updated = replace(draft.planned_transaction(planned_id), is_active=active)
            draft.put_planned(updated)
        logger.info(
            f"planned_toggled: budget={self.ledger.budget_id} id={planned_id} active={active}"
        )
        return updated

    def pause(self, planned_id: str) -> PlannedTransaction:
        return self._set_active(planned_id, False)

    def resume(self, planned_id: str) -> PlannedTransaction:
        return self._set_active(planned_id, True)

    def delete(self, planned_id: str) -> None:
        with self.ledger.mutation() as draft:
            draft.planned_transaction(planned_id)
            draft.remove_planned(planned_id)
        logger.info(f"planned_deleted: budget={self.ledger.budget_id} id={planned_id}")
