import logging
import threading
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from config import get_settings
from entities import Account, Category, CategoryGroup, PlannedTransaction, Transaction
from errors import DuplicateApplication, LedgerError, NotFound, PersistenceFailure
from ledger import Ledger
from periods import Period, resolve_period
from recurrence import Custom, describe, local_today
from repository import Repository, SqlAlchemyRepository
from scheduler import BatchResult, PlannedTransactionScheduler
from schemas import (
    AccountIn,
    AllocationIn,
    CategoryGroupIn,
    CategoryIn,
    PlannedTransactionIn,
    ProcessIn,
    ReconcileIn,
    TargetIn,
    TransactionIn,
    TransferIn,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


class LedgerRegistry:
    """One loaded ``Ledger`` (and its scheduler) per budget id."""

    def __init__(self, repository: Optional[Repository] = None) -> None:
        self.repository = repository or SqlAlchemyRepository()
        self._ledgers: dict[str, Ledger] = {}
        self._schedulers: dict[str, PlannedTransactionScheduler] = {}
        self._lock = threading.Lock()

    def ledger(self, budget_id: str) -> Ledger:
        with self._lock:
            ledger = self._ledgers.get(budget_id)
            if ledger is None:
                ledger = Ledger.load(budget_id, self.repository)
                self._ledgers[budget_id] = ledger
            return ledger

    def scheduler(self, budget_id: str) -> PlannedTransactionScheduler:
        ledger = self.ledger(budget_id)
        with self._lock:
            scheduler = self._schedulers.get(budget_id)
            if scheduler is None:
                scheduler = PlannedTransactionScheduler(ledger)
                self._schedulers[budget_id] = scheduler
            return scheduler


app = FastAPI(title="Envelope Ledger")
registry = LedgerRegistry()


def get_registry() -> LedgerRegistry:
    return registry


def get_ledger(budget_id: str, reg: LedgerRegistry = Depends(get_registry)) -> Ledger:
    return reg.ledger(budget_id)


def get_scheduler(
    budget_id: str, reg: LedgerRegistry = Depends(get_registry)
) -> PlannedTransactionScheduler:
    return reg.scheduler(budget_id)


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, NotFound):
        status = 404
    elif isinstance(exc, DuplicateApplication):
        status = 409
    elif isinstance(exc, PersistenceFailure):
        status = 503
        logger.error(f"persistence_failure: path={request.url.path} error={exc}")
    else:
        status = 400
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today(settings.timezone))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def account_json(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "category": account.category.value,
        "balance_cents": account.balance_cents,
        "cleared_balance_cents": account.cleared_balance_cents,
        "is_archived": account.is_archived,
        "notes": account.notes,
        "last_reconciled_at": (
            account.last_reconciled_at.isoformat() if account.last_reconciled_at else None
        ),
        "last_reconciled_cents": account.last_reconciled_cents,
    }


def category_json(category: Category) -> dict:
    return {
        "id": category.id,
        "group_id": category.group_id,
        "name": category.name,
        "emoji": category.emoji,
        "allocated_cents": category.allocated_cents,
        "spent_cents": category.spent_cents,
        "available_cents": category.available_cents,
        "target": (
            TargetIn.from_target(category.target).model_dump(mode="json")
            if category.target
            else None
        ),
    }


def group_json(group: CategoryGroup) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "emoji": group.emoji,
        "is_income": group.is_income,
        "categories": [category_json(c) for c in group.categories],
    }


def transaction_json(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "payee": txn.payee,
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "signed_cents": txn.signed_cents,
        "account_id": txn.account_id,
        "category_id": txn.category_id,
        "to_account_id": txn.to_account_id,
        "transfer_id": txn.transfer_id,
        "planned_id": txn.planned_id,
        "note": txn.note,
    }


def planned_json(planned: PlannedTransaction) -> dict:
    recurrence = planned.recurrence
    return {
        "id": planned.id,
        "title": planned.title,
        "type": planned.type.value,
        "amount_cents": planned.amount_cents,
        "account_id": planned.account_id,
        "category_id": planned.category_id,
        "note": planned.note,
        "mode": planned.mode.value,
        "frequency": "custom" if isinstance(recurrence, Custom) else describe(recurrence),
        "interval_count": recurrence.interval if isinstance(recurrence, Custom) else None,
        "interval_unit": recurrence.period.value if isinstance(recurrence, Custom) else None,
        "next_due_date": planned.next_due_date.isoformat(),
        "last_processed_date": (
            planned.last_processed_date.isoformat() if planned.last_processed_date else None
        ),
        "is_active": planned.is_active,
    }


def batch_json(result: BatchResult) -> dict:
    return {
        "processed": [transaction_json(t) for t in result.processed],
        "failures": [
            {"planned_id": planned_id, "error": str(exc)}
            for planned_id, exc in result.failures
        ],
        "cancelled": result.cancelled,
    }


@app.get("/budgets/{budget_id}/summary")
def budget_summary(ledger: Ledger = Depends(get_ledger)):
    return {
        "available_to_budget_cents": ledger.available_to_budget(),
        "total_balance_cents": ledger.total_balance(),
        "total_allocated_cents": ledger.total_allocated(),
    }


@app.get("/budgets/{budget_id}/accounts")
def list_accounts(include_archived: bool = True, ledger: Ledger = Depends(get_ledger)):
    return [account_json(a) for a in ledger.accounts(include_archived=include_archived)]


@app.post("/budgets/{budget_id}/accounts", status_code=201)
def open_account(payload: AccountIn, ledger: Ledger = Depends(get_ledger)):
    account = ledger.open_account(
        payload.name,
        payload.type,
        payload.category,
        notes=payload.notes,
        opening_balance_cents=payload.opening_balance_cents,
        opened_on=payload.opened_on,
    )
    return account_json(account)


@app.post("/budgets/{budget_id}/accounts/{account_id}/archive")
def archive_account(account_id: str, ledger: Ledger = Depends(get_ledger)):
    return account_json(ledger.archive_account(account_id))


@app.post("/budgets/{budget_id}/accounts/{account_id}/restore")
def restore_account(account_id: str, ledger: Ledger = Depends(get_ledger)):
    return account_json(ledger.restore_account(account_id))


@app.delete("/budgets/{budget_id}/accounts/{account_id}")
def delete_account(account_id: str, ledger: Ledger = Depends(get_ledger)):
    removed = ledger.delete_account(account_id)
    return {"deleted": account_id, "transactions_removed": removed}


@app.post("/budgets/{budget_id}/accounts/{account_id}/reconcile")
def reconcile_account(
    account_id: str, payload: ReconcileIn, ledger: Ledger = Depends(get_ledger)
):
    account = ledger.reconcile(account_id, payload.cleared_balance_cents, payload.as_of)
    return account_json(account)


@app.get("/budgets/{budget_id}/accounts/{account_id}/transactions")
def account_transactions(
    account_id: str, request: Request, ledger: Ledger = Depends(get_ledger)
):
    period = period_from_request(request)
    items = ledger.transactions_for_account(account_id, period)
    return {
        "account_id": account_id,
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "items": [transaction_json(t) for t in items],
    }


@app.get("/budgets/{budget_id}/transactions")
def list_transactions(ledger: Ledger = Depends(get_ledger)):
    return [transaction_json(t) for t in ledger.transactions()]


@app.post("/budgets/{budget_id}/transactions", status_code=201)
def add_transaction(payload: TransactionIn, ledger: Ledger = Depends(get_ledger)):
    return transaction_json(ledger.add_transaction(payload.to_entity()))


@app.delete("/budgets/{budget_id}/transactions/{transaction_id}")
def delete_transaction(transaction_id: str, ledger: Ledger = Depends(get_ledger)):
    return {"deleted": ledger.delete_transaction(transaction_id)}


@app.post("/budgets/{budget_id}/transfers", status_code=201)
def create_transfer(payload: TransferIn, ledger: Ledger = Depends(get_ledger)):
    withdrawal_id, deposit_id = ledger.create_transfer(
        payload.from_account_id,
        payload.to_account_id,
        payload.amount_cents,
        payload.date,
        payload.note,
    )
    return {"withdrawal_id": withdrawal_id, "deposit_id": deposit_id}


@app.get("/budgets/{budget_id}/category-groups")
def list_category_groups(ledger: Ledger = Depends(get_ledger)):
    return [group_json(g) for g in ledger.category_groups()]


@app.post("/budgets/{budget_id}/category-groups", status_code=201)
def add_category_group(payload: CategoryGroupIn, ledger: Ledger = Depends(get_ledger)):
    return group_json(ledger.add_category_group(payload.name, payload.emoji))


@app.post("/budgets/{budget_id}/categories", status_code=201)
def add_category(payload: CategoryIn, ledger: Ledger = Depends(get_ledger)):
    target = payload.target.to_target() if payload.target else None
    category = ledger.add_category(payload.group_id, payload.name, payload.emoji, target)
    return category_json(category)


@app.get("/budgets/{budget_id}/categories/{category_id}")
def get_category(category_id: str, ledger: Ledger = Depends(get_ledger)):
    return category_json(ledger.category(category_id))


@app.get("/budgets/{budget_id}/categories/{category_id}/spending")
def category_spending(
    category_id: str, year: int, month: int, ledger: Ledger = Depends(get_ledger)
):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    return {
        "category_id": category_id,
        "year": year,
        "month": month,
        "spent_cents": ledger.monthly_spending(category_id, year, month),
    }


@app.post("/budgets/{budget_id}/categories/{category_id}/allocate")
def allocate(category_id: str, payload: AllocationIn, ledger: Ledger = Depends(get_ledger)):
    return category_json(ledger.allocate(category_id, payload.amount_cents))


@app.post("/budgets/{budget_id}/categories/{category_id}/deallocate")
def deallocate(
    category_id: str, payload: AllocationIn, ledger: Ledger = Depends(get_ledger)
):
    return category_json(ledger.deallocate(category_id, payload.amount_cents))


@app.put("/budgets/{budget_id}/categories/{category_id}/target")
def set_target(category_id: str, payload: TargetIn, ledger: Ledger = Depends(get_ledger)):
    return category_json(ledger.set_target(category_id, payload.to_target()))


@app.delete("/budgets/{budget_id}/categories/{category_id}/target")
def clear_target(category_id: str, ledger: Ledger = Depends(get_ledger)):
    return category_json(ledger.clear_target(category_id))


@app.get("/budgets/{budget_id}/categories/{category_id}/target/progress")
def target_progress(
    category_id: str, on: Optional[date] = None, ledger: Ledger = Depends(get_ledger)
):
    today = on or local_today(settings.timezone)
    result = ledger.target_progress(category_id, today)
    if result is None:
        raise HTTPException(status_code=404, detail="Category has no target")
    return {
        "target_cents": result.target_cents,
        "funded_cents": result.funded_cents,
        "remaining_cents": result.remaining_cents,
        "ratio": result.ratio,
        "is_funded": result.is_funded,
        "due_date": result.due_date.isoformat() if result.due_date else None,
        "needed_per_month_cents": result.needed_per_month_cents,
        "reset_date": result.reset_date.isoformat() if result.reset_date else None,
    }


@app.get("/budgets/{budget_id}/planned")
def list_planned(ledger: Ledger = Depends(get_ledger)):
    return [planned_json(p) for p in ledger.planned_transactions()]


@app.post("/budgets/{budget_id}/planned", status_code=201)
def add_planned(
    payload: PlannedTransactionIn,
    scheduler: PlannedTransactionScheduler = Depends(get_scheduler),
):
    return planned_json(scheduler.add(payload.to_entity()))


@app.put("/budgets/{budget_id}/planned/{planned_id}")
def update_planned(
    planned_id: str,
    payload: PlannedTransactionIn,
    scheduler: PlannedTransactionScheduler = Depends(get_scheduler),
):
    return planned_json(scheduler.update(payload.to_entity(planned_id)))


@app.post("/budgets/{budget_id}/planned/{planned_id}/pause")
def pause_planned(
    planned_id: str, scheduler: PlannedTransactionScheduler = Depends(get_scheduler)
):
    return planned_json(scheduler.pause(planned_id))


@app.post("/budgets/{budget_id}/planned/{planned_id}/resume")
def resume_planned(
    planned_id: str, scheduler: PlannedTransactionScheduler = Depends(get_scheduler)
):
    return planned_json(scheduler.resume(planned_id))


@app.delete("/budgets/{budget_id}/planned/{planned_id}")
def delete_planned(
    planned_id: str, scheduler: PlannedTransactionScheduler = Depends(get_scheduler)
):
    scheduler.delete(planned_id)
    return {"deleted": planned_id}


@app.post("/budgets/{budget_id}/planned/{planned_id}/process")
def process_planned(
    planned_id: str,
    payload: ProcessIn,
    scheduler: PlannedTransactionScheduler = Depends(get_scheduler),
):
    planned = scheduler.ledger.planned_transaction(planned_id)
    if planned.next_due_date != payload.next_due_date:
        raise DuplicateApplication(
            f"Planned transaction {planned_id} is due {planned.next_due_date}, "
            f"not {payload.next_due_date}"
        )
    txn = scheduler.process(planned, payload.effective_date)
    return transaction_json(txn)


@app.get("/budgets/{budget_id}/planned/manual-due")
def manual_due(
    on: Optional[date] = None,
    scheduler: PlannedTransactionScheduler = Depends(get_scheduler),
):
    events = scheduler.manual_due_events(on or datetime.now().astimezone())
    return [
        {
            "planned_id": e.planned_id,
            "title": e.title,
            "type": e.type.value,
            "amount_cents": e.amount_cents,
            "due_date": e.due_date.isoformat(),
            "schedule": e.schedule,
        }
        for e in events
    ]


@app.post("/budgets/{budget_id}/planned/run-due")
def run_due(
    on: Optional[date] = None,
    scheduler: PlannedTransactionScheduler = Depends(get_scheduler),
):
    result = scheduler.run_due(on or datetime.now().astimezone())
    return batch_json(result)
