from typing import Optional


class LedgerError(ValueError):
    """Base class for every rejected ledger command.

    A rejected command never leaves partial state behind.
    """


class NotFound(LedgerError):
    def __init__(self, entity_kind: str, entity_id: Optional[str]) -> None:
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind.capitalize()} not found: {entity_id}")


class InvalidAmount(LedgerError):
    pass


class InvalidInterval(LedgerError):
    pass


class InvalidTransfer(LedgerError):
    pass


class AccountArchived(LedgerError):
    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account is archived: {account_id}")


class DuplicateApplication(LedgerError):
    pass


class StalledSchedule(LedgerError):
    pass


class PlannedTransactionInactive(LedgerError):
    def __init__(self, planned_id: str) -> None:
        self.planned_id = planned_id
        super().__init__(f"Planned transaction is paused: {planned_id}")


class PersistenceFailure(LedgerError):
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)
