"""
Abstract Remote Data Service

DESIGN DECISION: The sync engine never talks to a concrete server.
It replays queued operations through this interface, which allows us to:
1. Run against an in-process authoritative server in tests
2. Use Google Sheets as a lightweight hosted backend
3. Swap in an HTTP API client later without touching sync logic

Every method is async and reports failures as RemoteServiceError with
one of five kinds. The engine decides what is retryable from the kind
alone, so implementations must map their native errors carefully.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from finsync.models.entities import Budget, Expense, SavingsBucket, SavingsEntry
from finsync.models.sync import RemoteErrorKind, RemoteSnapshot


class RemoteDataService(ABC):
    """
    Server-side persistence for one owner's records.

    Create and update calls return the canonical record as the server
    stored it. The returned id may differ from the one sent.
    """

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_expense(self, expense: Expense) -> Expense:
        """
        Create an expense.

        Raises:
            RemoteServiceError: validation, unauthorized, network, server
        """
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Overwrite an existing expense.

        Raises:
            RemoteServiceError: notFound if the expense does not exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, owner_id: str, expense_id: str) -> None:
        pass

    # -------------------------------------------------------------------------
    # Budgets (upsert by month)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        """Create the budget for a month, or overwrite its amount if one exists."""
        pass

    @abstractmethod
    async def update_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        pass

    # -------------------------------------------------------------------------
    # Savings
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        pass

    @abstractmethod
    async def update_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        pass

    @abstractmethod
    async def delete_bucket(self, owner_id: str, bucket_id: str) -> None:
        """Delete a bucket and every entry in it."""
        pass

    @abstractmethod
    async def create_entry(self, entry: SavingsEntry) -> SavingsEntry:
        """
        Record a deposit or withdrawal.

        Withdrawals beyond the bucket balance are accepted.

        Raises:
            RemoteServiceError: notFound if the bucket does not exist
        """
        pass

    @abstractmethod
    async def update_entry(self, entry: SavingsEntry) -> SavingsEntry:
        pass

    @abstractmethod
    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        pass

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_full_snapshot(self, owner_id: str) -> RemoteSnapshot:
        """
        Every record the owner has on the server.

        Used to reconcile the local mirror after replay.
        """
        pass


class RemoteServiceError(Exception):
    """A remote call failed; `kind` says how."""

    def __init__(self, kind: RemoteErrorKind, message: str = ""):
        self.kind = RemoteErrorKind(kind)
        self.message = message or self.kind.value
        super().__init__(f"[{self.kind.value}] {self.message}")

    @property
    def retryable(self) -> bool:
        return self.kind.retryable
