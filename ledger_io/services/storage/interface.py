"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the remote ledger.
This allows us to:
1. Swap Google Sheets for a document database later
2. Use in-memory storage for testing and local runs
3. Keep the importer decoupled from storage implementation

The interface is intentionally small - only the create/query/update
operations an import run and a ledger export need.

Every failure surfaces as StorageError (or a subclass). The importer relies
on that: a StorageError during a row write fails that row and nothing else.
"""

from abc import ABC, abstractmethod

from ledger_io.models.audit import AuditEvent
from ledger_io.models.ledger import Category, Expense


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the user's ledger (categories and expenses).

    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def check_connection(self) -> bool:
        """
        Verify the store is reachable.

        Returns:
            True if reachable

        Raises:
            ConnectionError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        """
        List all categories owned by a user.

        Args:
            user_id: Owner of the categories

        Returns:
            Categories in storage order
        """
        pass

    @abstractmethod
    async def create_category(self, category: Category) -> Category:
        """
        Persist a new category.

        Args:
            category: The category to create

        Returns:
            The stored category

        Raises:
            DuplicateError: If the user already has a category with that name
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_expenses(self, user_id: str) -> list[Expense]:
        """
        List all expenses owned by a user.

        Args:
            user_id: Owner of the expenses

        Returns:
            Expenses in storage order
        """
        pass

    @abstractmethod
    async def create_expense(self, expense: Expense) -> Expense:
        """
        Persist a new expense.

        Args:
            expense: The expense to create

        Returns:
            The stored expense

        Raises:
            DuplicateError: If an expense with the same ID exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Replace the fields of an existing expense.

        Args:
            expense: The expense with updated fields (matched by ID)

        Returns:
            The stored expense

        Raises:
            NotFoundError: If the expense doesn't exist
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
