"""Error types shared by the extraction pipeline, the ledger and the API layer."""
from typing import Optional


class ExpenseTrackerError(Exception):
    """Base class for errors surfaced to API callers."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ExpenseTrackerError):
    """A required external credential or setting is missing."""


class ValidationError(ExpenseTrackerError):
    """
    Input rejected before any external call is made.

    `constraint` names the rule that failed ('type', 'size', 'empty', 'total', ...).
    """

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class ExternalCallError(ExpenseTrackerError):
    """Network failure, timeout or non-2xx response from the model or the store."""


class NotFound(ExpenseTrackerError):
    """No expense exists with the requested id."""

    def __init__(self, expense_id: str):
        super().__init__(f"Expense '{expense_id}' not found.")
        self.expense_id = expense_id
