"""Error taxonomy for the expense approval workflow."""

from __future__ import annotations


class ExpenseWorkflowError(Exception):
    """Base class for all errors raised by the approval workflow."""


class ExpenseValidationError(ExpenseWorkflowError, ValueError):
    """Malformed or out-of-range caller input."""


class AuthorizationError(ExpenseWorkflowError, PermissionError):
    """The acting user is not entitled to perform the action."""


class StateError(ExpenseWorkflowError):
    """The action is invalid for the expense's current lifecycle state."""


class ConflictError(ExpenseWorkflowError):
    """The aggregate changed between read and write."""


class ConfigurationError(ExpenseWorkflowError):
    """Company configuration cannot support the requested operation."""


class DependencyError(ExpenseWorkflowError):
    """An external collaborator (currency rates, OCR) failed."""


class ExpenseNotFoundError(ExpenseWorkflowError, KeyError):
    """No expense exists for the requested identifier."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes
        return str(self.args[0]) if self.args else ""
