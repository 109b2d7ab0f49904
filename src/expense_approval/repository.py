"""Persistence seam for expense aggregates with optimistic concurrency."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from .exceptions import ConflictError, ExpenseNotFoundError
from .models import Expense


class ExpenseRepository(Protocol):
    def get(self, expense_id: str) -> Expense: ...

    def add(self, expense: Expense) -> Expense: ...

    def save(self, expense: Expense, expected_version: int) -> Expense: ...

    def delete(self, expense_id: str, expected_version: int) -> None: ...

    def list_for_company(self, company_id: str) -> list[Expense]: ...


class InMemoryExpenseRepository:
    """Dictionary-backed store.

    Callers always receive copies, so nothing they do is visible until
    ``save`` succeeds. Writes are compare-and-swap on ``Expense.version``.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._items: dict[str, Expense] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    def get(self, expense_id: str) -> Expense:
        with self._lock:
            return self._stored(expense_id).model_copy(deep=True)

    def add(self, expense: Expense) -> Expense:
        with self._lock:
            if expense.expense_id in self._items:
                raise ConflictError(f"Expense {expense.expense_id} already exists")
            stored = expense.model_copy(deep=True, update={"version": 1})
            self._items[stored.expense_id] = stored
            return stored.model_copy(deep=True)

    def save(self, expense: Expense, expected_version: int) -> Expense:
        with self._lock:
            current = self._stored(expense.expense_id)
            if current.version != expected_version:
                raise ConflictError(
                    f"Expense {expense.expense_id} was modified concurrently"
                    f" (expected version {expected_version}, found {current.version})"
                )
            stored = expense.model_copy(
                deep=True,
                update={"version": expected_version + 1, "updated_at": self._clock()},
            )
            self._items[stored.expense_id] = stored
            return stored.model_copy(deep=True)

    def delete(self, expense_id: str, expected_version: int) -> None:
        with self._lock:
            current = self._stored(expense_id)
            if current.version != expected_version:
                raise ConflictError(
                    f"Expense {expense_id} was modified concurrently"
                    f" (expected version {expected_version}, found {current.version})"
                )
            del self._items[expense_id]

    def list_for_company(self, company_id: str) -> list[Expense]:
        with self._lock:
            return [
                expense.model_copy(deep=True)
                for expense in self._items.values()
                if expense.company_id == company_id
            ]

    def _stored(self, expense_id: str) -> Expense:
        try:
            return self._items[expense_id]
        except KeyError:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found") from None
