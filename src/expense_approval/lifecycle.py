"""Expense lifecycle: submission, approval actions, edits and queries.

Every mutating operation follows the same shape: load the aggregate, resolve
all external inputs (policy, exchange rates, OCR), compute the new state on a
copy and commit it with a version check. Nothing is written when any step
fails, and a version mismatch surfaces as ``ConflictError`` for the caller to
retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .approval import ApprovalStateMachine
from .chain import ApprovalChainBuilder
from .conversion import CurrencyConverter
from .directory import Directory
from .exceptions import AuthorizationError, ExpenseValidationError, StateError
from .models import (
    ApprovalAction,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    UserRef,
    UserRole,
)
from .policy import PolicyStore
from .receipts import ReceiptExtraction, ReceiptExtractor, ReceiptRef
from .repository import ExpenseRepository

logger = logging.getLogger(__name__)


class ExpenseSubmission(BaseModel):
    """Caller input for a new expense.

    ``amount``, ``expense_date`` and ``description`` may be left out when a
    receipt is attached; OCR then fills whichever of them it can read.
    """

    employee_id: str = Field(..., min_length=1)
    amount: Annotated[Decimal, Field(ge=0)] | None = None
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$")
    category: ExpenseCategory
    description: str | None = None
    expense_date: date | None = None
    receipt: ReceiptRef | None = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ExpenseUpdate(BaseModel):
    """Fields a submitter may change while the expense is pending."""

    amount: Annotated[Decimal, Field(ge=0)] | None = None
    category: ExpenseCategory | None = None
    description: str | None = Field(default=None, min_length=1)
    expense_date: date | None = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


@dataclass(frozen=True)
class ApprovalStats:
    """Counts of an approver's actions."""

    total: int
    approved: int
    rejected: int
    approval_rate: float


def _validate(model: type[BaseModel], payload: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ExpenseValidationError(str(exc)) from exc


def _newest_first(expenses: list[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda expense: expense.created_at, reverse=True)


class ExpenseLifecycleController:
    """Entry point for all expense operations."""

    def __init__(
        self,
        repository: ExpenseRepository,
        directory: Directory,
        policies: PolicyStore,
        converter: CurrencyConverter,
        receipt_extractor: ReceiptExtractor | None = None,
        chain_builder: ApprovalChainBuilder | None = None,
        state_machine: ApprovalStateMachine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.directory = directory
        self.policies = policies
        self.converter = converter
        self.receipt_extractor = receipt_extractor
        self.chain_builder = chain_builder or ApprovalChainBuilder()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.state_machine = state_machine or ApprovalStateMachine(clock=self.clock)

    # -- creation -----------------------------------------------------------

    def create_expense(
        self,
        employee_id: str,
        amount: Decimal | None,
        currency: str,
        category: ExpenseCategory | str,
        description: str | None,
        expense_date: date | None,
        receipt: ReceiptRef | None = None,
    ) -> Expense:
        """Submit a new expense and route it to its first approver."""

        submission: ExpenseSubmission = _validate(
            ExpenseSubmission,
            {
                "employee_id": employee_id,
                "amount": amount,
                "currency": currency,
                "category": category,
                "description": description,
                "expense_date": expense_date,
                "receipt": receipt,
            },
        )
        employee = self.directory.get_user(submission.employee_id)
        if not employee.is_active:
            raise AuthorizationError(f"User {employee.user_id} is inactive")

        ocr_data = self._extract_receipt(submission.receipt)
        amount_value = submission.amount
        date_value = submission.expense_date
        description_value = submission.description or None
        if ocr_data is not None:
            if amount_value is None and ocr_data.amount is not None:
                amount_value = ocr_data.amount
            if date_value is None and ocr_data.date is not None:
                date_value = ocr_data.date
            if description_value is None and ocr_data.merchant:
                description_value = f"Receipt from {ocr_data.merchant}"

        missing = [
            name
            for name, value in (
                ("amount", amount_value),
                ("expense_date", date_value),
                ("description", description_value),
            )
            if value is None
        ]
        if missing:
            raise ExpenseValidationError(f"Missing required fields: {', '.join(missing)}")

        policy = self.policies.get(employee.company_id)
        currency_code = submission.currency.upper()
        converted = self.converter.convert(amount_value, currency_code, policy.currency)
        chain = self.chain_builder.build(employee, converted, policy, self.directory)

        now = self.clock()
        expense: Expense = _validate(
            Expense,
            {
                "employee_id": employee.user_id,
                "company_id": employee.company_id,
                "amount": amount_value,
                "original_currency": currency_code,
                "converted_amount": converted,
                "company_currency": policy.currency,
                "category": submission.category,
                "description": description_value,
                "expense_date": date_value,
                "receipt": submission.receipt,
                "ocr_data": ocr_data,
                "approval_flow": list(chain.steps),
                "current_approver": chain.current_approver,
                "created_at": now,
                "updated_at": now,
            },
        )
        stored = self.repository.add(expense)
        logger.info(
            "Expense %s created for %s; %d approval step(s), first approver %s",
            stored.expense_id,
            employee.user_id,
            len(stored.approval_flow),
            stored.current_approver,
        )
        return stored

    def _extract_receipt(self, receipt: ReceiptRef | None) -> ReceiptExtraction | None:
        if receipt is None or self.receipt_extractor is None or not receipt.is_image:
            return None
        try:
            return self.receipt_extractor.extract(receipt)
        except Exception:
            logger.warning(
                "OCR failed for receipt %s; continuing without extracted fields",
                receipt.file_reference,
                exc_info=True,
            )
            return None

    # -- approval actions ---------------------------------------------------

    def approve_expense(
        self, expense_id: str, approver_id: str, comments: str | None = None
    ) -> Expense:
        expense = self.repository.get(expense_id)
        policy = self.policies.get(expense.company_id)
        updated = self.state_machine.approve(expense, approver_id, policy, comments)
        return self.repository.save(updated, expected_version=expense.version)

    def reject_expense(self, expense_id: str, approver_id: str, comments: str) -> Expense:
        if not comments or not comments.strip():
            raise ExpenseValidationError("Rejection comments are required")
        expense = self.repository.get(expense_id)
        updated = self.state_machine.reject(expense, approver_id, comments)
        return self.repository.save(updated, expected_version=expense.version)

    # -- edits --------------------------------------------------------------

    def update_expense(
        self, expense_id: str, actor_id: str, changes: Mapping[str, Any]
    ) -> Expense:
        """Edit a pending expense; a new amount is converted again."""

        update: ExpenseUpdate = _validate(ExpenseUpdate, changes)
        expense = self.repository.get(expense_id)
        self._check_owner_or_admin(expense, actor_id)
        self._check_editable(expense)

        values = update.model_dump(exclude_none=True)
        if "amount" in values:
            values["converted_amount"] = self.converter.convert(
                values["amount"], expense.original_currency, expense.company_currency
            )
        if not values:
            return expense
        updated = expense.model_copy(deep=True, update=values)
        stored = self.repository.save(updated, expected_version=expense.version)
        logger.info("Expense %s updated by %s: %s", expense_id, actor_id, sorted(values))
        return stored

    def delete_expense(self, expense_id: str, actor_id: str) -> None:
        expense = self.repository.get(expense_id)
        self._check_owner_or_admin(expense, actor_id)
        self._check_editable(expense)
        self.repository.delete(expense_id, expected_version=expense.version)
        logger.info("Expense %s deleted by %s", expense_id, actor_id)

    def _check_owner_or_admin(self, expense: Expense, actor_id: str) -> UserRef:
        actor = self.directory.get_user(actor_id)
        is_owner = actor.user_id == expense.employee_id
        is_admin = actor.role == UserRole.ADMIN and actor.company_id == expense.company_id
        if not (is_owner or is_admin):
            raise AuthorizationError(
                f"User {actor_id} may not modify expense {expense.expense_id}"
            )
        return actor

    @staticmethod
    def _check_editable(expense: Expense) -> None:
        if expense.is_terminal:
            raise StateError(
                f"Cannot modify {expense.status.value} expense {expense.expense_id}"
            )

    # -- queries ------------------------------------------------------------

    def get_expense(self, expense_id: str, viewer_id: str) -> Expense:
        viewer = self.directory.get_user(viewer_id)
        expense = self.repository.get(expense_id)
        if expense.company_id != viewer.company_id or (
            viewer.role == UserRole.EMPLOYEE and expense.employee_id != viewer.user_id
        ):
            raise AuthorizationError(f"User {viewer_id} may not view expense {expense_id}")
        return expense

    def list_expenses(self, viewer_id: str) -> list[Expense]:
        """Expenses visible to a user: own, team's (managers) or all (admins)."""

        viewer = self.directory.get_user(viewer_id)
        expenses = self.repository.list_for_company(viewer.company_id)
        if viewer.role == UserRole.EMPLOYEE:
            visible = {viewer.user_id}
        elif viewer.role == UserRole.MANAGER:
            visible = {viewer.user_id} | {
                member.user_id for member in self.directory.team_members(viewer)
            }
        else:
            return _newest_first(expenses)
        return _newest_first([e for e in expenses if e.employee_id in visible])

    def list_pending_approvals(self, approver_id: str) -> list[Expense]:
        approver = self.directory.get_user(approver_id)
        return _newest_first(
            [
                expense
                for expense in self.repository.list_for_company(approver.company_id)
                if expense.status == ExpenseStatus.PENDING
                and expense.current_approver == approver_id
            ]
        )

    def list_approval_history(self, approver_id: str) -> list[Expense]:
        approver = self.directory.get_user(approver_id)
        acted = [
            (expense, expense.last_action_by(approver_id))
            for expense in self.repository.list_for_company(approver.company_id)
        ]
        acted = [(expense, entry) for expense, entry in acted if entry is not None]
        acted.sort(key=lambda pair: pair[1].timestamp, reverse=True)
        return [expense for expense, _ in acted]

    def approval_stats(self, approver_id: str) -> ApprovalStats:
        approver = self.directory.get_user(approver_id)
        actions = [
            entry.action
            for expense in self.repository.list_for_company(approver.company_id)
            for entry in expense.approval_history
            if entry.approver_id == approver_id
        ]
        approved = sum(1 for action in actions if action == ApprovalAction.APPROVED)
        rejected = sum(1 for action in actions if action == ApprovalAction.REJECTED)
        total = len(actions)
        rate = approved / total * 100 if total else 0.0
        return ApprovalStats(
            total=total, approved=approved, rejected=rejected, approval_rate=rate
        )
