"""Approval state machine for a single expense.

An expense starts out Pending and ends Approved or Rejected; neither end
state can be left. Each transition works on a deep copy of the aggregate and
returns it, so a failed precondition never leaves a half-updated expense.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .exceptions import AuthorizationError, ExpenseValidationError, StateError
from .models import (
    ApprovalAction,
    ApprovalHistoryEntry,
    ApprovalStep,
    Expense,
    ExpenseStatus,
    StepStatus,
)
from .policy import CompanyPolicy
from .rules import RuleEngine

logger = logging.getLogger(__name__)


@dataclass
class ApprovalStateMachine:
    """Apply approve and reject actions to expenses."""

    clock: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))

    def approve(
        self,
        expense: Expense,
        acting_user: str,
        policy: CompanyPolicy,
        comments: str | None = None,
    ) -> Expense:
        """Record an approval and advance or complete the workflow."""

        self._check_can_act(expense, acting_user)
        updated = expense.model_copy(deep=True)
        step = self._act(updated, acting_user, ApprovalAction.APPROVED, comments or "")

        engine = RuleEngine.from_policy(policy)
        if engine.evaluate(updated.approval_flow):
            logger.info(
                "Expense %s approved by rule(s) %s",
                updated.expense_id,
                ", ".join(engine.satisfied_rules(updated.approval_flow)),
            )
            self._finish(updated, ExpenseStatus.APPROVED)
            return updated

        next_step = updated.next_pending_step(after_order=step.order)
        if next_step is not None:
            updated.current_approver = next_step.approver_id
            logger.info(
                "Expense %s advanced to %s (order %d)",
                updated.expense_id,
                next_step.approver_id,
                next_step.order,
            )
            return updated

        # Chain exhausted: a final rule check, then approval by default.
        if engine.evaluate(updated.approval_flow):
            logger.info("Expense %s approved on final rule check", updated.expense_id)
        else:
            logger.info(
                "Expense %s approved by default after exhausting its chain",
                updated.expense_id,
            )
        self._finish(updated, ExpenseStatus.APPROVED)
        return updated

    def reject(self, expense: Expense, acting_user: str, comments: str) -> Expense:
        """Record a rejection; a single rejection vetoes the whole expense."""

        if not comments or not comments.strip():
            raise ExpenseValidationError("Rejection comments are required")
        self._check_can_act(expense, acting_user)
        updated = expense.model_copy(deep=True)
        self._act(updated, acting_user, ApprovalAction.REJECTED, comments.strip())
        self._finish(updated, ExpenseStatus.REJECTED)
        logger.info("Expense %s rejected by %s", updated.expense_id, acting_user)
        return updated

    def _check_can_act(self, expense: Expense, acting_user: str) -> None:
        if expense.status != ExpenseStatus.PENDING:
            raise StateError(
                f"Expense {expense.expense_id} is {expense.status.value}; no further actions allowed"
            )
        own_steps = expense.steps_for(acting_user)
        if own_steps and all(step.status != StepStatus.PENDING for step in own_steps):
            raise StateError(
                f"User {acting_user} has already acted on expense {expense.expense_id}"
            )
        if expense.current_approver != acting_user:
            raise AuthorizationError(
                f"User {acting_user} is not the current approver of expense {expense.expense_id}"
            )
        if expense.pending_step_for(acting_user) is None:
            raise StateError(
                f"No pending approval step for {acting_user} on expense {expense.expense_id}"
            )

    def _act(
        self,
        expense: Expense,
        acting_user: str,
        action: ApprovalAction,
        comments: str,
    ) -> ApprovalStep:
        step = expense.pending_step_for(acting_user)
        if step is None:
            raise StateError(
                f"No pending approval step for {acting_user} on expense {expense.expense_id}"
            )
        timestamp = self.clock()
        step.status = (
            StepStatus.APPROVED if action == ApprovalAction.APPROVED else StepStatus.REJECTED
        )
        step.comments = comments
        step.timestamp = timestamp
        entry = ApprovalHistoryEntry(
            approver_id=acting_user,
            action=action,
            comments=comments,
            timestamp=timestamp,
        )
        expense.approval_history = (*expense.approval_history, entry)
        return step

    @staticmethod
    def _finish(expense: Expense, status: ExpenseStatus) -> None:
        expense.status = status
        expense.current_approver = None
