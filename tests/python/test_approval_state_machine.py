"""Tests for the per-expense approval state machine."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from expense_approval.approval import ApprovalStateMachine
from expense_approval.exceptions import (
    AuthorizationError,
    ExpenseValidationError,
    StateError,
)
from expense_approval.models import (
    ApprovalAction,
    ApprovalStep,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    StepStatus,
    UserRole,
)
from expense_approval.policy import CompanyPolicy

FIXED_TIME = datetime(2025, 5, 1, 12, 0, tzinfo=UTC)


def _machine() -> ApprovalStateMachine:
    return ApprovalStateMachine(clock=lambda: FIXED_TIME)


def _expense(*approvers: tuple[str, UserRole]) -> Expense:
    steps = [
        ApprovalStep(approver_id=user_id, approver_role=role, order=index)
        for index, (user_id, role) in enumerate(approvers, start=1)
    ]
    return Expense(
        expense_id="EXP-1",
        employee_id="emp-1",
        company_id="acme",
        amount=Decimal("120.00"),
        original_currency="USD",
        converted_amount=Decimal("120.00"),
        company_currency="USD",
        category=ExpenseCategory.MEALS,
        description="Client lunch",
        expense_date=date(2025, 4, 30),
        approval_flow=steps,
        current_approver=steps[0].approver_id,
    )


def _policy(**rules: dict[str, object]) -> CompanyPolicy:
    return CompanyPolicy.from_mapping({"rules": rules})


POLICIES = [
    CompanyPolicy.default(),
    _policy(percentage_rule={"enabled": True, "percentage": 0}),
    _policy(specific_approver_rule={"enabled": True, "approver_role": "manager"}),
    _policy(hybrid_rule={"enabled": True, "percentage": 10, "specific_role": "admin"}),
    _policy(
        percentage_rule={"enabled": True, "percentage": 50},
        specific_approver_rule={"enabled": True, "approver_role": "admin"},
        hybrid_rule={"enabled": True, "percentage": 1, "specific_role": "manager"},
    ),
]


def test_single_step_reaching_percentage_is_approved() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER))
    policy = _policy(percentage_rule={"enabled": True, "percentage": 60})

    result = _machine().approve(expense, "mgr-1", policy, "Looks fine")

    assert result.status == ExpenseStatus.APPROVED
    assert result.current_approver is None
    step = result.approval_flow[0]
    assert step.status == StepStatus.APPROVED
    assert step.comments == "Looks fine"
    assert step.timestamp == FIXED_TIME


def test_unmatched_rule_advances_to_next_approver() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("fin-1", UserRole.MANAGER))
    policy = _policy(percentage_rule={"enabled": True, "percentage": 100})

    result = _machine().approve(expense, "mgr-1", policy)

    assert result.status == ExpenseStatus.PENDING
    assert result.current_approver == "fin-1"
    assert [s.status for s in result.approval_flow] == [
        StepStatus.APPROVED,
        StepStatus.PENDING,
    ]


def test_next_approver_is_lowest_pending_order_above_current() -> None:
    expense = _expense(
        ("mgr-1", UserRole.MANAGER),
        ("fin-1", UserRole.MANAGER),
        ("admin-1", UserRole.ADMIN),
    )
    expense.approval_flow[1].status = StepStatus.SKIPPED

    result = _machine().approve(expense, "mgr-1", CompanyPolicy.default())

    assert result.current_approver == "admin-1"


def test_specific_approver_completes_early() -> None:
    expense = _expense(
        ("mgr-1", UserRole.MANAGER),
        ("fin-1", UserRole.MANAGER),
        ("admin-1", UserRole.ADMIN),
    )
    policy = _policy(hybrid_rule={"enabled": True, "percentage": 100, "specific_role": "manager"})

    result = _machine().approve(expense, "mgr-1", policy)

    assert result.status == ExpenseStatus.APPROVED
    assert result.current_approver is None
    assert [s.status for s in result.approval_flow[1:]] == [
        StepStatus.PENDING,
        StepStatus.PENDING,
    ]


def test_exhausted_chain_is_approved_by_default() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("fin-1", UserRole.MANAGER))
    policy = _policy(specific_approver_rule={"enabled": True, "approver_role": "admin"})
    machine = _machine()

    after_first = machine.approve(expense, "mgr-1", policy)
    final = machine.approve(after_first, "fin-1", policy)

    assert after_first.status == ExpenseStatus.PENDING
    assert final.status == ExpenseStatus.APPROVED
    assert final.current_approver is None


def test_single_rejection_vetoes_the_expense() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("admin-1", UserRole.ADMIN))

    result = _machine().reject(expense, "mgr-1", "Duplicate claim")

    assert result.status == ExpenseStatus.REJECTED
    assert result.current_approver is None
    assert result.approval_flow[0].status == StepStatus.REJECTED
    assert result.approval_flow[1].status == StepStatus.PENDING


@pytest.mark.parametrize("policy", POLICIES)
def test_rejection_dominates_prior_approvals(policy: CompanyPolicy) -> None:
    """Earlier approvals never outweigh a later rejection, whatever the rules."""

    expense = _expense(
        ("mgr-1", UserRole.MANAGER),
        ("fin-1", UserRole.MANAGER),
        ("admin-1", UserRole.ADMIN),
    )
    expense.approval_flow[0].status = StepStatus.APPROVED
    expense.approval_flow[1].status = StepStatus.APPROVED
    expense.current_approver = "admin-1"

    result = _machine().reject(expense, "admin-1", "Out of policy")

    assert result.status == ExpenseStatus.REJECTED
    assert result.current_approver is None
    with pytest.raises(StateError):
        _machine().approve(result, "admin-1", policy)


def test_reject_requires_comments() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER))

    with pytest.raises(ExpenseValidationError):
        _machine().reject(expense, "mgr-1", "   ")


def test_history_is_appended_in_order() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("fin-1", UserRole.MANAGER))
    machine = _machine()

    advanced = machine.approve(expense, "mgr-1", CompanyPolicy.default(), "ok")
    rejected = machine.reject(advanced, "fin-1", "Missing receipt")

    assert [(e.approver_id, e.action) for e in rejected.approval_history] == [
        ("mgr-1", ApprovalAction.APPROVED),
        ("fin-1", ApprovalAction.REJECTED),
    ]
    assert rejected.approval_history[0] == advanced.approval_history[0]
    assert rejected.approval_history[1].comments == "Missing receipt"


def test_history_entries_are_frozen() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER))
    approved = _machine().approve(expense, "mgr-1", CompanyPolicy.default())

    with pytest.raises(ValidationError):
        approved.approval_history[0].comments = "rewritten"


def test_input_expense_is_not_mutated() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER))
    before = expense.model_dump_json()

    _machine().approve(expense, "mgr-1", CompanyPolicy.default())

    assert expense.model_dump_json() == before


def test_wrong_approver_is_not_authorized() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("fin-1", UserRole.MANAGER))

    with pytest.raises(AuthorizationError):
        _machine().approve(expense, "fin-1", CompanyPolicy.default())
    with pytest.raises(AuthorizationError):
        _machine().reject(expense, "outsider", "no")


def test_repeat_approval_fails_and_leaves_state_unchanged() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER), ("fin-1", UserRole.MANAGER))
    machine = _machine()
    advanced = machine.approve(expense, "mgr-1", CompanyPolicy.default())
    snapshot = advanced.model_dump_json()

    with pytest.raises(StateError):
        machine.approve(advanced, "mgr-1", CompanyPolicy.default())

    assert advanced.model_dump_json() == snapshot


def test_terminal_expense_accepts_no_actions() -> None:
    expense = _expense(("mgr-1", UserRole.MANAGER))
    machine = _machine()
    approved = machine.approve(expense, "mgr-1", CompanyPolicy.default())
    snapshot = approved.model_dump_json()

    with pytest.raises(StateError):
        machine.approve(approved, "mgr-1", CompanyPolicy.default())
    with pytest.raises(StateError):
        machine.reject(approved, "mgr-1", "Too late")

    assert approved.model_dump_json() == snapshot
