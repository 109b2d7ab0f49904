"""Test configuration for adding src to the import path."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from itertools import count
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from expense_approval import (
    ApprovalStep,
    CompanyPolicy,
    ExpenseLifecycleController,
    InMemoryDirectory,
    InMemoryExpenseRepository,
    InMemoryPolicyStore,
    RateTableConverter,
    StaticRateProvider,
    StepStatus,
    UserRef,
    UserRole,
)

COMPANY = "acme"


@pytest.fixture()
def user_factory() -> Callable[..., UserRef]:
    def _factory(user_id: str, role: UserRole = UserRole.EMPLOYEE, **overrides: object) -> UserRef:
        data: dict[str, object] = {
            "user_id": user_id,
            "company_id": COMPANY,
            "role": role,
            "name": user_id.title(),
        }
        data.update(overrides)
        return UserRef(**data)

    return _factory


@pytest.fixture()
def users(user_factory: Callable[..., UserRef]) -> dict[str, UserRef]:
    """A small org: one admin, a designated finance approver, a manager and staff."""

    return {
        "admin": user_factory("admin-1", UserRole.ADMIN),
        "finance": user_factory(
            "fin-1",
            UserRole.MANAGER,
            is_manager_approver=True,
            is_finance_approver=True,
        ),
        "manager": user_factory("mgr-1", UserRole.MANAGER),
        "employee": user_factory(
            "emp-1", manager_id="mgr-1", is_manager_approver=True
        ),
        "solo": user_factory("emp-2"),
        "teammate": user_factory("emp-3", manager_id="mgr-1"),
    }


@pytest.fixture()
def directory(users: dict[str, UserRef]) -> InMemoryDirectory:
    return InMemoryDirectory(users.values())


@pytest.fixture()
def policy() -> CompanyPolicy:
    return CompanyPolicy.default()


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    ticks = count()
    start = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
    return lambda: start + timedelta(minutes=next(ticks))


@pytest.fixture()
def converter() -> RateTableConverter:
    return RateTableConverter(
        StaticRateProvider({"EUR": {"USD": "1.10"}, "USD": {"EUR": "0.91"}})
    )


@pytest.fixture()
def repository(clock: Callable[[], datetime]) -> InMemoryExpenseRepository:
    return InMemoryExpenseRepository(clock=clock)


@pytest.fixture()
def controller_factory(
    repository: InMemoryExpenseRepository,
    directory: InMemoryDirectory,
    policy: CompanyPolicy,
    converter: RateTableConverter,
    clock: Callable[[], datetime],
) -> Callable[..., ExpenseLifecycleController]:
    def _factory(**overrides: object) -> ExpenseLifecycleController:
        kwargs: dict[str, object] = {
            "repository": repository,
            "directory": directory,
            "policies": InMemoryPolicyStore({COMPANY: policy}),
            "converter": converter,
            "clock": clock,
        }
        kwargs.update(overrides)
        return ExpenseLifecycleController(**kwargs)

    return _factory


@pytest.fixture()
def controller(
    controller_factory: Callable[..., ExpenseLifecycleController],
) -> ExpenseLifecycleController:
    return controller_factory()


@pytest.fixture()
def step_factory() -> Callable[..., ApprovalStep]:
    def _factory(
        order: int,
        status: StepStatus = StepStatus.PENDING,
        role: UserRole = UserRole.MANAGER,
        approver_id: str | None = None,
    ) -> ApprovalStep:
        return ApprovalStep(
            approver_id=approver_id or f"approver-{order}",
            approver_role=role,
            order=order,
            status=status,
        )

    return _factory
