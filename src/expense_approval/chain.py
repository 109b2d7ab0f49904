"""Construction of the ordered approval chain for a new expense."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from .directory import Directory
from .exceptions import ConfigurationError
from .models import ApprovalStep, UserRef
from .policy import CompanyPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered steps plus the user entitled to act first."""

    steps: tuple[ApprovalStep, ...]
    current_approver: str


class ApprovalChainBuilder:
    """Staff an approval chain from the org chart and amount thresholds.

    The chain is, in order: the employee's manager (when the employee is
    flagged for manager approval), the finance approver (at or above the
    finance threshold) and a director (at or above the director threshold).
    A user appears at most once. An otherwise empty chain falls back to the
    company admin.
    """

    def build(
        self,
        employee: UserRef,
        converted_amount: Decimal,
        policy: CompanyPolicy,
        directory: Directory,
    ) -> ApprovalChain:
        approvers: list[UserRef] = []

        def append(candidate: UserRef | None, reason: str) -> None:
            if candidate is None:
                logger.info(
                    "No %s approver resolvable for company %s",
                    reason,
                    employee.company_id,
                )
                return
            if any(existing.user_id == candidate.user_id for existing in approvers):
                logger.debug("%s approver %s already in chain", reason, candidate.user_id)
                return
            approvers.append(candidate)

        if employee.manager_id is not None and employee.is_manager_approver:
            append(directory.resolve_manager(employee), "manager")

        thresholds = policy.thresholds
        if converted_amount >= thresholds.finance_approval:
            append(directory.resolve_finance_approver(employee.company_id), "finance")
        if converted_amount >= thresholds.director_approval:
            append(directory.resolve_admin(employee.company_id), "director")

        if not approvers:
            admin = directory.resolve_admin(employee.company_id)
            if admin is None:
                raise ConfigurationError(
                    f"No approver can be resolved for company '{employee.company_id}'"
                )
            approvers.append(admin)

        steps = tuple(
            ApprovalStep(approver_id=user.user_id, approver_role=user.role, order=index)
            for index, user in enumerate(approvers, start=1)
        )
        logger.debug(
            "Built approval chain for %s: %s",
            employee.user_id,
            [step.approver_id for step in steps],
        )
        return ApprovalChain(steps=steps, current_approver=steps[0].approver_id)
