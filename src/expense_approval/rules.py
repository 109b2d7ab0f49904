"""Completion rules that decide whether an expense is approved early.

Each company can enable any combination of three rules. A rule looks only at
the approval steps of one expense and answers whether it is satisfied. The
engine ORs the enabled rules: one satisfied rule approves the expense, and
with no rule enabled the engine never approves on its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction

from .models import ApprovalStep, StepStatus
from .policy import CompanyPolicy


def approval_percentage(steps: Sequence[ApprovalStep]) -> float:
    """Return the share of steps with status Approved, as a percentage."""

    return float(_approved_share(steps) * 100)


def meets_percentage(steps: Sequence[ApprovalStep], percentage: float) -> bool:
    """Exact ``approval_percentage(steps) >= percentage`` without float rounding."""

    return _approved_share(steps) * 100 >= Fraction(Decimal(str(percentage)))


def _approved_share(steps: Sequence[ApprovalStep]) -> Fraction:
    if not steps:
        return Fraction(0)
    approved = sum(1 for step in steps if step.status == StepStatus.APPROVED)
    return Fraction(approved, len(steps))


def _approved_by_role(steps: Iterable[ApprovalStep], role: str) -> bool:
    wanted = role.strip().lower()
    return any(
        step.status == StepStatus.APPROVED and step.approver_role.value == wanted
        for step in steps
    )


@dataclass(frozen=True)
class RuleResult:
    """Outcome of evaluating one completion rule."""

    rule_id: str
    enabled: bool
    satisfied: bool
    message: str


class CompletionRule(ABC):
    """Base class for company completion rules."""

    rule_id: str

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled

    @abstractmethod
    def is_satisfied(self, steps: Sequence[ApprovalStep]) -> bool:
        """Return True when the steps meet the rule's criterion."""

    @abstractmethod
    def message(self) -> str:
        """Describe the rule's criterion."""

    def evaluate(self, steps: Sequence[ApprovalStep]) -> bool:
        return self.enabled and self.is_satisfied(steps)

    def result(self, steps: Sequence[ApprovalStep]) -> RuleResult:
        return RuleResult(
            rule_id=self.rule_id,
            enabled=self.enabled,
            satisfied=self.evaluate(steps),
            message=self.message(),
        )


class PercentageRule(CompletionRule):
    rule_id = "percentage_rule"

    def __init__(self, enabled: bool, percentage: float) -> None:
        super().__init__(enabled)
        self.percentage = float(percentage)

    def is_satisfied(self, steps: Sequence[ApprovalStep]) -> bool:
        return meets_percentage(steps, self.percentage)

    def message(self) -> str:
        return f"At least {self.percentage:g}% of approvers have approved."


class SpecificApproverRule(CompletionRule):
    rule_id = "specific_approver_rule"

    def __init__(self, enabled: bool, approver_role: str) -> None:
        super().__init__(enabled)
        self.approver_role = approver_role

    def is_satisfied(self, steps: Sequence[ApprovalStep]) -> bool:
        return _approved_by_role(steps, self.approver_role)

    def message(self) -> str:
        return f"An approver with role '{self.approver_role}' has approved."


class HybridRule(CompletionRule):
    rule_id = "hybrid_rule"

    def __init__(self, enabled: bool, percentage: float, specific_role: str) -> None:
        super().__init__(enabled)
        self.percentage = float(percentage)
        self.specific_role = specific_role

    def is_satisfied(self, steps: Sequence[ApprovalStep]) -> bool:
        return meets_percentage(steps, self.percentage) or _approved_by_role(
            steps, self.specific_role
        )

    def message(self) -> str:
        return (
            f"At least {self.percentage:g}% of approvers, or an approver with role"
            f" '{self.specific_role}', have approved."
        )


class RuleEngine:
    """OR-compose the enabled completion rules of a company policy."""

    def __init__(self, rules: Iterable[CompletionRule]):
        self.rules = list(rules)

    @classmethod
    def from_policy(cls, policy: CompanyPolicy) -> RuleEngine:
        cfg = policy.rules
        return cls(
            [
                PercentageRule(
                    enabled=cfg.percentage_rule.enabled,
                    percentage=cfg.percentage_rule.percentage,
                ),
                SpecificApproverRule(
                    enabled=cfg.specific_approver_rule.enabled,
                    approver_role=cfg.specific_approver_rule.approver_role,
                ),
                HybridRule(
                    enabled=cfg.hybrid_rule.enabled,
                    percentage=cfg.hybrid_rule.percentage,
                    specific_role=cfg.hybrid_rule.specific_role,
                ),
            ]
        )

    def evaluate(self, steps: Sequence[ApprovalStep]) -> bool:
        return any(rule.evaluate(steps) for rule in self.rules)

    def results(self, steps: Sequence[ApprovalStep]) -> list[RuleResult]:
        return [rule.result(steps) for rule in self.rules]

    def satisfied_rules(self, steps: Sequence[ApprovalStep]) -> list[str]:
        return [rule.rule_id for rule in self.rules if rule.evaluate(steps)]


def evaluate(steps: Sequence[ApprovalStep], policy: CompanyPolicy) -> bool:
    """Return True when any enabled rule of ``policy`` is satisfied."""

    return RuleEngine.from_policy(policy).evaluate(steps)
