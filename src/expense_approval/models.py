"""Core models for expenses, approval chains and users."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .receipts import ReceiptExtraction, ReceiptRef


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExpenseStatus(str, Enum):
    """Lifecycle status of an expense."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepStatus(str, Enum):
    """Status of a single approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ApprovalAction(str, Enum):
    """Action recorded in an expense's approval history."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ExpenseCategory(str, Enum):
    """Categories for submitted expenses."""

    TRAVEL = "travel"
    MEALS = "meals"
    ACCOMMODATION = "accommodation"
    TRANSPORT = "transport"
    OFFICE_SUPPLIES = "office_supplies"
    ENTERTAINMENT = "entertainment"
    OTHER = "other"


class UserRole(str, Enum):
    """Organizational role of a user."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


class UserRef(BaseModel):
    """Directory entry for a user taking part in the workflow."""

    user_id: str = Field(..., min_length=1, description="Unique user identifier")
    company_id: str = Field(..., min_length=1, description="Owning company")
    role: UserRole = Field(..., description="Organizational role")
    name: str | None = Field(default=None, description="Display name")
    email: str | None = Field(default=None, description="Contact email")
    manager_id: str | None = Field(
        default=None, description="Identifier of the user's manager, if any"
    )
    is_manager_approver: bool = Field(
        default=False,
        description=(
            "For employees: expenses go to the manager first. For managers:"
            " eligible to act as finance approver"
        ),
    )
    is_finance_approver: bool = Field(
        default=False,
        description="Designated finance approver; preferred over other candidates",
    )
    is_active: bool = Field(default=True, description="Inactive users never resolve")


class ApprovalStep(BaseModel):
    """One slot in an expense's approval chain."""

    approver_id: str = Field(..., description="User entitled to act on this step")
    approver_role: UserRole = Field(
        ..., description="Role of the approver when the chain was built"
    )
    order: Annotated[int, Field(gt=0)] = Field(
        ..., description="Position in the chain; unique and increasing"
    )
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step status")
    comments: str | None = Field(default=None, description="Approver comments")
    timestamp: datetime | None = Field(
        default=None, description="When the approver acted"
    )


class ApprovalHistoryEntry(BaseModel):
    """Immutable audit record of a single approve or reject action."""

    approver_id: str = Field(..., description="User who acted")
    action: ApprovalAction = Field(..., description="Action taken")
    comments: str = Field(default="", description="Comments supplied with the action")
    timestamp: datetime = Field(..., description="When the action was recorded")

    model_config = ConfigDict(frozen=True)


class Expense(BaseModel):
    """Expense aggregate: submission data, approval chain and audit history."""

    expense_id: str = Field(
        default_factory=lambda: uuid4().hex, description="Unique expense identifier"
    )
    employee_id: str = Field(..., description="Submitting employee")
    company_id: str = Field(..., description="Company the expense belongs to")
    amount: Annotated[Decimal, Field(ge=0)] = Field(
        ..., description="Amount in the original currency"
    )
    original_currency: str = Field(..., description="ISO code of the amount")
    converted_amount: Annotated[Decimal, Field(ge=0)] = Field(
        ..., description="Amount in the company currency"
    )
    company_currency: str = Field(..., description="ISO code of the company currency")
    category: ExpenseCategory = Field(..., description="Expense category")
    description: str = Field(..., min_length=1, description="What was purchased")
    expense_date: date = Field(..., description="Date the expense was incurred")
    receipt: ReceiptRef | None = Field(default=None, description="Attached receipt")
    ocr_data: ReceiptExtraction | None = Field(
        default=None, description="Fields extracted from the receipt by OCR"
    )
    status: ExpenseStatus = Field(
        default=ExpenseStatus.PENDING, description="Lifecycle status"
    )
    current_approver: str | None = Field(
        default=None, description="User entitled to act next; None when terminal"
    )
    approval_flow: list[ApprovalStep] = Field(
        default_factory=list, description="Ordered approval chain"
    )
    approval_history: tuple[ApprovalHistoryEntry, ...] = Field(
        default_factory=tuple, description="Append-only log of approval actions"
    )
    version: int = Field(
        default=0, ge=0, description="Optimistic concurrency token, bumped on save"
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last write")

    @field_validator("original_currency", "company_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Invalid currency code '{value}'")
        return code

    @property
    def is_terminal(self) -> bool:
        return self.status != ExpenseStatus.PENDING

    def steps_for(self, user_id: str) -> list[ApprovalStep]:
        """Return the chain steps assigned to a user."""

        return [step for step in self.approval_flow if step.approver_id == user_id]

    def pending_step_for(self, user_id: str) -> ApprovalStep | None:
        for step in self.steps_for(user_id):
            if step.status == StepStatus.PENDING:
                return step
        return None

    def next_pending_step(self, after_order: int) -> ApprovalStep | None:
        """Return the pending step with the smallest order above ``after_order``."""

        candidates = [
            step
            for step in self.approval_flow
            if step.status == StepStatus.PENDING and step.order > after_order
        ]
        return min(candidates, key=lambda step: step.order, default=None)

    def last_action_by(self, user_id: str) -> ApprovalHistoryEntry | None:
        entries = [e for e in self.approval_history if e.approver_id == user_id]
        return entries[-1] if entries else None
