"""Expense Approval Workflow - multi-step approval routing for expenses."""

from .approval import ApprovalStateMachine
from .chain import ApprovalChain, ApprovalChainBuilder
from .conversion import (
    CurrencyConverter,
    RateCache,
    RateProvider,
    RateTableConverter,
    StaticRateProvider,
)
from .directory import Directory, InMemoryDirectory
from .exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    DependencyError,
    ExpenseNotFoundError,
    ExpenseValidationError,
    ExpenseWorkflowError,
    StateError,
)
from .lifecycle import (
    ApprovalStats,
    ExpenseLifecycleController,
    ExpenseSubmission,
    ExpenseUpdate,
)
from .models import (
    ApprovalAction,
    ApprovalHistoryEntry,
    ApprovalStep,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    StepStatus,
    UserRef,
    UserRole,
)
from .policy import (
    ApprovalThresholds,
    CompanyPolicy,
    CompletionRules,
    HybridRuleConfig,
    InMemoryPolicyStore,
    PercentageRuleConfig,
    PolicyStore,
    SpecificApproverRuleConfig,
)
from .receipts import (
    ReceiptExtraction,
    ReceiptExtractor,
    ReceiptRef,
    TesseractReceiptExtractor,
    TextReceiptExtractor,
)
from .repository import ExpenseRepository, InMemoryExpenseRepository
from .rules import (
    CompletionRule,
    HybridRule,
    PercentageRule,
    RuleEngine,
    RuleResult,
    SpecificApproverRule,
    approval_percentage,
    meets_percentage,
)

__all__ = [
    "ApprovalAction",
    "ApprovalChain",
    "ApprovalChainBuilder",
    "ApprovalHistoryEntry",
    "ApprovalStateMachine",
    "ApprovalStats",
    "ApprovalStep",
    "ApprovalThresholds",
    "AuthorizationError",
    "CompanyPolicy",
    "CompletionRule",
    "CompletionRules",
    "ConfigurationError",
    "ConflictError",
    "CurrencyConverter",
    "DependencyError",
    "Directory",
    "Expense",
    "ExpenseCategory",
    "ExpenseLifecycleController",
    "ExpenseNotFoundError",
    "ExpenseRepository",
    "ExpenseStatus",
    "ExpenseSubmission",
    "ExpenseUpdate",
    "ExpenseValidationError",
    "ExpenseWorkflowError",
    "HybridRule",
    "HybridRuleConfig",
    "InMemoryDirectory",
    "InMemoryExpenseRepository",
    "InMemoryPolicyStore",
    "PercentageRule",
    "PercentageRuleConfig",
    "PolicyStore",
    "RateCache",
    "RateProvider",
    "RateTableConverter",
    "ReceiptExtraction",
    "ReceiptExtractor",
    "ReceiptRef",
    "RuleEngine",
    "RuleResult",
    "SpecificApproverRule",
    "SpecificApproverRuleConfig",
    "StateError",
    "StaticRateProvider",
    "StepStatus",
    "TesseractReceiptExtractor",
    "TextReceiptExtractor",
    "UserRef",
    "UserRole",
    "approval_percentage",
    "meets_percentage",
    "__version__",
]
__version__ = "0.1.0"
