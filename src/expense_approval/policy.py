"""Company approval policy: amount thresholds and completion rule settings.

Policies are plain configuration. They are loaded from YAML, validated with
pydantic and handed read-only to the chain builder and the rule engine. Each
rule block and the threshold block merge key by key over the defaults, so a
policy file only needs to mention the settings it changes.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any, Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ConfigurationError

Percentage = Annotated[float, Field(ge=0, le=100)]
Threshold = Annotated[Decimal, Field(ge=0)]

DEFAULT_THRESHOLDS: dict[str, Decimal] = {
    "manager_approval": Decimal("1000"),
    "finance_approval": Decimal("5000"),
    "director_approval": Decimal("10000"),
}

DEFAULT_RULES: dict[str, dict[str, Any]] = {
    "percentage_rule": {"enabled": False, "percentage": 60},
    "specific_approver_rule": {"enabled": False, "approver_role": "admin"},
    "hybrid_rule": {"enabled": False, "percentage": 60, "specific_role": "admin"},
}


class ApprovalThresholds(BaseModel):
    """Monetary cutoffs, in company currency, that add approvers to a chain."""

    manager_approval: Threshold = Field(
        ..., description="Amount at which manager review is expected"
    )
    finance_approval: Threshold = Field(
        ..., description="Amount at or above which the finance approver is added"
    )
    director_approval: Threshold = Field(
        ..., description="Amount at or above which a director (admin) is added"
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class PercentageRuleConfig(BaseModel):
    enabled: bool = False
    percentage: Percentage = 60

    model_config = ConfigDict(frozen=True, extra="forbid")


class SpecificApproverRuleConfig(BaseModel):
    enabled: bool = False
    approver_role: str = Field(default="admin", min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class HybridRuleConfig(BaseModel):
    enabled: bool = False
    percentage: Percentage = 60
    specific_role: str = Field(default="admin", min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class CompletionRules(BaseModel):
    """Company-defined criteria that can complete an expense early."""

    percentage_rule: PercentageRuleConfig = Field(default_factory=PercentageRuleConfig)
    specific_approver_rule: SpecificApproverRuleConfig = Field(
        default_factory=SpecificApproverRuleConfig
    )
    hybrid_rule: HybridRuleConfig = Field(default_factory=HybridRuleConfig)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def any_enabled(self) -> bool:
        return (
            self.percentage_rule.enabled
            or self.specific_approver_rule.enabled
            or self.hybrid_rule.enabled
        )


class CompanyPolicy(BaseModel):
    """Per-company configuration read by the workflow engine."""

    currency: str = Field(
        default="USD", pattern=r"^[A-Z]{3}$", description="Company currency code"
    )
    thresholds: ApprovalThresholds
    rules: CompletionRules = Field(default_factory=CompletionRules)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def default(cls) -> CompanyPolicy:
        return cls.from_mapping({})

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> CompanyPolicy:
        """Build a policy from a raw mapping, filling gaps from the defaults."""

        if not isinstance(config, Mapping):
            raise ConfigurationError("Company policy configuration must be a mapping")
        thresholds = dict(DEFAULT_THRESHOLDS)
        thresholds.update(_block(config.get("thresholds"), "thresholds"))
        rules_cfg = _block(config.get("rules"), "rules")
        unknown = set(rules_cfg) - set(DEFAULT_RULES)
        if unknown:
            raise ConfigurationError(
                f"Unknown completion rules in policy: {', '.join(sorted(map(str, unknown)))}"
            )
        rules = {key: _load_rule_config(rules_cfg, key) for key in DEFAULT_RULES}
        currency = str(config.get("currency") or "USD").strip().upper()
        return _validated({"currency": currency, "thresholds": thresholds, "rules": rules})

    @classmethod
    def from_yaml(cls, content: str) -> CompanyPolicy:
        """Load a policy from YAML content."""

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid policy YAML: {exc}") from exc
        return cls.from_mapping(data)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> CompanyPolicy:
        """Load a policy from a YAML file, defaulting to the bundled one."""

        target_path = Path(path) if path is not None else _default_policy_path()
        if target_path is None:
            raise FileNotFoundError("No company_policy.yaml configuration file found")
        content = target_path.read_text(encoding="utf-8")
        return cls.from_yaml(content)

    @classmethod
    def from_environment(cls, env_var: str = "COMPANY_POLICY") -> CompanyPolicy:
        """Load a policy from an environment variable containing YAML."""

        content = os.getenv(env_var)
        if not content:
            raise ConfigurationError(
                f"Environment variable '{env_var}' is not set or empty"
            )
        return cls.from_yaml(content)

    def merged(self, updates: Mapping[str, Any]) -> CompanyPolicy:
        """Return a new policy with partial updates applied block by block."""

        updates = _block(updates, "policy update")
        current = self.model_dump()
        for key, block in _block(updates.get("rules"), "rules").items():
            if key not in current["rules"]:
                raise ConfigurationError(f"Unknown completion rule '{key}'")
            current["rules"][key] = {**current["rules"][key], **_block(block, key)}
        thresholds = _block(updates.get("thresholds"), "thresholds")
        current["thresholds"] = {**current["thresholds"], **thresholds}
        if updates.get("currency"):
            current["currency"] = str(updates["currency"]).strip().upper()
        return _validated(current)


def _block(value: Any, name: str) -> Mapping[str, Any]:
    """Return a configuration block, treating a missing or empty one as ``{}``."""

    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(
            f"Policy section '{name}' must be a mapping, got {type(value).__name__}"
        )
    return value


def _load_rule_config(rules_cfg: Mapping[str, Any], key: str) -> dict[str, Any]:
    merged = DEFAULT_RULES[key].copy()
    merged.update(_block(rules_cfg.get(key), key))
    return merged


def _validated(payload: Mapping[str, Any]) -> CompanyPolicy:
    try:
        return CompanyPolicy.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid company policy: {exc}") from exc


def _default_policy_path() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "company_policy.yaml"
        if candidate.exists():
            return candidate
    return None


class PolicyStore(Protocol):
    """Source of company policies."""

    def get(self, company_id: str) -> CompanyPolicy: ...


class InMemoryPolicyStore:
    """Policies held in memory, keyed by company."""

    def __init__(
        self,
        policies: Mapping[str, CompanyPolicy] | None = None,
        default: CompanyPolicy | None = None,
    ) -> None:
        self._policies: dict[str, CompanyPolicy] = dict(policies or {})
        self._default = default

    def get(self, company_id: str) -> CompanyPolicy:
        policy = self._policies.get(company_id, self._default)
        if policy is None:
            raise ConfigurationError(f"No policy configured for company '{company_id}'")
        return policy

    def set(self, company_id: str, policy: CompanyPolicy) -> None:
        self._policies[company_id] = policy

    def update(self, company_id: str, updates: Mapping[str, Any]) -> CompanyPolicy:
        """Apply a partial update to a company's policy and store the result."""

        policy = self.get(company_id).merged(updates)
        self._policies[company_id] = policy
        return policy
