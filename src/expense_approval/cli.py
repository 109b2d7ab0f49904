"""Command-line tools for previewing approval chains and rule outcomes."""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pythonjsonlogger.json import JsonFormatter

from .chain import ApprovalChainBuilder
from .directory import InMemoryDirectory
from .exceptions import ExpenseWorkflowError
from .models import ApprovalStep, UserRef
from .policy import CompanyPolicy
from .rules import RuleEngine, approval_percentage

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expense-approval",
        description="Inspect expense approval chains and completion rules.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--log-format",
        default="text",
        choices=["text", "json"],
        help="Log line format written to stderr.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    chain_parser = subparsers.add_parser(
        "chain", help="Show the approval chain built for a scenario."
    )
    chain_parser.add_argument("scenario", type=Path, help="Path to scenario YAML.")

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Evaluate completion rules against scenario steps."
    )
    evaluate_parser.add_argument("scenario", type=Path, help="Path to scenario YAML.")
    return parser


def _configure_logging(level: str, log_format: str) -> None:
    if log_format == "json":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            JsonFormatter(
                LOG_FORMAT,
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
        logging.basicConfig(level=level, handlers=[handler])
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def _load_scenario(path: Path) -> dict[str, Any]:
    try:
        raw_data = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Scenario file not found: {path}"
        raise FileNotFoundError(msg) from exc

    try:
        payload = yaml.safe_load(raw_data) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in scenario file: {path}"
        raise ValueError(msg) from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Scenario file must contain a mapping: {path}")
    return payload


def _scenario_policy(scenario: dict[str, Any]) -> CompanyPolicy:
    if "policy" in scenario:
        return CompanyPolicy.from_mapping(scenario["policy"] or {})
    return CompanyPolicy.from_file()


def _run_chain(scenario: dict[str, Any]) -> None:
    policy = _scenario_policy(scenario)
    directory = InMemoryDirectory(
        UserRef.model_validate(user) for user in scenario.get("users") or []
    )
    employee_id = scenario.get("employee_id")
    if not employee_id:
        raise ValueError("Scenario must include employee_id")
    try:
        amount = Decimal(str(scenario.get("amount")))
    except InvalidOperation as exc:
        raise ValueError("Scenario must include a numeric amount") from exc

    employee = directory.get_user(str(employee_id))
    chain = ApprovalChainBuilder().build(employee, amount, policy, directory)
    for step in chain.steps:
        print(f"{step.order}. {step.approver_id} ({step.approver_role.value})")
    print(f"Current approver: {chain.current_approver}")


def _run_evaluate(scenario: dict[str, Any]) -> None:
    policy = _scenario_policy(scenario)
    steps = [ApprovalStep.model_validate(step) for step in scenario.get("steps") or []]
    engine = RuleEngine.from_policy(policy)

    print(f"Approval percentage: {approval_percentage(steps):.1f}%")
    for result in engine.results(steps):
        state = "disabled"
        if result.enabled:
            state = "satisfied" if result.satisfied else "not satisfied"
        print(f"{result.rule_id}: {state}")
    print(f"Complete: {'yes' if engine.evaluate(steps) else 'no'}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level, args.log_format)

    try:
        scenario = _load_scenario(args.scenario)
        if args.command == "chain":
            _run_chain(scenario)
        else:
            _run_evaluate(scenario)
    except ValidationError as exc:
        print("Error: scenario validation failed.", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except (ExpenseWorkflowError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
