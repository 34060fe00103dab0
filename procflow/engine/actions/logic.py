"""Pure data actions: COMPARE, CALCULATE, VALIDATE and GATEWAY."""

from __future__ import annotations

import ast
import operator
import re
from datetime import datetime
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from procflow.engine.actions.registry import ActionContext, ActionResult
from procflow.engine.variables import MISSING, lookup, resolve_template, resolve_value
from procflow.types import CalculateConfig, CompareConfig, GatewayConfig, Step, ValidateConfig

_SAFE_FORMULA = re.compile(r"^[0-9+\-*/().\s]+$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE = re.compile(r"^\+?[0-9\s\-().]{7,20}$")
_DATETIME = TypeAdapter(datetime)

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def operand(variables: dict[str, Any], ref: Any) -> Any:
    """Value of a config reference: a template, a bare context path, or a literal."""
    if not isinstance(ref, str):
        return ref
    if "{{" in ref:
        return resolve_value(ref, variables)
    found = lookup(variables, ref)
    return None if found is MISSING else found


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    # numbers would otherwise be read as unix timestamps
    if _to_float(text) is not None:
        return None
    try:
        return _DATETIME.validate_python(text)
    except ValidationError:
        return None


# ── COMPARE ─────────────────────────────────────────────────────────────────

def evaluate_comparison(a: Any, b: Any, comparison_type: str = "exact") -> dict[str, Any]:
    """Compare two values; returns ``{"match", "diff", "details"}``."""
    if a is None or b is None:
        return {"match": False, "diff": "One or both values are missing", "details": None}

    if comparison_type == "exact":
        match = str(a) == str(b)
        return {
            "match": match,
            "diff": "Values match exactly" if match else f'Mismatch: "{a}" vs "{b}"',
            "details": {"value_a": a, "value_b": b},
        }

    if comparison_type == "numeric":
        num_a, num_b = _to_float(a), _to_float(b)
        if num_a is None or num_b is None:
            return {"match": False, "diff": "One or both values are not numeric", "details": None}
        difference = abs(num_a - num_b)
        match = num_a == num_b
        return {
            "match": match,
            "diff": "Values match numerically" if match else f"Numeric difference: {difference}",
            "details": {"value_a": num_a, "value_b": num_b, "difference": difference},
        }

    if comparison_type == "date":
        date_a, date_b = _to_datetime(a), _to_datetime(b)
        if date_a is None or date_b is None:
            return {"match": False, "diff": "One or both values are not valid dates", "details": None}
        match = date_a == date_b
        return {
            "match": match,
            "diff": "Dates match" if match else f"Date difference: {date_a.date()} vs {date_b.date()}",
            "details": {"value_a": date_a.isoformat(), "value_b": date_b.isoformat()},
        }

    if comparison_type == "fuzzy":
        str_a, str_b = str(a).strip().lower(), str(b).strip().lower()
        match = str_a == str_b or str_a in str_b or str_b in str_a
        return {
            "match": match,
            "diff": "Values match (fuzzy)" if match else f'Fuzzy mismatch: "{a}" vs "{b}"',
            "details": {"value_a": a, "value_b": b},
        }

    return {"match": False, "diff": f"Unknown comparison type {comparison_type!r}", "details": None}


async def compare(step: Step, ctx: ActionContext) -> ActionResult:
    cfg: CompareConfig = step.config
    if not cfg.target_a or not cfg.target_b:
        return ActionResult.failure("Both target_a and target_b must be specified for comparison")
    a = operand(ctx.variables, cfg.target_a)
    b = operand(ctx.variables, cfg.target_b)
    result = evaluate_comparison(a, b, cfg.comparison_type)
    output = {**result, "value_a": a, "value_b": b}
    if result["match"]:
        return ActionResult(output=output)
    return ActionResult.failure(result["diff"], output=output)


# ── CALCULATE ───────────────────────────────────────────────────────────────

def _eval_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def _num_text(value: float) -> str:
    text = repr(value)
    return format(value, "f") if "e" in text else text


def evaluate_formula(formula: str) -> float:
    """Evaluate an arithmetic expression of numbers, + - * / and parentheses."""
    if not _SAFE_FORMULA.match(formula):
        raise ValueError("Invalid characters in formula")
    return _eval_node(ast.parse(formula.strip(), mode="eval"))


async def calculate(step: Step, ctx: ActionContext) -> ActionResult:
    cfg: CalculateConfig = step.config
    if not cfg.formula:
        return ActionResult.failure("Formula is required for CALCULATE")

    values: dict[str, float] = {}
    for name, ref in cfg.variables.items():
        values[name] = _to_float(operand(ctx.variables, ref)) or 0.0

    formula = resolve_template(cfg.formula, ctx.variables)
    # longest names first so "total" is not clobbered by "to"
    for name in sorted(values, key=len, reverse=True):
        formula = re.sub(rf"\b{re.escape(name)}\b", _num_text(values[name]), formula)

    try:
        result = evaluate_formula(formula)
    except (ValueError, SyntaxError, ZeroDivisionError) as exc:
        return ActionResult.failure(f"Calculation failed: {exc}")
    return ActionResult(output={"result": result, "formula": formula, "variables": values})


# ── VALIDATE ────────────────────────────────────────────────────────────────

def check_rule(rule: str, value: Any, expected: Any = None, pattern: Optional[str] = None) -> tuple[bool, str]:
    """Apply a validation rule; returns (passed, error message)."""
    if rule == "IS_NOT_EMPTY":
        ok = value is not None and str(value).strip() != "" and value != [] and value != {}
        return ok, "" if ok else "Value is empty"

    if rule == "IS_VALID_EMAIL":
        ok = value is not None and bool(_EMAIL.match(str(value).strip()))
        return ok, "" if ok else f'"{value}" is not a valid email address'

    if rule == "IS_VALID_PHONE":
        ok = value is not None and bool(_PHONE.match(str(value).strip()))
        return ok, "" if ok else f'"{value}" is not a valid phone number'

    if rule in ("GREATER_THAN", "LESS_THAN"):
        num, ref = _to_float(value), _to_float(expected)
        if num is None or ref is None:
            return False, f"Both values must be numbers for {rule} comparison"
        if rule == "GREATER_THAN":
            return (num > ref), "" if num > ref else f"Value {num} is not greater than {ref}"
        return (num < ref), "" if num < ref else f"Value {num} is not less than {ref}"

    if rule == "EQUAL":
        ok = str(value) == str(expected)
        return ok, "" if ok else f'Value "{value}" does not equal "{expected}"'

    if rule == "CONTAINS":
        haystack = "" if value is None else str(value)
        needle = "" if expected is None else str(expected)
        ok = needle in haystack
        return ok, "" if ok else f'Value "{haystack}" does not contain "{needle}"'

    if rule == "REGEX":
        if not pattern:
            raise ValueError("validation_rule (regex pattern) is required for REGEX validation")
        ok = re.search(pattern, "" if value is None else str(value)) is not None
        return ok, "" if ok else "Value does not match required pattern"

    raise ValueError(f"Unknown validation rule {rule!r}")


async def validate(step: Step, ctx: ActionContext) -> ActionResult:
    cfg: ValidateConfig = step.config
    if not cfg.target:
        return ActionResult.failure("target is required for VALIDATE")

    value = operand(ctx.variables, cfg.target)
    expected = resolve_value(cfg.value, ctx.variables)
    try:
        passed, message = check_rule(cfg.rule, value, expected, cfg.validation_rule)
    except (ValueError, re.error) as exc:
        return ActionResult.failure(str(exc))

    if passed:
        return ActionResult(output={"valid": True, "value": value})
    error = cfg.error_message or message
    return ActionResult.failure(error, output={"valid": False, "value": value, "error": error})


# ── GATEWAY ─────────────────────────────────────────────────────────────────

def _condition_holds(operator_name: str, left: Any, right: Any) -> bool:
    if operator_name == "is_empty":
        return left is None or str(left).strip() == ""
    if operator_name == "is_not_empty":
        return not (left is None or str(left).strip() == "")
    if operator_name in ("gt", "gte", "lt", "lte"):
        a, b = _to_float(left), _to_float(right)
        if a is None or b is None:
            return False
        return {"gt": a > b, "gte": a >= b, "lt": a < b, "lte": a <= b}[operator_name]
    a, b = "" if left is None else str(left), "" if right is None else str(right)
    if operator_name == "eq":
        return a == b
    if operator_name == "neq":
        return a != b
    if operator_name == "contains":
        return b in a
    if operator_name == "not_contains":
        return b not in a
    if operator_name == "starts_with":
        return a.startswith(b)
    return False


async def gateway(step: Step, ctx: ActionContext) -> ActionResult:
    """Evaluate routing conditions and record the branch taken.

    Runs are strictly linear, so the chosen branch is informational only.
    """
    cfg: GatewayConfig = step.config
    for condition in cfg.conditions:
        left = operand(ctx.variables, condition.variable)
        right = resolve_value(condition.value, ctx.variables)
        if _condition_holds(condition.operator, left, right):
            return ActionResult(output={
                "matched": True,
                "label": condition.label,
                "next_step_id": condition.next_step_id,
            })
    return ActionResult(output={
        "matched": False,
        "label": None,
        "next_step_id": cfg.default_next_step_id,
    })
