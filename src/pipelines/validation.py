"""Deterministic rules, the AI cross-check and the commit/block decision."""

import math
import re
from dataclasses import dataclass
from typing import Any

from src.errors import InferenceFailed, ValidateCallFailed
from src.inference.constants import MAX_NEW_TOKENS_VALIDATOR
from src.logger import get_logger
from src.models import (
    ParsedResult,
    ResponseStatus,
    ValidationIssue,
    ValidatorVerdict,
    WorkflowAIConfig,
    stringify_value,
)
from src.pipelines.audit import AuditedInference
from src.prompts import build_validator_prompt

logger = get_logger(__name__)

# Leading number, as instruments print it: "1.020", "7.5 pH", "-3e2"
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_number(value: Any) -> float | None:
    """Parse the leading number of a value; None when there is none.

    Booleans are not numbers here.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if not match:
            return None
        number = float(match.group(1))
    else:
        return None
    return number if math.isfinite(number) else None


# --- Deterministic rules ---


def validate_deterministic(parsed: ParsedResult, config: WorkflowAIConfig) -> list[ValidationIssue]:
    """Apply required / numeric range / enum rules. Pure, no I/O."""
    issues: list[ValidationIssue] = []
    analytes = parsed.analytes

    for name in config.required_fields:
        if name not in parsed.meta and name not in analytes:
            issues.append(
                ValidationIssue(
                    severity="error",
                    field=name,
                    code="required",
                    message=f"Missing required field: {name}",
                )
            )

    for name, rule in config.numeric_rules.items():
        entry = analytes.get(name)
        if not isinstance(entry, dict) or not isinstance(rule, dict):
            continue
        number = parse_number(entry.get("value"))
        if number is None:
            continue
        low = parse_number(rule.get("min"))
        high = parse_number(rule.get("max"))
        shown = stringify_value(number)
        if low is not None and number < low:
            issues.append(
                ValidationIssue(
                    severity="warn",
                    field=name,
                    code="below_min",
                    message=f"Value {shown} < min {stringify_value(low)}",
                )
            )
        if high is not None and number > high:
            issues.append(
                ValidationIssue(
                    severity="warn",
                    field=name,
                    code="above_max",
                    message=f"Value {shown} > max {stringify_value(high)}",
                )
            )

    for name, allowed in config.enum_rules.items():
        entry = analytes.get(name)
        if not isinstance(entry, dict) or entry.get("value") is None:
            continue
        value = stringify_value(entry["value"])
        if value not in [stringify_value(a) for a in allowed or []]:
            issues.append(
                ValidationIssue(
                    severity="warn",
                    field=name,
                    code="enum_mismatch",
                    message=f"Unexpected value '{value}' for {name}",
                )
            )

    return issues


# --- AI cross-check ---


def run_ai_validator(
    config: WorkflowAIConfig,
    raw: dict[str, Any],
    parsed: ParsedResult,
    inference: AuditedInference,
) -> ValidatorVerdict:
    """Second-pass semantic check of the parsed map against raw input and rules.

    Raises:
        ValidateCallFailed: the call failed or returned an unknown status.
    """
    payload = {"raw": raw, "normalized": parsed.to_dict(), "rules": config.rules()}
    prompt = build_validator_prompt(config.validator_prompt, payload)
    try:
        verdict = inference.call(
            "validator",
            prompt,
            payload,
            max_new_tokens=MAX_NEW_TOKENS_VALIDATOR,
            expected_keys=("status", "issues"),
            decode=ValidatorVerdict.from_model_output,
        )
    except InferenceFailed as exc:
        raise ValidateCallFailed(f"AI validator failed: {exc.message}", exc) from exc

    logger.info("AI validator status=%s with %d issues", verdict.status, len(verdict.issues))
    return verdict


# --- Decision gate ---


@dataclass
class GateDecision:
    blocking: bool
    status: ResponseStatus


def decide(issues: list[ValidationIssue], verdict: ValidatorVerdict) -> GateDecision:
    """Block only when an error-severity issue exists AND the AI verdict is fail.

    A deterministic error alone does not block. This conjunction may not be
    deliberate policy and is pending product-owner confirmation; keep it
    until then.
    """
    has_error = any(issue.severity == "error" for issue in issues)
    if has_error and verdict.status == "fail":
        return GateDecision(blocking=True, status="fail")
    return GateDecision(blocking=False, status="warn" if issues else "ok")
