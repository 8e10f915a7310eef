"""
Data models for the workflow result pipeline.

All dataclasses passed between pipeline stages are defined here:
- Intake models: the inbound submission and its inline attachments
- Config models: the resolved AI configuration of a workflow version
- Task models: resolved task inputs and the partial analyte map a task yields
- Validation models: issues, the AI validator verdict and the response

Data flow:
1. SubmissionRequest is built from the inbound JSON payload
2. Tasks yield TaskOutput partial maps, folded into one canonical map
3. The AI parser answer becomes a ParsedResult
4. Deterministic and AI validation produce ValidationIssue lists
5. PipelineResponse is what the HTTP entry point returns
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Literal

from src.errors import InvalidSubmission, ParseFailed, ValidateCallFailed

Severity = Literal["error", "warn"]
VerdictStatus = Literal["ok", "warn", "fail"]
ResponseStatus = Literal["ok", "warn", "fail"]

DEFAULT_STEP_ID = "final_results"
DEFAULT_TEST_NAME = "Workflow Test"


def stringify_value(value: Any) -> str:
    """Render a scalar the way the UI and the stored rows expect it.

    Booleans become ``true``/``false`` and integral floats drop the ``.0``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


# --- Intake Models ---


@dataclass
class AttachmentRef:
    """A stored file linked to a submission, selected by tag."""

    tag: str
    file_url: str
    file_type: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"tag": self.tag, "file_url": self.file_url, "file_type": self.file_type}


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass
class SubmissionRequest:
    """Inbound submission for one workflow instance step."""

    workflow_instance_id: str
    step_id: str = DEFAULT_STEP_ID
    order_id: str | None = None
    patient_id: str | None = None
    lab_id: str | None = None
    test_group_id: str | None = None
    test_code: str | None = None
    test_name: str = DEFAULT_TEST_NAME
    sample_id: str | None = None
    review_status: str | None = None
    user_id: str | None = None
    results: dict[str, Any] = field(default_factory=dict)
    attachments: list[AttachmentRef] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SubmissionRequest":
        """Build a request from JSON, accepting snake_case and camelCase keys."""
        if not isinstance(payload, dict):
            raise InvalidSubmission("Request body must be a JSON object")

        results = payload.get("results") or {}
        if not isinstance(results, dict):
            raise InvalidSubmission("'results' must be a JSON object")

        workflow_instance_id = _pick(payload, "workflow_instance_id", "workflowInstanceId")
        if not workflow_instance_id:
            raise InvalidSubmission("workflow_instance_id is required")

        attachments = []
        for item in payload.get("attachments") or []:
            if not isinstance(item, dict):
                continue
            url = _pick(item, "file_url", "fileUrl", "url")
            tag = _pick(item, "tag")
            if not url or not tag:
                continue
            attachments.append(
                AttachmentRef(
                    tag=str(tag),
                    file_url=str(url),
                    file_type=str(_pick(item, "file_type", "fileType") or ""),
                )
            )

        def _opt(*keys: str) -> str | None:
            value = _pick(payload, *keys)
            return None if value is None else str(value)

        return cls(
            workflow_instance_id=str(workflow_instance_id),
            step_id=_opt("step_id", "stepId") or DEFAULT_STEP_ID,
            order_id=_opt("order_id", "orderId"),
            patient_id=_opt("patient_id", "patientId")
            or (str(results["patient_id"]) if results.get("patient_id") else None),
            lab_id=_opt("lab_id", "labId"),
            test_group_id=_opt("test_group_id", "testGroupId"),
            test_code=_opt("test_code", "testCode"),
            test_name=str(
                results.get("test_name")
                or _pick(payload, "test_name", "testName")
                or DEFAULT_TEST_NAME
            ),
            sample_id=None if results.get("sample_id") is None else str(results["sample_id"]),
            review_status=(
                None if results.get("review_status") is None else str(results["review_status"])
            ),
            user_id=_opt("user_id", "userId"),
            results=results,
            attachments=attachments,
            payload=payload,
        )


def build_qc_summary(results: dict[str, Any]) -> str:
    """Summarize cup seal and strip QC flags, e.g. ``Cup seal: true | Strip QC: false``."""
    parts = []
    if results.get("cup_seal_intact") is not None:
        parts.append(f"Cup seal: {stringify_value(results['cup_seal_intact'])}")
    if results.get("qc_strip_valid") is not None:
        parts.append(f"Strip QC: {stringify_value(results['qc_strip_valid'])}")
    return " | ".join(parts)


# --- Config Models ---


@dataclass
class WorkflowAIConfig:
    """AI configuration and rule sets of one workflow version."""

    workflow_version_id: str
    parser_prompt: str = ""
    validator_prompt: str = ""
    analyte_map: dict[str, str] = field(default_factory=dict)
    unit_map: dict[str, str] = field(default_factory=dict)
    required_fields: list[str] = field(default_factory=list)
    numeric_rules: dict[str, dict[str, float | None]] = field(default_factory=dict)
    enum_rules: dict[str, list[str]] = field(default_factory=dict)

    def rules(self) -> dict[str, Any]:
        """Rule sets in the shape handed to the AI validator."""
        return {
            "required_fields": list(self.required_fields),
            "numeric_rules": dict(self.numeric_rules),
            "enum_rules": dict(self.enum_rules),
        }


# --- Task Models ---


@dataclass(frozen=True)
class TaskInputs:
    """Inputs resolved from a task's input_selector."""

    attachments: tuple[AttachmentRef, ...] = ()
    text_fields: tuple[str, ...] = ()

    def snapshot(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        if self.text_fields:
            data["text_fields"] = list(self.text_fields)
        return data


@dataclass(frozen=True)
class TaskOutput:
    """Partial canonical map produced by one task, keyed by raw analyte name."""

    analytes: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"analytes": {k: dict(v) for k, v in self.analytes.items()}}


# --- Parser Models ---


@dataclass
class ParsedResult:
    """Canonical ``{meta, analytes}`` answer of the AI parser."""

    meta: dict[str, Any] = field(default_factory=dict)
    analytes: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_model_output(cls, data: dict[str, Any]) -> "ParsedResult":
        """Validate the parser answer shape or raise ParseFailed."""
        analytes = data.get("analytes")
        if not isinstance(analytes, dict):
            raise ParseFailed("Parser response has no 'analytes' object")
        meta = data.get("meta") or {}
        if not isinstance(meta, dict):
            raise ParseFailed("Parser response 'meta' is not an object")

        normalized: dict[str, dict[str, Any]] = {}
        for name, entry in analytes.items():
            if isinstance(entry, dict):
                normalized[str(name)] = {
                    "value": entry.get("value", ""),
                    "unit": entry.get("unit") or "",
                }
            else:
                normalized[str(name)] = {"value": entry, "unit": ""}
        return cls(meta=dict(meta), analytes=normalized)

    def to_dict(self) -> dict[str, Any]:
        return {"meta": dict(self.meta), "analytes": dict(self.analytes)}


# --- Validation Models ---


@dataclass
class ValidationIssue:
    """A finding from either validator."""

    severity: Severity
    field: str | None
    message: str
    code: str | None = None
    suggestion: str | None = None

    @classmethod
    def from_ai(cls, item: Any) -> "ValidationIssue":
        """Normalize an AI validator issue. Unknown severities count as errors."""
        if not isinstance(item, dict):
            return cls(severity="error", field=None, message=str(item))
        severity = str(item.get("severity") or "error").lower()
        return cls(
            severity="warn" if severity in ("warn", "warning") else "error",
            field=None if item.get("field") is None else str(item["field"]),
            message=str(item.get("message") or item.get("field") or "Unspecified issue"),
            code=None if item.get("code") is None else str(item["code"]),
            suggestion=None if item.get("suggestion") is None else str(item["suggestion"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidatorVerdict:
    """Answer of the AI validator."""

    status: VerdictStatus
    issues: list[ValidationIssue] = field(default_factory=list)

    @classmethod
    def from_model_output(cls, data: dict[str, Any]) -> "ValidatorVerdict":
        status = str(data.get("status") or "").lower()
        if status not in ("ok", "warn", "fail"):
            raise ValidateCallFailed(f"Validator returned unknown status {status!r}")
        raw_issues = data.get("issues") or []
        if not isinstance(raw_issues, list):
            raise ValidateCallFailed("Validator 'issues' is not a list")
        return cls(
            status=status,  # type: ignore[arg-type]
            issues=[ValidationIssue.from_ai(i) for i in raw_issues],
        )


@dataclass
class PipelineResponse:
    """Body returned to the caller."""

    status: ResponseStatus
    workflow_result_id: str
    result_id: str | None = None
    issues: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "status": self.status,
            "workflow_result_id": self.workflow_result_id,
        }
        if self.result_id is not None:
            body["result_id"] = self.result_id
        if self.issues:
            body["issues"] = [i.to_dict() for i in self.issues]
        return body
