"""Commit stage: write the canonical result, its values and workflow progress.

Everything here runs in one transaction on the invocation's session. Either
the result, every value row, the submission status and the progress pointer
land together, or none of them do.
"""

import re
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from src.db.base import utcnow
from src.db.repositories import ConfigRepository
from src.db.tables import (
    CanonicalResult,
    CanonicalResultValue,
    OrderWorkflowInstance,
    WorkflowResult,
)
from src.errors import CommitFailed
from src.logger import get_logger
from src.models import DEFAULT_STEP_ID, ParsedResult, SubmissionRequest, stringify_value

logger = get_logger(__name__)

QC_SUMMARY_NAME = "QC Summary"
DEFAULT_PATIENT_NAME = "Workflow Patient"
ENTERED_STATUS = "Entered"

_NUMBER = r"[+-]?(?:\d+\.?\d*|\.\d+)"
_RANGE = re.compile(rf"^\s*({_NUMBER})\s*-\s*({_NUMBER})\s*$")
_STRICT_NUMBER = re.compile(rf"^\s*{_NUMBER}\s*$")


def is_terminal_step(step_id: str) -> bool:
    return step_id == DEFAULT_STEP_ID or "complete" in step_id


def compute_flag(value: str, reference_range: str) -> str | None:
    """``H``/``L`` against a "low-high" range; None when either side is not numeric."""
    match = _RANGE.match(reference_range or "")
    if not match or not _STRICT_NUMBER.match(value or ""):
        return None
    number = float(value)
    low, high = float(match.group(1)), float(match.group(2))
    if number > high:
        return "H"
    if number < low:
        return "L"
    return None


def _text(results: dict[str, Any], key: str) -> str | None:
    value = results.get(key)
    return None if value is None else stringify_value(value)


def _upsert_result(session: Session, request: SubmissionRequest) -> CanonicalResult:
    stmt = select(CanonicalResult).where(CanonicalResult.test_name == request.test_name)
    if request.order_id:
        stmt = stmt.where(CanonicalResult.order_id == request.order_id)
    else:
        stmt = stmt.where(
            CanonicalResult.order_id.is_(None),
            CanonicalResult.workflow_instance_id == request.workflow_instance_id,
        )
    row = session.scalars(stmt.limit(1)).first()
    if row is None:
        row = CanonicalResult(test_name=request.test_name)
        session.add(row)

    now = utcnow()
    results = request.results
    row.order_id = request.order_id
    row.workflow_instance_id = request.workflow_instance_id
    row.patient_id = request.patient_id
    row.patient_name = _text(results, "patient_name") or DEFAULT_PATIENT_NAME
    row.status = ENTERED_STATUS
    row.entered_by = request.user_id or "system"
    row.entered_date = now.date()
    row.technician_id = request.user_id
    row.result_date = now
    row.notes = _text(results, "notes") or _text(results, "final_report") or ""
    row.updated_at = now
    session.flush()
    return row


def _replace_values(
    session: Session,
    result: CanonicalResult,
    order_id: str | None,
    parsed: ParsedResult,
    qc_summary: str,
) -> int:
    catalog = ConfigRepository(session).analyte_catalog(parsed.analytes)

    session.execute(delete(CanonicalResultValue).where(CanonicalResultValue.result_id == result.id))

    rows = []
    for name, entry in parsed.analytes.items():
        known = catalog.get(name)
        value = stringify_value(entry.get("value"))
        reference_range = (known.reference_range if known else None) or ""
        rows.append(
            CanonicalResultValue(
                result_id=result.id,
                analyte_id=known.id if known else None,
                analyte_name=name,
                parameter=name,
                value=value,
                unit=entry.get("unit") or (known.unit if known else None) or "",
                reference_range=reference_range,
                flag=compute_flag(value, reference_range),
                order_id=order_id,
            )
        )

    summary = parsed.meta.get("qc_summary") or qc_summary
    if summary:
        rows.append(
            CanonicalResultValue(
                result_id=result.id,
                analyte_name=QC_SUMMARY_NAME,
                parameter=QC_SUMMARY_NAME,
                value=stringify_value(summary),
                unit="",
                reference_range="",
                flag=None,
                order_id=order_id,
            )
        )
    session.add_all(rows)
    return len(rows)


def _advance_progress(session: Session, workflow_instance_id: str, step_id: str) -> bool:
    instance = session.get(OrderWorkflowInstance, workflow_instance_id)
    if instance is None:
        return False
    now = utcnow()
    instance.current_step_id = step_id
    instance.updated_at = now
    if is_terminal_step(step_id):
        instance.completed_at = now
    return True


def commit_result(
    session: Session,
    request: SubmissionRequest,
    submission: WorkflowResult,
    parsed: ParsedResult,
) -> str:
    """Write the canonical result atomically and return its id.

    Raises:
        CommitFailed: any write failed; nothing from this stage is kept.
    """
    try:
        result = _upsert_result(session, request)
        value_count = _replace_values(
            session, result, request.order_id, parsed, submission.qc_summary or ""
        )
        submission.status = "committed"
        submission.committed_at = utcnow()
        advanced = _advance_progress(session, request.workflow_instance_id, request.step_id)
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.error("Commit failed for submission %s: %s", submission.id, exc)
        raise CommitFailed(f"Failed to commit result: {exc}", exc) from exc

    logger.info(
        "Committed result %s with %d values (progress advanced=%s)",
        result.id,
        value_count,
        advanced,
    )
    return result.id
