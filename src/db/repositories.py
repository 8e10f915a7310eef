"""Repositories over the shared store.

Each repository wraps the invocation's ``Session``. Audit writes commit
immediately so that a later pipeline failure cannot roll them back; the
canonical commit is owned by ``src.pipelines.commit``.
"""

from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.base import utcnow
from src.db.tables import (
    AIIssue,
    AIRun,
    AnalyteRow,
    Attachment,
    WorkflowAIConfigRow,
    WorkflowBinding,
    WorkflowResult,
    WorkflowTaskRow,
    WorkflowTaskRun,
)
from src.logger import get_logger
from src.models import AttachmentRef, SubmissionRequest, ValidationIssue

logger = get_logger(__name__)

SUBMISSION_TABLE = "workflow_results"


class SubmissionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, workflow_instance_id: str, step_id: str) -> WorkflowResult | None:
        stmt = select(WorkflowResult).where(
            WorkflowResult.workflow_instance_id == workflow_instance_id,
            WorkflowResult.step_id == step_id,
        )
        return self._session.scalars(stmt).first()

    def upsert(self, request: SubmissionRequest, qc_summary: str) -> WorkflowResult:
        """Insert or overwrite the row for (workflow_instance_id, step_id)."""
        fields = {
            "order_id": request.order_id,
            "patient_id": request.patient_id,
            "lab_id": request.lab_id,
            "test_group_id": request.test_group_id,
            "test_name": request.test_name,
            "test_code": request.test_code,
            "review_status": request.review_status,
            "sample_id": request.sample_id,
            "qc_summary": qc_summary or None,
            "payload": request.payload,
            "status": "received",
            "created_by": request.user_id,
        }
        for attempt in (1, 2):
            row = self.get(request.workflow_instance_id, request.step_id)
            if row is None:
                row = WorkflowResult(
                    workflow_instance_id=request.workflow_instance_id,
                    step_id=request.step_id,
                    **fields,
                )
                self._session.add(row)
            else:
                for key, value in fields.items():
                    setattr(row, key, value)
            try:
                self._session.commit()
                return row
            except IntegrityError:
                # A concurrent first receipt won the insert; overwrite it instead
                self._session.rollback()
                if attempt == 2:
                    raise
                logger.info(
                    "Concurrent insert for instance=%s step=%s, retrying as update",
                    request.workflow_instance_id,
                    request.step_id,
                )
        raise AssertionError("unreachable")

    def set_status(self, row: WorkflowResult, status: str) -> None:
        row.status = status
        self._session.commit()

    def store_attachments(self, workflow_result_id: str, attachments: Iterable[AttachmentRef]) -> int:
        """Link inline attachments to the submission, skipping ones already linked."""
        existing = {
            (a.tag, a.file_url)
            for a in self._session.scalars(
                select(Attachment).where(
                    Attachment.related_table == SUBMISSION_TABLE,
                    Attachment.related_id == workflow_result_id,
                )
            )
        }
        added = 0
        for ref in attachments:
            if (ref.tag, ref.file_url) in existing:
                continue
            self._session.add(
                Attachment(
                    related_table=SUBMISSION_TABLE,
                    related_id=workflow_result_id,
                    tag=ref.tag,
                    file_url=ref.file_url,
                    file_type=ref.file_type or None,
                )
            )
            existing.add((ref.tag, ref.file_url))
            added += 1
        if added:
            self._session.commit()
        return added

    def find_attachments(self, workflow_result_id: str, tag: str) -> list[AttachmentRef]:
        stmt = (
            select(Attachment)
            .where(
                Attachment.related_table == SUBMISSION_TABLE,
                Attachment.related_id == workflow_result_id,
                Attachment.tag == tag,
            )
            .order_by(Attachment.created_at)
        )
        return [
            AttachmentRef(tag=a.tag, file_url=a.file_url, file_type=a.file_type or "")
            for a in self._session.scalars(stmt)
        ]


class ConfigRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_default_binding(
        self,
        lab_id: str,
        *,
        test_group_id: str | None = None,
        test_code: str | None = None,
    ) -> WorkflowBinding | None:
        stmt = select(WorkflowBinding).where(
            WorkflowBinding.lab_id == lab_id,
            WorkflowBinding.is_default.is_(True),
        )
        if test_group_id is not None:
            stmt = stmt.where(WorkflowBinding.test_group_id == test_group_id)
        elif test_code is not None:
            stmt = stmt.where(WorkflowBinding.test_code == test_code)
        else:
            return None
        stmt = stmt.order_by(WorkflowBinding.priority.desc()).limit(1)
        return self._session.scalars(stmt).first()

    def find_ai_config(self, workflow_version_id: str) -> WorkflowAIConfigRow | None:
        stmt = (
            select(WorkflowAIConfigRow)
            .where(WorkflowAIConfigRow.workflow_version_id == workflow_version_id)
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_enabled_tasks(self, workflow_version_id: str) -> list[WorkflowTaskRow]:
        stmt = (
            select(WorkflowTaskRow)
            .where(
                WorkflowTaskRow.workflow_version_id == workflow_version_id,
                WorkflowTaskRow.enabled.is_(True),
            )
            .order_by(WorkflowTaskRow.run_order.asc())
        )
        return list(self._session.scalars(stmt))

    def analyte_catalog(self, names: Iterable[str]) -> dict[str, AnalyteRow]:
        names = list(names)
        if not names:
            return {}
        stmt = select(AnalyteRow).where(AnalyteRow.name.in_(names))
        return {row.name: row for row in self._session.scalars(stmt)}


class AuditRepository:
    """Append-only audit trail; every write is committed on its own."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def record_task_run(
        self,
        workflow_result_id: str,
        task_id: str,
        status: str,
        input_snapshot: dict[str, Any],
        output_snapshot: dict[str, Any],
        duration_ms: int,
    ) -> WorkflowTaskRun:
        row = WorkflowTaskRun(
            workflow_result_id=workflow_result_id,
            task_id=task_id,
            status=status,
            input=input_snapshot,
            output=output_snapshot,
            duration_ms=duration_ms,
            created_at=utcnow(),
        )
        self._session.add(row)
        self._session.commit()
        return row

    def record_ai_run(
        self,
        workflow_result_id: str,
        kind: str,
        model: str,
        request: dict[str, Any],
        response: dict[str, Any],
        ok: bool,
        duration_ms: int,
    ) -> AIRun:
        row = AIRun(
            workflow_result_id=workflow_result_id,
            kind=kind,
            model=model,
            request=request,
            response=response,
            ok=ok,
            duration_ms=duration_ms,
            created_at=utcnow(),
        )
        self._session.add(row)
        self._session.commit()
        return row

    def record_issues(self, workflow_result_id: str, issues: Iterable[ValidationIssue]) -> int:
        count = 0
        for issue in issues:
            self._session.add(
                AIIssue(
                    workflow_result_id=workflow_result_id,
                    severity=issue.severity,
                    field=issue.field,
                    code=issue.code,
                    message=issue.message,
                    suggestion=issue.suggestion,
                )
            )
            count += 1
        if count:
            self._session.commit()
        return count
