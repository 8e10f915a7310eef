"""End-to-end processing of one workflow result submission.

Stages run in a fixed order:
1. Intake: upsert the raw submission and link inline attachments
2. Config: resolve the workflow version and its AI configuration
3. Tasks: run enabled extraction tasks sequentially, fail-soft
4. Merge: fold raw scalar fields into the task-built analyte map
5. Parse: AI normalization into canonical ``{meta, analytes}``
6. Validate: deterministic rules, then the AI cross-check
7. Gate: block, or commit the canonical result atomically

Any fatal failure after intake marks the submission ``error`` before the
exception propagates to the HTTP layer.
"""

from sqlalchemy.orm import Session

from src.api.tools import ToolClient
from src.db.repositories import AuditRepository, ConfigRepository, SubmissionRepository
from src.db.tables import WorkflowResult
from src.errors import PipelineError
from src.inference.client import InferenceClient
from src.io.attachments import AttachmentFetcher
from src.logger import get_logger, timed
from src.models import PipelineResponse, SubmissionRequest, build_qc_summary
from src.pipelines.ai_parser import parse_canonical
from src.pipelines.audit import AuditedInference
from src.pipelines.commit import commit_result
from src.pipelines.config_resolver import resolve_config
from src.pipelines.field_merger import merge_raw_fields
from src.pipelines.task_runner import run_tasks
from src.pipelines.tasks import TaskContext
from src.pipelines.validation import decide, run_ai_validator, validate_deterministic

logger = get_logger(__name__)


def _mark_error(submissions: SubmissionRepository, row: WorkflowResult, exc: Exception) -> None:
    logger.warning("Submission %s -> error: %s", row.id, exc)
    submissions.set_status(row, "error")


@timed(logger, "process_workflow_result")
def process_workflow_result(
    request: SubmissionRequest,
    *,
    session: Session,
    inference_client: InferenceClient,
    fetcher: AttachmentFetcher,
    tools: ToolClient,
) -> PipelineResponse:
    """Run the whole pipeline for one submission.

    Returns:
        ``ok``/``warn`` with the committed result id, or ``fail`` with the
        issues that blocked the commit.

    Raises:
        PipelineError: ConfigNotFound, ParseFailed, ValidateCallFailed or
            CommitFailed. The submission is left in ``error`` for each.
    """
    submissions = SubmissionRepository(session)
    audit = AuditRepository(session)

    qc_summary = build_qc_summary(request.results)
    submission = submissions.upsert(request, qc_summary)
    if request.attachments:
        submissions.store_attachments(submission.id, request.attachments)
    logger.info(
        "Received submission %s (instance=%s, step=%s, order=%s)",
        submission.id,
        request.workflow_instance_id,
        request.step_id,
        request.order_id,
    )

    try:
        config = resolve_config(
            ConfigRepository(session),
            request.lab_id,
            test_group_id=request.test_group_id,
            test_code=request.test_code,
        )

        inference = AuditedInference(inference_client, audit, submission.id)
        ctx = TaskContext(
            workflow_result_id=submission.id,
            raw=request.results,
            inference=inference,
            fetcher=fetcher,
            tools=tools,
            find_attachments=lambda tag: submissions.find_attachments(submission.id, tag),
        )
        task_rows = ConfigRepository(session).list_enabled_tasks(config.workflow_version_id)
        analytes = run_tasks(task_rows, ctx, audit)
        analytes = merge_raw_fields(analytes, request.results, config.analyte_map)

        partial = {"meta": {"qc_summary": qc_summary}, "analytes": analytes}
        parsed = parse_canonical(config, request.results, partial, inference)

        issues = validate_deterministic(parsed, config)
        audit.record_issues(submission.id, issues)

        verdict = run_ai_validator(config, request.results, parsed, inference)
        audit.record_issues(submission.id, verdict.issues)
        issues = issues + verdict.issues

        decision = decide(issues, verdict)
        if decision.blocking:
            logger.warning(
                "Submission %s blocked: %d issues, AI verdict=%s",
                submission.id,
                len(issues),
                verdict.status,
            )
            submissions.set_status(submission, "error")
            return PipelineResponse(status="fail", workflow_result_id=submission.id, issues=issues)

        result_id = commit_result(session, request, submission, parsed)
    except PipelineError as exc:
        _mark_error(submissions, submission, exc)
        raise
    except Exception as exc:
        logger.exception("Unexpected failure processing submission %s", submission.id)
        session.rollback()
        _mark_error(submissions, submission, exc)
        raise

    return PipelineResponse(
        status=decision.status,
        workflow_result_id=submission.id,
        result_id=result_id,
        issues=issues,
    )
