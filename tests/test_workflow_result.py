"""End-to-end tests for processing one workflow result submission."""

import pytest
from sqlalchemy import func, select

from src.db.tables import (
    AIIssue,
    AIRun,
    Attachment,
    CanonicalResult,
    CanonicalResultValue,
    WorkflowResult,
    WorkflowTaskRun,
)
from src.errors import ConfigNotFound, InferenceFailed, ParseFailed, ValidateCallFailed
from src.models import SubmissionRequest
from src.pipelines.workflow_result import process_workflow_result
from tests.fakes import FakeFetcher, ScriptedInference, parser_answer


def _run(session, payload, inference, fetcher, tools):
    return process_workflow_result(
        SubmissionRequest.from_payload(payload),
        session=session,
        inference_client=inference,
        fetcher=fetcher,
        tools=tools,
    )


def _count(session, table):
    return session.scalar(select(func.count()).select_from(table))


def _submission(session):
    return session.scalars(select(WorkflowResult)).one()


def test_clean_urinalysis_commits_ok(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser_answer(Color="Yellow", pH="6.0", **{"Specific Gravity": "1.020"}),
        validator={"status": "ok", "issues": []},
    )

    response = _run(seeded, submission_payload, inference, fetcher, tools)

    assert response.status == "ok"
    assert response.issues == []
    assert response.result_id is not None
    body = response.to_dict()
    assert "issues" not in body
    assert inference.kinds() == ["vision", "ocr", "parser", "validator"]

    submission = _submission(seeded)
    assert submission.status == "committed"
    assert submission.qc_summary == "Cup seal: true | Strip QC: true"
    assert _count(seeded, Attachment) == 2
    assert _count(seeded, WorkflowTaskRun) == 2
    assert _count(seeded, AIRun) == 4

    values = {
        v.analyte_name: v
        for v in seeded.scalars(
            select(CanonicalResultValue).where(CanonicalResultValue.result_id == response.result_id)
        )
    }
    assert set(values) == {"Color", "pH", "Specific Gravity", "QC Summary"}
    assert values["pH"].analyte_id == "an-ph"
    assert values["pH"].flag is None


def test_partial_map_carries_task_values_and_qc_summary(seeded, submission_payload, fetcher, tools):
    seen = {}

    def parser(prompt):
        seen["prompt"] = prompt
        return parser_answer(Color="Yellow", pH="6.0", **{"Specific Gravity": "1.020"})(prompt)

    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser,
        validator={"status": "ok", "issues": []},
    )

    _run(seeded, submission_payload, inference, fetcher, tools)

    assert '"pH": {"value": "6.0", "unit": ""}' in seen["prompt"]
    assert '"qc_summary": "Cup seal: true | Strip QC: true"' in seen["prompt"]
    assert '"Color": {"value": "Yellow", "unit": ""}' in seen["prompt"]


def test_missing_required_field_with_ai_fail_is_blocked(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": ""},
        parser=parser_answer(Color="Yellow", pH="6.0"),
        validator={
            "status": "fail",
            "issues": [{"severity": "error", "field": "Specific Gravity", "message": "SG unreadable"}],
        },
    )

    response = _run(seeded, submission_payload, inference, fetcher, tools)

    assert response.status == "fail"
    assert response.result_id is None
    assert {(i.field, i.severity) for i in response.issues} == {
        ("Specific Gravity", "error"),
    }
    assert len(response.issues) == 2
    assert _submission(seeded).status == "error"
    assert _count(seeded, CanonicalResult) == 0
    assert _count(seeded, CanonicalResultValue) == 0
    assert _count(seeded, AIIssue) == 2


def test_error_issue_with_ai_ok_still_commits(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": ""},
        parser=parser_answer(Color="Yellow", pH="6.0"),
        validator={"status": "ok", "issues": []},
    )

    response = _run(seeded, submission_payload, inference, fetcher, tools)

    assert response.status == "warn"
    assert response.result_id is not None
    assert [i.code for i in response.issues] == ["required"]
    assert _submission(seeded).status == "committed"


def test_failed_task_does_not_stop_pipeline(seeded, submission_payload, tools):
    inference = ScriptedInference(
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser_answer(pH="6.0", **{"Specific Gravity": "1.020"}),
        validator={"status": "ok", "issues": []},
    )

    response = _run(seeded, submission_payload, inference, FakeFetcher({}), tools)

    assert response.status == "ok"
    runs = {r.task_id: r.status for r in seeded.scalars(select(WorkflowTaskRun))}
    assert runs == {"task-vision": "error", "task-ocr": "error"}
    assert inference.kinds() == ["parser", "validator"]


def test_resubmission_overwrites_and_replaces_values(seeded, submission_payload, fetcher, tools):
    def inference_for(ph):
        return ScriptedInference(
            vision={"color": "Yellow"},
            ocr={"ph": ph, "sg": "1.020"},
            parser=parser_answer(pH=ph, **{"Specific Gravity": "1.020"}),
            validator={"status": "ok", "issues": []},
        )

    first = _run(seeded, submission_payload, inference_for("6.0"), fetcher, tools)
    second = _run(seeded, submission_payload, inference_for("6.5"), fetcher, tools)

    assert first.workflow_result_id == second.workflow_result_id
    assert first.result_id == second.result_id
    assert _count(seeded, WorkflowResult) == 1
    assert _count(seeded, Attachment) == 2
    assert _count(seeded, CanonicalResult) == 1
    ph = seeded.scalars(
        select(CanonicalResultValue).where(CanonicalResultValue.analyte_name == "pH")
    ).one()
    assert ph.value == "6.5"


def test_missing_config_marks_submission_error(seeded, submission_payload, fetcher, tools):
    submission_payload["test_group_id"] = "hematology"

    with pytest.raises(ConfigNotFound):
        _run(seeded, submission_payload, ScriptedInference(), fetcher, tools)

    assert _submission(seeded).status == "error"


def test_parser_failure_is_fatal(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=InferenceFailed("model timed out"),
    )

    with pytest.raises(ParseFailed):
        _run(seeded, submission_payload, inference, fetcher, tools)

    assert _submission(seeded).status == "error"
    parser_run = seeded.scalars(select(AIRun).where(AIRun.kind == "parser")).one()
    assert parser_run.ok is False
    assert _count(seeded, CanonicalResult) == 0


def test_validator_failure_fails_closed(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser_answer(pH="6.0", **{"Specific Gravity": "1.020"}),
        validator=InferenceFailed("quota exceeded"),
    )

    with pytest.raises(ValidateCallFailed):
        _run(seeded, submission_payload, inference, fetcher, tools)

    assert _submission(seeded).status == "error"
    assert _count(seeded, CanonicalResult) == 0


def _ai_runs(session):
    return [(r.kind, r.ok) for r in session.scalars(select(AIRun))]


def test_parser_answer_without_analytes_is_audited_as_failed(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser={"meta": {}, "result": "garbage"},
    )

    with pytest.raises(ParseFailed, match="analytes"):
        _run(seeded, submission_payload, inference, fetcher, tools)

    runs = {kind: ok for kind, ok in _ai_runs(seeded)}
    assert runs == {"vision": True, "ocr": True, "parser": False}
    parser_run = seeded.scalars(select(AIRun).where(AIRun.kind == "parser")).one()
    assert parser_run.response["result"] == "garbage"
    assert "analytes" in parser_run.response["error"]
    assert _submission(seeded).status == "error"


def test_validator_unknown_status_is_audited_as_failed(seeded, submission_payload, fetcher, tools):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser_answer(pH="6.0", **{"Specific Gravity": "1.020"}),
        validator={"status": "maybe", "issues": []},
    )

    with pytest.raises(ValidateCallFailed):
        _run(seeded, submission_payload, inference, fetcher, tools)

    validator_run = seeded.scalars(select(AIRun).where(AIRun.kind == "validator")).one()
    assert validator_run.ok is False
    assert _count(seeded, CanonicalResult) == 0
