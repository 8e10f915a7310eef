"""Tests for the atomic commit stage."""

import pytest
from sqlalchemy import select

from src.db.repositories import SubmissionRepository
from src.db.tables import (
    AnalyteRow,
    CanonicalResult,
    CanonicalResultValue,
    OrderWorkflowInstance,
)
from src.errors import CommitFailed
from src.models import ParsedResult, SubmissionRequest, build_qc_summary
from src.pipelines.commit import commit_result, compute_flag, is_terminal_step


def _request(**overrides):
    payload = {
        "workflow_instance_id": "wi-1",
        "order_id": "order-1",
        "user_id": "tech-7",
        "results": {"test_name": "Urinalysis", "cup_seal_intact": True, "final_report": "Looks fine"},
    }
    payload.update(overrides)
    return SubmissionRequest.from_payload(payload)


def _submission(session, request):
    return SubmissionRepository(session).upsert(request, build_qc_summary(request.results))


def _parsed(**analytes):
    return ParsedResult(meta={}, analytes={k: {"value": v, "unit": ""} for k, v in analytes.items()})


def _values(session, result_id):
    stmt = select(CanonicalResultValue).where(CanonicalResultValue.result_id == result_id)
    return {v.analyte_name: v for v in session.scalars(stmt)}


@pytest.mark.parametrize(
    "value, reference_range, expected",
    [
        ("9.2", "4.5-8", "H"),
        ("4.0", "4.5-8", "L"),
        ("6", "4.5 - 8", None),
        ("Yellow", "4.5-8", None),
        ("6", "", None),
        ("6", "negative", None),
    ],
)
def test_compute_flag(value, reference_range, expected):
    assert compute_flag(value, reference_range) == expected


def test_terminal_steps():
    assert is_terminal_step("final_results")
    assert is_terminal_step("review_complete")
    assert not is_terminal_step("strip_read")


def test_commit_writes_result_values_and_qc_summary(session):
    session.add(AnalyteRow(id="an-ph", name="pH", unit="pH units", reference_range="4.5-8"))
    session.commit()
    request = _request()
    submission = _submission(session, request)

    result_id = commit_result(session, request, submission, _parsed(pH="9.2", Color="Yellow"))

    result = session.get(CanonicalResult, result_id)
    assert (result.order_id, result.test_name, result.status) == ("order-1", "Urinalysis", "Entered")
    assert result.patient_name == "Workflow Patient"
    assert (result.entered_by, result.technician_id) == ("tech-7", "tech-7")
    assert result.notes == "Looks fine"

    values = _values(session, result_id)
    assert set(values) == {"pH", "Color", "QC Summary"}
    assert (values["pH"].analyte_id, values["pH"].unit, values["pH"].flag) == ("an-ph", "pH units", "H")
    assert values["pH"].reference_range == "4.5-8"
    assert values["Color"].analyte_id is None
    assert values["QC Summary"].value == "Cup seal: true"
    assert submission.status == "committed"
    assert submission.committed_at is not None


def test_recommit_replaces_values_instead_of_duplicating(session):
    request = _request()
    submission = _submission(session, request)

    first = commit_result(session, request, submission, _parsed(pH="6", Color="Yellow"))
    second = commit_result(session, request, submission, _parsed(pH="6.5"))

    assert first == second
    assert len(session.scalars(select(CanonicalResult)).all()) == 1
    values = _values(session, second)
    assert set(values) == {"pH", "QC Summary"}
    assert values["pH"].value == "6.5"


def test_result_without_order_is_keyed_by_instance(session):
    a = _request(order_id=None, workflow_instance_id="wi-a")
    b = _request(order_id=None, workflow_instance_id="wi-b")

    id_a = commit_result(session, a, _submission(session, a), _parsed(pH="6"))
    id_b = commit_result(session, b, _submission(session, b), _parsed(pH="6"))

    assert id_a != id_b


def test_progress_advanced_and_completed_on_terminal_step(session):
    session.add(OrderWorkflowInstance(id="wi-1", order_id="order-1", current_step_id="strip_read"))
    session.commit()
    request = _request(step_id="final_results")

    commit_result(session, request, _submission(session, request), _parsed(pH="6"))

    instance = session.get(OrderWorkflowInstance, "wi-1")
    assert instance.current_step_id == "final_results"
    assert instance.completed_at is not None


def test_intermediate_step_does_not_complete_instance(session):
    session.add(OrderWorkflowInstance(id="wi-1", order_id="order-1"))
    session.commit()
    request = _request(step_id="microscopy")

    commit_result(session, request, _submission(session, request), _parsed(pH="6"))

    instance = session.get(OrderWorkflowInstance, "wi-1")
    assert instance.current_step_id == "microscopy"
    assert instance.completed_at is None


def test_failed_commit_leaves_no_partial_rows(session, monkeypatch):
    request = _request()
    submission = _submission(session, request)

    def boom(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("src.pipelines.commit._advance_progress", boom)

    with pytest.raises(CommitFailed, match="disk full"):
        commit_result(session, request, submission, _parsed(pH="6"))

    assert session.scalars(select(CanonicalResult)).all() == []
    assert session.scalars(select(CanonicalResultValue)).all() == []
    assert submission.status == "received"
