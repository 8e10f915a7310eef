"""Tests for the HTTP entry point."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from src.app import PROCESS_PATH, create_app
from src.config import Settings
from src.db.tables import WorkflowResult
from tests.fakes import ScriptedInference, parser_answer


def _ok_inference():
    return ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": "1.020"},
        parser=parser_answer(Color="Yellow", pH="6.0", **{"Specific Gravity": "1.020"}),
        validator={"status": "ok", "issues": []},
    )


@pytest.fixture
def make_client(seeded, session_factory, fetcher, tools):
    def make(inference):
        app = create_app(
            settings=Settings(database_url="sqlite://"),
            session_factory=session_factory,
            inference_client=inference,
            fetcher=fetcher,
            tools=tools,
        )
        return TestClient(app)

    return make


def _status(session_factory):
    with session_factory() as session:
        return session.scalars(select(WorkflowResult)).one().status


def test_process_returns_ok_body(make_client, submission_payload, session_factory):
    with make_client(_ok_inference()) as client:
        response = client.post(PROCESS_PATH, json=submission_payload)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert set(body) == {"status", "workflow_result_id", "result_id"}
    assert _status(session_factory) == "committed"


def test_camel_case_payload_accepted(make_client, submission_payload):
    payload = {
        "workflowInstanceId": submission_payload["workflow_instance_id"],
        "stepId": "final_results",
        "orderId": "order-1",
        "labId": submission_payload["lab_id"],
        "testGroupId": submission_payload["test_group_id"],
        "userId": "tech-7",
        "results": submission_payload["results"],
        "attachments": [
            {"tag": a["tag"], "fileUrl": a["file_url"]} for a in submission_payload["attachments"]
        ],
    }

    with make_client(_ok_inference()) as client:
        response = client.post(PROCESS_PATH, json=payload)

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_blocked_submission_returns_fail_with_issues(make_client, submission_payload):
    inference = ScriptedInference(
        vision={"color": "Yellow"},
        ocr={"ph": "6.0", "sg": ""},
        parser=parser_answer(Color="Yellow", pH="6.0"),
        validator={"status": "fail", "issues": [{"severity": "error", "message": "no SG"}]},
    )

    with make_client(inference) as client:
        response = client.post(PROCESS_PATH, json=submission_payload)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "fail"
    assert "result_id" not in body
    assert {i["severity"] for i in body["issues"]} == {"error"}


def test_missing_config_is_400(make_client, submission_payload, session_factory):
    submission_payload["test_group_id"] = "hematology"

    with make_client(ScriptedInference()) as client:
        response = client.post(PROCESS_PATH, json=submission_payload)

    assert response.status_code == 400
    assert "No active workflow config" in response.json()["error"]
    assert _status(session_factory) == "error"


def test_missing_instance_id_is_400(make_client):
    with make_client(ScriptedInference()) as client:
        response = client.post(PROCESS_PATH, json={"results": {}})

    assert response.status_code == 400
    assert "workflow_instance_id" in response.json()["error"]


def test_invalid_json_is_400(make_client):
    with make_client(ScriptedInference()) as client:
        response = client.post(
            PROCESS_PATH, content=b"{not json", headers={"content-type": "application/json"}
        )

    assert response.status_code == 400


def test_validator_failure_is_500(make_client, submission_payload, session_factory):
    inference = _ok_inference()
    inference.script["validator"] = {"status": "unsure"}

    with make_client(inference) as client:
        response = client.post(PROCESS_PATH, json=submission_payload)

    assert response.status_code == 500
    assert "error" in response.json()
    assert _status(session_factory) == "error"


def test_healthz(make_client):
    with make_client(ScriptedInference(model_name="gemini-2.5-flash")) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "model": "gemini-2.5-flash"}


def test_cors_preflight_allowed(make_client):
    with make_client(ScriptedInference()) as client:
        response = client.options(
            PROCESS_PATH,
            headers={
                "Origin": "https://lims.example.test",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_import_builds_no_app():
    import src.app as app_module

    assert not hasattr(app_module, "app")


def test_main_serves_a_single_app(monkeypatch):
    import main

    built, served = [], []

    def fake_create_app():
        built.append(object())
        return built[-1]

    monkeypatch.setattr(main, "create_app", fake_create_app)
    monkeypatch.setattr(main.uvicorn, "run", lambda app, host, port: served.append((app, host, port)))
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.setenv("PORT", "9001")

    main.main()

    assert len(built) == 1
    assert served == [(built[0], "0.0.0.0", 9001)]
