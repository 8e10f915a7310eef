"""
Pytest fixtures for workflow result pipeline tests.

Provides an in-memory database, seeded workflow configuration and scripted
stand-ins for the inference client, attachment fetcher and tool client, so
tests run offline.
"""

from typing import Any

import pytest

from src.db import build_engine, build_session_factory, init_db
from src.db.tables import AnalyteRow, WorkflowAIConfigRow, WorkflowBinding, WorkflowTaskRow
from tests.fakes import (
    LAB_ID,
    PRINTOUT_URL,
    STRIP_URL,
    TEST_GROUP_ID,
    VERSION_ID,
    FakeFetcher,
    FakeTools,
    image,
)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def seeded(session):
    """Urinalysis workflow: vision_color on the strip photo, ocr on the printout."""
    session.add(
        WorkflowBinding(
            lab_id=LAB_ID,
            test_group_id=TEST_GROUP_ID,
            workflow_version_id=VERSION_ID,
            is_default=True,
            priority=10,
        )
    )
    session.add(
        WorkflowAIConfigRow(
            workflow_version_id=VERSION_ID,
            parser_prompt="Normalize urinalysis results.",
            validator_prompt="Check urinalysis results.",
            analyte_map={"color": "Color", "ph": "pH", "sg": "Specific Gravity"},
            unit_map={},
            required_fields=["pH", "Specific Gravity"],
            numeric_rules={"pH": {"min": 4.5, "max": 8.0}},
            enum_rules={"Color": ["Straw", "Yellow", "Amber", "Dark Yellow"]},
        )
    )
    session.add_all(
        [
            WorkflowTaskRow(
                id="task-vision",
                workflow_version_id=VERSION_ID,
                run_order=1,
                type="vision_color",
                input_selector={"attachment_tag": "strip_photo"},
                params={},
                output_map={"color": "Color"},
            ),
            WorkflowTaskRow(
                id="task-ocr",
                workflow_version_id=VERSION_ID,
                run_order=2,
                type="ocr",
                input_selector={"attachment_tag": "analyzer_printout"},
                params={"fields": ["ph", "sg"]},
                output_map={"ph": "pH", "sg": "Specific Gravity"},
            ),
            AnalyteRow(id="an-ph", name="pH", unit=None, reference_range="4.5-8"),
            AnalyteRow(id="an-sg", name="Specific Gravity", unit=None, reference_range="1.005-1.030"),
        ]
    )
    session.commit()
    return session


@pytest.fixture
def submission_payload() -> dict[str, Any]:
    return {
        "workflow_instance_id": "wi-1",
        "step_id": "final_results",
        "order_id": "order-1",
        "lab_id": LAB_ID,
        "test_group_id": TEST_GROUP_ID,
        "user_id": "tech-7",
        "results": {
            "test_name": "Urinalysis",
            "patient_id": "pat-1",
            "patient_name": "Ana Perez",
            "sample_id": "S-1",
            "cup_seal_intact": True,
            "qc_strip_valid": True,
        },
        "attachments": [
            {"tag": "strip_photo", "file_url": STRIP_URL, "file_type": "image/jpeg"},
            {"tag": "analyzer_printout", "file_url": PRINTOUT_URL},
        ],
    }


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher(
        {
            STRIP_URL: image(STRIP_URL, b"\xff\xd8 jpeg", "image/jpeg"),
            PRINTOUT_URL: image(PRINTOUT_URL),
        }
    )


@pytest.fixture
def tools() -> FakeTools:
    return FakeTools()
