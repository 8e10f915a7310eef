#!/usr/bin/env python3
"""Seed a demo urinalysis workflow for local runs.

Creates the tables if needed, then one lab binding, its AI config, a
vision_color task for the strip photo, an ocr task for the analyzer
printout, and a small analyte catalog. Safe to re-run: existing rows for
the workflow version are replaced.

Usage:
    uv run python scripts/seed_workflow.py
    uv run python scripts/seed_workflow.py --lab-id lab-1 --test-group-id ua
    DATABASE_URL=postgresql+psycopg://... uv run python scripts/seed_workflow.py
"""

import argparse
import sys
from pathlib import Path

from sqlalchemy import delete

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.db import build_engine, build_session_factory, init_db
from src.db.tables import (
    AnalyteRow,
    WorkflowAIConfigRow,
    WorkflowBinding,
    WorkflowTaskRow,
)
from src.logger import get_logger
from src.prompts import DEFAULT_COLOR_CHOICES

logger = get_logger(__name__)

PARSER_PROMPT = (
    "You normalize urinalysis results. Map every reading to its canonical "
    "analyte name, keep units, and put sample-level facts under meta."
)
VALIDATOR_PROMPT = (
    "You review normalized urinalysis results for internal consistency. "
    "Flag implausible combinations and values that contradict the raw input."
)

CATALOG = [
    ("Color", "", ""),
    ("pH", "", "4.5-8"),
    ("Specific Gravity", "", "1.005-1.030"),
    ("WBC", "cells/HPF", "0-5"),
    ("RBC", "cells/HPF", "0-2"),
]


def seed(session, lab_id: str, test_group_id: str, version_id: str) -> None:
    session.execute(delete(WorkflowTaskRow).where(WorkflowTaskRow.workflow_version_id == version_id))
    session.execute(
        delete(WorkflowAIConfigRow).where(WorkflowAIConfigRow.workflow_version_id == version_id)
    )
    session.execute(
        delete(WorkflowBinding).where(
            WorkflowBinding.lab_id == lab_id,
            WorkflowBinding.workflow_version_id == version_id,
        )
    )
    session.execute(delete(AnalyteRow).where(AnalyteRow.name.in_([c[0] for c in CATALOG])))

    session.add(
        WorkflowBinding(
            lab_id=lab_id,
            test_group_id=test_group_id,
            workflow_version_id=version_id,
            is_default=True,
            priority=10,
        )
    )
    session.add(
        WorkflowAIConfigRow(
            workflow_version_id=version_id,
            parser_prompt=PARSER_PROMPT,
            validator_prompt=VALIDATOR_PROMPT,
            analyte_map={"color": "Color", "ph": "pH", "sg": "Specific Gravity"},
            unit_map={},
            required_fields=["pH", "Specific Gravity"],
            numeric_rules={
                "pH": {"min": 4.5, "max": 8.0},
                "Specific Gravity": {"min": 1.005, "max": 1.030},
            },
            enum_rules={"Color": list(DEFAULT_COLOR_CHOICES)},
        )
    )
    session.add_all(
        [
            WorkflowTaskRow(
                workflow_version_id=version_id,
                run_order=1,
                type="vision_color",
                input_selector={"attachment_tag": "strip_photo"},
                params={"choices": list(DEFAULT_COLOR_CHOICES)},
                output_map={"color": "Color"},
            ),
            WorkflowTaskRow(
                workflow_version_id=version_id,
                run_order=2,
                type="ocr",
                input_selector={"attachment_tag": "analyzer_printout"},
                params={"fields": ["ph", "sg"]},
                output_map={"ph": "pH", "sg": "Specific Gravity"},
            ),
        ]
    )
    session.add_all(
        [AnalyteRow(name=name, unit=unit or None, reference_range=rng or None) for name, unit, rng in CATALOG]
    )
    session.commit()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a demo urinalysis workflow")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--lab-id", default="demo-lab")
    parser.add_argument("--test-group-id", default="urinalysis")
    parser.add_argument("--version-id", default="urinalysis-v1")
    args = parser.parse_args()

    engine = build_engine(args.database_url or get_settings().database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)
    with session_factory() as session:
        seed(session, args.lab_id, args.test_group_id, args.version_id)

    logger.info(
        "Seeded workflow %s for lab=%s test_group=%s",
        args.version_id,
        args.lab_id,
        args.test_group_id,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
