"""Tests for workflow configuration resolution."""

import pytest

from src.db.repositories import ConfigRepository
from src.db.tables import WorkflowAIConfigRow, WorkflowBinding
from src.errors import ConfigNotFound
from src.pipelines.config_resolver import resolve_config


def _bind(session, version, priority=0, is_default=True, test_group_id=None, test_code=None, lab_id="lab-1"):
    session.add(
        WorkflowBinding(
            lab_id=lab_id,
            test_group_id=test_group_id,
            test_code=test_code,
            workflow_version_id=version,
            is_default=is_default,
            priority=priority,
        )
    )
    session.add(WorkflowAIConfigRow(workflow_version_id=version, parser_prompt=f"prompt {version}"))
    session.commit()


def test_highest_priority_default_binding_wins(session):
    _bind(session, "v-low", priority=1, test_group_id="ua")
    _bind(session, "v-high", priority=5, test_group_id="ua")
    _bind(session, "v-not-default", priority=99, test_group_id="ua", is_default=False)

    config = resolve_config(ConfigRepository(session), "lab-1", test_group_id="ua")

    assert config.workflow_version_id == "v-high"
    assert config.parser_prompt == "prompt v-high"


def test_falls_back_to_test_code_binding(session):
    _bind(session, "v-code", test_code="UA01")

    config = resolve_config(ConfigRepository(session), "lab-1", test_group_id="other", test_code="UA01")

    assert config.workflow_version_id == "v-code"
    assert config.required_fields == []
    assert config.numeric_rules == {}


def test_group_binding_preferred_over_code(session):
    _bind(session, "v-code", priority=50, test_code="UA01")
    _bind(session, "v-group", priority=1, test_group_id="ua")

    config = resolve_config(ConfigRepository(session), "lab-1", test_group_id="ua", test_code="UA01")

    assert config.workflow_version_id == "v-group"


def test_other_lab_binding_ignored(session):
    _bind(session, "v-other", test_group_id="ua", lab_id="lab-2")

    with pytest.raises(ConfigNotFound):
        resolve_config(ConfigRepository(session), "lab-1", test_group_id="ua")


def test_missing_identifiers_raise_config_not_found(session):
    with pytest.raises(ConfigNotFound, match="No active workflow config"):
        resolve_config(ConfigRepository(session), None)


def test_binding_without_ai_config_raises(session):
    session.add(
        WorkflowBinding(lab_id="lab-1", test_group_id="ua", workflow_version_id="v-bare", is_default=True)
    )
    session.commit()

    with pytest.raises(ConfigNotFound, match="v-bare"):
        resolve_config(ConfigRepository(session), "lab-1", test_group_id="ua")
