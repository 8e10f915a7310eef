"""Resolve the workflow version and AI configuration for a submission."""

from src.db.repositories import ConfigRepository
from src.errors import ConfigNotFound
from src.logger import get_logger
from src.models import WorkflowAIConfig

logger = get_logger(__name__)


def resolve_config(
    repo: ConfigRepository,
    lab_id: str | None,
    test_group_id: str | None = None,
    test_code: str | None = None,
) -> WorkflowAIConfig:
    """Find the lab's default binding and the AI config of its version.

    The test-group binding is preferred; the test-code binding is the
    fallback. Among default bindings the highest priority wins.

    Raises:
        ConfigNotFound: no default binding, or no AI config for its version.
    """
    binding = None
    if lab_id and test_group_id:
        binding = repo.find_default_binding(lab_id, test_group_id=test_group_id)
    if binding is None and lab_id and test_code:
        binding = repo.find_default_binding(lab_id, test_code=test_code)

    if binding is None:
        raise ConfigNotFound(
            "No active workflow config found "
            f"(lab_id={lab_id}, test_group_id={test_group_id}, test_code={test_code})"
        )

    row = repo.find_ai_config(binding.workflow_version_id)
    if row is None:
        raise ConfigNotFound(
            f"No AI config for workflow version {binding.workflow_version_id}"
        )

    logger.info(
        "Resolved workflow version %s (binding=%s, priority=%d)",
        binding.workflow_version_id,
        binding.id,
        binding.priority,
    )
    return WorkflowAIConfig(
        workflow_version_id=binding.workflow_version_id,
        parser_prompt=row.parser_prompt or "",
        validator_prompt=row.validator_prompt or "",
        analyte_map=dict(row.analyte_map or {}),
        unit_map=dict(row.unit_map or {}),
        required_fields=list(row.required_fields or []),
        numeric_rules=dict(row.numeric_rules or {}),
        enum_rules=dict(row.enum_rules or {}),
    )
