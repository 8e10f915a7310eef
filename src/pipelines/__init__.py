"""Pipeline stages for workflow result processing."""

from .ai_parser import parse_canonical
from .commit import commit_result
from .config_resolver import resolve_config
from .field_merger import merge_raw_fields
from .task_runner import run_tasks
from .validation import decide, run_ai_validator, validate_deterministic
from .workflow_result import process_workflow_result

__all__ = [
    "commit_result",
    "decide",
    "merge_raw_fields",
    "parse_canonical",
    "process_workflow_result",
    "resolve_config",
    "run_ai_validator",
    "run_tasks",
    "validate_deterministic",
]
