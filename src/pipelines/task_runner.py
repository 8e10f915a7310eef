"""Sequential, fail-soft task runner.

Tasks run strictly one after another in ``run_order``. A failing task is
recorded and skipped; its analytes simply stay unset. Each task's output is
renamed through its ``output_map`` and folded left-to-right into a new map
where the first task to produce a canonical key keeps it.
"""

from typing import Any, Iterable

from src.db.repositories import AuditRepository
from src.errors import PipelineError
from src.logger import get_logger, stopwatch
from src.models import TaskInputs, TaskOutput
from src.pipelines.tasks import Task, TaskContext, task_from_row

logger = get_logger(__name__)


def apply_output_map(output: TaskOutput, output_map: dict[str, str]) -> dict[str, dict[str, Any]]:
    """Rename raw task keys to canonical analyte names."""
    return {output_map.get(key, key): dict(entry) for key, entry in output.analytes.items()}


def fold_first_writer_wins(
    acc: dict[str, dict[str, Any]], placed: dict[str, dict[str, Any]]
) -> dict[str, dict[str, Any]]:
    """Return a new map; keys already in ``acc`` are not overwritten."""
    merged = dict(acc)
    for key, entry in placed.items():
        if key not in merged:
            merged[key] = entry
    return merged


def _run_one(task: Task, ctx: TaskContext, audit: AuditRepository) -> TaskOutput | None:
    inputs = TaskInputs()
    with stopwatch() as elapsed:
        try:
            inputs = task.resolve_inputs(ctx)
            output = task.execute(inputs, ctx)
            error = None
        except PipelineError as exc:
            output, error = None, exc.message
        except Exception as exc:
            logger.exception("Task %s (%s) raised unexpectedly", task.task_id, task.type_tag)
            output, error = None, f"{type(exc).__name__}: {exc}"

    input_snapshot = {"inputs": inputs.snapshot(), "params": dict(task.params)}
    if output is None:
        logger.warning("Task %s (%s) failed after %dms: %s", task.task_id, task.type_tag, elapsed.ms, error)
        audit.record_task_run(
            ctx.workflow_result_id, task.task_id, "error", input_snapshot, {"error": error}, elapsed.ms
        )
        return None

    logger.info(
        "Task %s (%s) ok: %d analytes in %dms",
        task.task_id,
        task.type_tag,
        len(output.analytes),
        elapsed.ms,
    )
    audit.record_task_run(
        ctx.workflow_result_id, task.task_id, "ok", input_snapshot, output.to_dict(), elapsed.ms
    )
    return output


def run_tasks(task_rows: Iterable[Any], ctx: TaskContext, audit: AuditRepository) -> dict[str, dict[str, Any]]:
    """Run every task row in order and return the folded canonical analyte map."""
    analytes: dict[str, dict[str, Any]] = {}
    for row in task_rows:
        try:
            task = task_from_row(row)
        except PipelineError as exc:
            logger.warning("Skipping task %s: %s", row.id, exc.message)
            audit.record_task_run(
                ctx.workflow_result_id,
                str(row.id),
                "error",
                {"type": row.type, "params": row.params or {}},
                {"error": exc.message},
                0,
            )
            continue

        output = _run_one(task, ctx, audit)
        if output is not None:
            analytes = fold_first_writer_wins(analytes, apply_output_map(output, task.output_map))
    return analytes
