"""AI parser: normalize raw input plus the partial map into canonical JSON."""

from typing import Any

from src.errors import InferenceFailed, ParseFailed
from src.inference.constants import MAX_NEW_TOKENS_PARSER
from src.logger import get_logger
from src.models import ParsedResult, WorkflowAIConfig
from src.pipelines.audit import AuditedInference
from src.prompts import build_parser_prompt

logger = get_logger(__name__)


def parse_canonical(
    config: WorkflowAIConfig,
    raw: dict[str, Any],
    partial: dict[str, Any],
    inference: AuditedInference,
) -> ParsedResult:
    """Ask the model for the strict ``{meta, analytes}`` shape.

    Raises:
        ParseFailed: the call failed or the answer lacks an analytes object.
    """
    payload = {"raw": raw, "partial": partial}
    prompt = build_parser_prompt(
        config.parser_prompt, config.analyte_map, config.unit_map, payload
    )
    try:
        parsed = inference.call(
            "parser",
            prompt,
            payload,
            max_new_tokens=MAX_NEW_TOKENS_PARSER,
            expected_keys=("analytes", "meta"),
            decode=ParsedResult.from_model_output,
        )
    except InferenceFailed as exc:
        raise ParseFailed(f"AI parser failed: {exc.message}", exc) from exc

    logger.info(
        "Parser produced %d analytes, meta keys=%s",
        len(parsed.analytes),
        sorted(parsed.meta),
    )
    return parsed
