"""
Centralized prompts for the workflow result pipeline.

Task prompts (vision colour, OCR) are fixed here. Parser and validator
prompts are authored per workflow version in ``workflow_ai_configs``; the
builders below wrap them with the input payload and the exact output shape.
"""

import json
from typing import Any

# --- System Instructions ---

SYSTEM_INSTRUCTION = (
    "You are a clinical laboratory assistant that reads instrument output, "
    "sample photos and technician entries, and answers only with JSON."
)
"""System instruction for the open-weights backends (Modal, Transformers)."""


# --- Task Prompts ---

DEFAULT_COLOR_CHOICES = ("Straw", "Yellow", "Amber", "Dark Yellow")

VISION_COLOR_PROMPT = """Classify urine strip color into one of: {choices}.
Respond JSON: {{"color":"<one>"}}"""
"""Prompt for the vision_color task.

Expected output: {"color": "<one of the choices>"}
"""

DEFAULT_OCR_FIELDS = ("ph", "sg")

OCR_PROMPT = """Read {field_names} from the image if visible.
Leave a field as an empty string when it cannot be read.
Respond JSON: {template}"""
"""Prompt for the ocr task on an image. Field names come from task params."""

OCR_TEXT_PROMPT = """Read {field_names} from the instrument printout below.
Leave a field as an empty string when it is not present.
Respond JSON: {template}

PRINTOUT:
{evidence_text}"""
"""Prompt for the ocr task when the attachment is a PDF with a text layer."""

OCR_FIELD_LABELS = {
    "ph": "pH",
    "sg": "Specific Gravity (SG)",
}


def build_ocr_template(fields: list[str]) -> str:
    """Render the ``{"ph":"","sg":""}`` answer template for OCR prompts."""
    return json.dumps({f: "" for f in fields}, separators=(",", ":"))


def describe_ocr_fields(fields: list[str]) -> str:
    return " and ".join(OCR_FIELD_LABELS.get(f, f) for f in fields)


# --- Parser / Validator Wrappers ---

PARSER_OUTPUT_SHAPE = (
    'Respond ONLY as JSON in shape: {"meta":{"sample_id":...,"review_status":...},'
    '"analytes":{"<canonical>":{"value":"","unit":""}}}'
)

VALIDATOR_OUTPUT_SHAPE = (
    'Return ONLY JSON: {"status":"ok|warn|fail","issues":[{"severity":"error|warn",'
    '"field":"...","message":"...","suggestion":"..."}]}'
)


def build_parser_prompt(
    parser_prompt: str,
    analyte_map: dict[str, str],
    unit_map: dict[str, str],
    payload: dict[str, Any],
) -> str:
    """Wrap a configured parser prompt with maps, raw input and output shape."""
    return "\n".join(
        [
            parser_prompt or "",
            "",
            "INPUT (JSON):",
            json.dumps(
                {"analyte_map": analyte_map, "unit_map": unit_map, "input": payload},
                ensure_ascii=False,
                default=str,
            ),
            "",
            PARSER_OUTPUT_SHAPE,
        ]
    )


def build_validator_prompt(validator_prompt: str, payload: dict[str, Any]) -> str:
    """Wrap a configured validator prompt with raw, normalized and rules."""
    return "\n".join(
        [
            validator_prompt or "",
            "",
            "RAW, NORMALIZED, RULES:",
            json.dumps(payload, ensure_ascii=False, default=str),
            "",
            VALIDATOR_OUTPUT_SHAPE,
        ]
    )
