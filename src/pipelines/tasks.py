"""Extraction task types.

The five task types form a closed set. Each type is a frozen dataclass that
owns its input contract and returns a fresh ``TaskOutput``; nothing is
mutated after a task returns. ``task_from_row`` builds the right variant
from a ``workflow_tasks`` row.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar

from src.api.tools import ToolClient
from src.errors import TaskExecutionFailed
from src.inference.constants import MAX_NEW_TOKENS_TASK
from src.io.attachments import AttachmentFetcher, FetchedAttachment, extract_pdf_text
from src.logger import get_logger
from src.models import AttachmentRef, TaskInputs, TaskOutput, stringify_value
from src.pipelines.audit import AuditedInference
from src.prompts import (
    DEFAULT_COLOR_CHOICES,
    DEFAULT_OCR_FIELDS,
    OCR_PROMPT,
    OCR_TEXT_PROMPT,
    VISION_COLOR_PROMPT,
    build_ocr_template,
    describe_ocr_fields,
)

logger = get_logger(__name__)

DEFAULT_CELL_COUNT_UNIT = "cells/HPF"
MAX_PDF_EVIDENCE_CHARS = 6000


@dataclass
class TaskContext:
    """Collaborators a task may use while running for one submission."""

    workflow_result_id: str
    raw: dict[str, Any]
    inference: AuditedInference
    fetcher: AttachmentFetcher
    tools: ToolClient
    find_attachments: Callable[[str], list[AttachmentRef]]


@dataclass(frozen=True)
class Task(ABC):
    """Fields shared by every task type."""

    type_tag: ClassVar[str] = ""

    task_id: str
    run_order: int = 0
    input_selector: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    output_map: dict[str, str] = field(default_factory=dict)
    tool_url: str | None = None

    def resolve_inputs(self, ctx: TaskContext) -> TaskInputs:
        selector = self.input_selector or {}
        if selector.get("attachment_tag"):
            return TaskInputs(attachments=tuple(ctx.find_attachments(str(selector["attachment_tag"]))))
        if selector.get("text_fields"):
            return TaskInputs(text_fields=tuple(str(f) for f in selector["text_fields"]))
        return TaskInputs()

    @abstractmethod
    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        """Run the task and return its raw-keyed output."""
        pass

    def _first_attachment(self, inputs: TaskInputs) -> AttachmentRef:
        if not inputs.attachments:
            raise TaskExecutionFailed(f"No image for {self.type_tag}")
        return inputs.attachments[0]

    def _fetch_image(self, inputs: TaskInputs, ctx: TaskContext) -> tuple[AttachmentRef, FetchedAttachment]:
        ref = self._first_attachment(inputs)
        fetched = ctx.fetcher.fetch(ref.file_url, ref.file_type)
        if not fetched.is_image:
            raise TaskExecutionFailed(
                f"{self.type_tag} needs an image, got {fetched.content_type}"
            )
        return ref, fetched

    def _require_tool_url(self) -> str:
        if not self.tool_url:
            raise TaskExecutionFailed(f"{self.type_tag} tool_url not configured")
        return self.tool_url


@dataclass(frozen=True)
class VisionColorTask(Task):
    """Classify strip/sample colour into a small fixed set."""

    type_tag: ClassVar[str] = "vision_color"

    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        ref, image = self._fetch_image(inputs, ctx)
        choices = [str(c) for c in self.params.get("choices") or DEFAULT_COLOR_CHOICES]
        prompt = VISION_COLOR_PROMPT.format(choices=", ".join(choices))
        data = ctx.inference.call(
            "vision",
            prompt,
            {"prompt": prompt, "image_url": ref.file_url, "mime_type": image.content_type},
            image=image.content,
            mime_type=image.content_type,
            max_new_tokens=MAX_NEW_TOKENS_TASK,
            expected_keys=("color",),
        )
        return TaskOutput(analytes={"color": {"value": stringify_value(data.get("color")), "unit": ""}})


@dataclass(frozen=True)
class OcrTask(Task):
    """Read a handful of fields off an image, or off a PDF's text layer."""

    type_tag: ClassVar[str] = "ocr"

    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        ref = self._first_attachment(inputs)
        fields = [str(f) for f in self.params.get("fields") or DEFAULT_OCR_FIELDS]
        template = build_ocr_template(fields)
        fetched = ctx.fetcher.fetch(ref.file_url, ref.file_type)

        if fetched.is_pdf:
            text = extract_pdf_text(fetched.content)
            if not text:
                raise TaskExecutionFailed("PDF attachment has no text layer")
            prompt = OCR_TEXT_PROMPT.format(
                field_names=describe_ocr_fields(fields),
                template=template,
                evidence_text=text[:MAX_PDF_EVIDENCE_CHARS],
            )
            data = ctx.inference.call(
                "ocr",
                prompt,
                {"prompt": prompt, "file_url": ref.file_url, "mime_type": fetched.content_type},
                max_new_tokens=MAX_NEW_TOKENS_TASK,
                expected_keys=fields,
            )
        elif fetched.is_image:
            prompt = OCR_PROMPT.format(field_names=describe_ocr_fields(fields), template=template)
            data = ctx.inference.call(
                "ocr",
                prompt,
                {"prompt": prompt, "image_url": ref.file_url, "mime_type": fetched.content_type},
                image=fetched.content,
                mime_type=fetched.content_type,
                max_new_tokens=MAX_NEW_TOKENS_TASK,
                expected_keys=fields,
            )
        else:
            raise TaskExecutionFailed(f"ocr cannot read {fetched.content_type}")

        return TaskOutput(
            analytes={f: {"value": stringify_value(data.get(f)), "unit": ""} for f in fields}
        )


@dataclass(frozen=True)
class TextExtractTask(Task):
    """Copy named raw submission fields verbatim. No external call."""

    type_tag: ClassVar[str] = "text_extract"

    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        return TaskOutput(
            analytes={
                name: {"value": stringify_value(ctx.raw[name]), "unit": ""}
                for name in inputs.text_fields
                if ctx.raw.get(name) is not None
            }
        )


@dataclass(frozen=True)
class CellCountTask(Task):
    """Delegate counting to an external tool; numeric outputs get an implied unit."""

    type_tag: ClassVar[str] = "cell_count"

    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        ref = self._first_attachment(inputs)
        url = self._require_tool_url()
        counts = ctx.tools.count_cells(url, ref.file_url, dict(self.params))
        unit = str(self.params.get("unit") or DEFAULT_CELL_COUNT_UNIT)
        return TaskOutput(analytes={str(k): {"value": v, "unit": unit} for k, v in counts.items()})


@dataclass(frozen=True)
class CustomWebhookTask(Task):
    """Generic escape hatch; the webhook answers in ``{analytes: {...}}`` shape."""

    type_tag: ClassVar[str] = "custom_webhook"

    def execute(self, inputs: TaskInputs, ctx: TaskContext) -> TaskOutput:
        url = self._require_tool_url()
        data = ctx.tools.call_webhook(url, inputs.snapshot(), dict(self.params), ctx.raw)
        analytes = data.get("analytes")
        if not isinstance(analytes, dict):
            raise TaskExecutionFailed(f"Webhook at {url} answered without an 'analytes' object")
        return TaskOutput(
            analytes={
                str(k): dict(v) if isinstance(v, dict) else {"value": v, "unit": ""}
                for k, v in analytes.items()
            }
        )


TASK_TYPES: dict[str, type[Task]] = {
    cls.type_tag: cls
    for cls in (VisionColorTask, OcrTask, TextExtractTask, CellCountTask, CustomWebhookTask)
}


def task_from_row(row: Any) -> Task:
    """Build the task variant for a ``workflow_tasks`` row.

    Raises:
        TaskExecutionFailed: unknown task type.
    """
    cls = TASK_TYPES.get(row.type)
    if cls is None:
        raise TaskExecutionFailed(f"Unknown task type {row.type!r}")
    return cls(
        task_id=str(row.id),
        run_order=row.run_order or 0,
        input_selector=dict(row.input_selector or {}),
        params=dict(row.params or {}),
        output_map=dict(row.output_map or {}),
        tool_url=row.tool_url,
    )
