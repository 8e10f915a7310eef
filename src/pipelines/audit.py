"""Audited inference: every model call becomes one ``ai_runs`` row."""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal

from src.db.repositories import AuditRepository
from src.errors import PipelineError
from src.inference.client import InferenceClient
from src.inference.constants import MAX_NEW_TOKENS_DEFAULT
from src.logger import get_logger, stopwatch

logger = get_logger(__name__)

CallKind = Literal["parser", "validator", "vision", "ocr"]


@dataclass
class AuditedInference:
    """Inference client bound to one submission's audit trail."""

    client: InferenceClient
    audit: AuditRepository
    workflow_result_id: str

    def call(
        self,
        kind: CallKind,
        prompt: str,
        request_payload: dict[str, Any],
        image: bytes | None = None,
        mime_type: str | None = None,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        expected_keys: Iterable[str] = (),
        decode: Callable[[dict[str, Any]], Any] | None = None,
    ) -> Any:
        """Run one inference call and record it whatever the outcome.

        ``request_payload`` is what gets stored as the request; image bytes
        are never persisted. When ``decode`` is given it runs inside the
        audited block, so an answer with the wrong shape is recorded as a
        failed call and its error is raised. Returns the decoded value, or
        the JSON object when there is no decoder.
        """
        model = self.client.model_name
        response: dict[str, Any] = {}
        decoded: Any = None
        failure: PipelineError | None = None
        with stopwatch() as elapsed:
            try:
                result = self.client.infer(
                    prompt,
                    image=image,
                    mime_type=mime_type,
                    max_new_tokens=max_new_tokens,
                    expected_keys=expected_keys,
                )
                model = result.model
                response = result.data
                decoded = decode(response) if decode else response
            except PipelineError as exc:
                response = {**response, "error": exc.message}
                failure = exc
        self.audit.record_ai_run(
            self.workflow_result_id,
            kind=kind,
            model=model or "unknown",
            request=request_payload,
            response=response,
            ok=failure is None,
            duration_ms=elapsed.ms,
        )
        if failure is not None:
            logger.warning("%s call failed after %dms: %s", kind, elapsed.ms, failure.message)
            raise failure
        logger.info("%s call ok (model=%s, %dms)", kind, model, elapsed.ms)
        return decoded
