"""Inference client: ``infer(prompt, image?) -> JSON object``.

Tries the configured backends in order and returns the first answer that
decodes to a JSON object. Backends are initialized lazily and cached per
client, so one client is created per pipeline invocation or shared by the
process.
"""

from dataclasses import dataclass, field
from time import monotonic
from typing import TYPE_CHECKING, Any, Iterable

from src.errors import InferenceFailed
from src.inference.backends import SUPPORTED_BACKENDS, InferenceBackend, get_backend
from src.inference.constants import DEFAULT_IMAGE_MIME, MAX_NEW_TOKENS_DEFAULT
from src.inference.utils import decode_json_object
from src.logger import get_logger

if TYPE_CHECKING:
    from src.config import Settings

logger = get_logger(__name__)

# transformers ignores timeouts; it runs only when configured explicitly.
AUTO_BACKEND_ORDER = ["gemini", "modal"]


@dataclass
class InferenceResult:
    """Decoded answer plus the model that produced it."""

    data: dict[str, Any]
    model: str
    raw_response: str = ""


def resolve_backend_order(configured: str) -> list[str]:
    """Resolve backend order from an INFERENCE_BACKEND value."""
    configured = (configured or "auto").strip().lower()
    if configured == "auto":
        return list(AUTO_BACKEND_ORDER)
    if configured in SUPPORTED_BACKENDS:
        return [configured]
    logger.warning(
        "Invalid INFERENCE_BACKEND=%r. Supported values: auto, %s. Falling back to auto.",
        configured,
        ", ".join(SUPPORTED_BACKENDS),
    )
    return list(AUTO_BACKEND_ORDER)


@dataclass
class InferenceClient:
    backend_order: list[str]
    timeout_s: float | None = 60.0
    gemini_api_key: str = ""
    gemini_model: str = ""
    _backend_cache: dict[str, InferenceBackend] = field(default_factory=dict, repr=False)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "InferenceClient":
        return cls(
            backend_order=resolve_backend_order(settings.inference_backend),
            timeout_s=settings.inference_timeout_s,
            gemini_api_key=settings.gemini_api_key,
            gemini_model=settings.gemini_model,
        )

    @property
    def model_name(self) -> str:
        """Model id of the first configured backend, for audit rows."""
        backend = self._backend_cache.get(self.backend_order[0]) if self.backend_order else None
        return backend.model_id if backend else (self.backend_order[0] if self.backend_order else "")

    def _get_backend_instance(self, backend_name: str) -> InferenceBackend:
        backend = self._backend_cache.get(backend_name)
        if backend is None:
            logger.info("Initializing inference backend: %s", backend_name)
            kwargs: dict[str, Any] = {"gemini_api_key": self.gemini_api_key}
            if self.gemini_model:
                kwargs["gemini_model"] = self.gemini_model
            backend = get_backend(backend_name, **kwargs)  # type: ignore[arg-type]
            self._backend_cache[backend_name] = backend
        return backend

    def infer(
        self,
        prompt: str,
        image: bytes | None = None,
        mime_type: str | None = None,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        expected_keys: Iterable[str] = (),
    ) -> InferenceResult:
        """Run one prompt (optionally over an image) and decode a JSON object.

        ``timeout_s`` bounds the whole call: each backend in the fallback
        order only gets the time left over by the ones before it.

        Raises:
            InferenceFailed: every backend errored, timed out or answered with
                something that is not a JSON object, or the deadline passed.
        """
        keys = tuple(expected_keys)
        errors: list[str] = []
        last_exc: Exception | None = None
        deadline = monotonic() + self.timeout_s if self.timeout_s is not None else None

        for backend_name in self.backend_order:
            remaining = None if deadline is None else deadline - monotonic()
            if remaining is not None and remaining <= 0:
                logger.warning("Inference deadline of %ss reached before backend=%s", self.timeout_s, backend_name)
                errors.append(f"{backend_name}: skipped, {self.timeout_s}s deadline reached")
                break
            try:
                backend = self._get_backend_instance(backend_name)
                if image is not None:
                    raw = backend.extract_raw(
                        image,
                        prompt,
                        mime_type=mime_type or DEFAULT_IMAGE_MIME,
                        max_new_tokens=max_new_tokens,
                        timeout_s=remaining,
                    )
                else:
                    raw = backend.generate_text(
                        prompt, max_new_tokens=max_new_tokens, timeout_s=remaining
                    )
                data = decode_json_object(raw, keys)
                return InferenceResult(data=data, model=backend.model_id, raw_response=raw)
            except Exception as exc:
                logger.warning("Inference failed on backend=%s: %s", backend_name, exc)
                errors.append(f"{backend_name}: {exc}")
                last_exc = exc

        attempted = ", ".join(self.backend_order) or "none"
        raise InferenceFailed(
            f"Inference failed with backends ({attempted}). "
            f"Detail: {' | '.join(errors) if errors else 'no backends configured'}",
            last_exc,
        )
