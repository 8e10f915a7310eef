"""Inference backends for task, parser and validator calls.

Supports multiple backends:
- GeminiBackend: Hosted Gemini REST API (default for production)
- ModalBackend: Open-weights model on a Modal GPU container
- TransformersBackend: Local GPU inference (for on-prem lab servers)

All backends take an optional image as raw bytes, since attachments are
fetched over HTTP rather than read from disk.
"""

import base64
import io
import os
from abc import ABC, abstractmethod
from typing import Literal

import requests

from src.errors import InferenceFailed
from src.inference.constants import (
    DEFAULT_IMAGE_MIME,
    GEMINI_MODEL_ID,
    GEMINI_URL_TEMPLATE,
    MAX_NEW_TOKENS_DEFAULT,
    MODEL_ID,
)
from src.logger import get_logger, log_timing
from src.prompts import SYSTEM_INSTRUCTION

logger = get_logger(__name__)

# --- Backend Abstraction ---


class InferenceBackend(ABC):
    """Abstract base class for inference backends."""

    name: str = ""
    model_id: str = ""

    @abstractmethod
    def extract_raw(
        self,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = DEFAULT_IMAGE_MIME,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        """Run a prompt over an image and return the model response text."""
        pass

    @abstractmethod
    def generate_text(
        self,
        prompt: str,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        """Run text-only generation and return the model response text."""
        pass


class GeminiBackend(InferenceBackend):
    """Backend for the hosted Gemini ``generateContent`` endpoint."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model_id: str = GEMINI_MODEL_ID,
        http: requests.Session | None = None,
    ):
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable required for Gemini access")
        self.api_key = api_key
        self.model_id = model_id
        self._http = http or requests.Session()

    def extract_raw(
        self,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = DEFAULT_IMAGE_MIME,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        parts = [
            {"text": prompt},
            {
                "inlineData": {
                    "mimeType": mime_type or DEFAULT_IMAGE_MIME,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            },
        ]
        return self._generate(parts, max_new_tokens, timeout_s)

    def generate_text(
        self,
        prompt: str,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        return self._generate([{"text": prompt}], max_new_tokens, timeout_s)

    def _generate(self, parts: list[dict], max_new_tokens: int, timeout_s: float | None) -> str:
        body = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "generationConfig": {
                "responseMimeType": "application/json",
                "maxOutputTokens": max_new_tokens,
            },
            "contents": [{"role": "user", "parts": parts}],
        }
        url = GEMINI_URL_TEMPLATE.format(model=self.model_id)
        logger.info(
            "Submitting Gemini request (model=%s, parts=%d, max_tokens=%d)",
            self.model_id,
            len(parts),
            max_new_tokens,
        )
        with log_timing(logger, "gemini.generate_content"):
            response = self._http.post(
                url, params={"key": self.api_key}, json=body, timeout=timeout_s
            )
        response.raise_for_status()

        data = response.json()
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            reason = (data.get("promptFeedback") or {}).get("blockReason") if isinstance(data, dict) else None
            raise InferenceFailed(
                f"Gemini returned no candidate text (block_reason={reason})", exc
            ) from exc
        logger.debug("Gemini response length: %d", len(text))
        return text


class ModalBackend(InferenceBackend):
    """Backend that calls the deployed Modal class for remote GPU inference."""

    name = "modal"
    model_id = MODEL_ID

    def extract_raw(
        self,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = DEFAULT_IMAGE_MIME,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        logger.info(
            "Submitting Modal request (bytes=%d, mime=%s, prompt_chars=%d, max_new_tokens=%d)",
            len(image_bytes),
            mime_type,
            len(prompt),
            max_new_tokens,
        )
        model = self._remote_model()
        call = model.extract_from_image.spawn(image_bytes, prompt, max_new_tokens=max_new_tokens)
        with log_timing(logger, "modal.extract_from_image"):
            return self._await(call, timeout_s)

    def generate_text(
        self,
        prompt: str,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        logger.info(
            "Submitting Modal text request (prompt_chars=%d, max_new_tokens=%d)",
            len(prompt),
            max_new_tokens,
        )
        model = self._remote_model()
        call = model.generate_from_text.spawn(prompt, max_new_tokens=max_new_tokens)
        with log_timing(logger, "modal.generate_from_text"):
            return self._await(call, timeout_s)

    @staticmethod
    def _remote_model():
        import modal

        from .modal_app import APP_NAME, CLS_NAME

        Model = modal.Cls.from_name(APP_NAME, CLS_NAME)
        return Model()

    @staticmethod
    def _await(call, timeout_s: float | None) -> str:
        """Wait for a spawned call; cancel it when the timeout elapses."""
        import modal.exception

        try:
            result = call.get(timeout=timeout_s)
        except (TimeoutError, modal.exception.TimeoutError) as exc:
            call.cancel()
            raise InferenceFailed(f"Modal call timed out after {timeout_s}s", exc) from exc
        logger.debug("Modal response length: %d", len(result) if result else 0)
        return result or ""


class TransformersBackend(InferenceBackend):
    """Backend for direct local GPU inference using transformers.

    Requires: CUDA-enabled GPU, HF_TOKEN environment variable.
    Generation is bounded by ``max_new_tokens``; ``timeout_s`` is not enforced.
    """

    name = "transformers"

    def __init__(self, model_id: str = MODEL_ID):
        self.model_id = model_id
        self._model = None
        self._processor = None

    def _load_model(self):
        """Lazy load model and processor."""
        if self._model is not None:
            return

        import torch
        from transformers import AutoModelForImageTextToText, AutoProcessor

        hf_token = os.environ.get("HF_TOKEN")
        if not hf_token:
            raise ValueError("HF_TOKEN environment variable required for local model access")

        logger.info("Loading local model: %s", self.model_id)
        with log_timing(logger, "local.load_processor"):
            self._processor = AutoProcessor.from_pretrained(
                self.model_id, token=hf_token, use_fast=True
            )
        with log_timing(logger, "local.load_model"):
            self._model = AutoModelForImageTextToText.from_pretrained(
                self.model_id,
                token=hf_token,
                dtype=torch.bfloat16,
                device_map="auto",
            )
        logger.info("Model loaded successfully")

    def extract_raw(
        self,
        image_bytes: bytes,
        prompt: str,
        mime_type: str = DEFAULT_IMAGE_MIME,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        from PIL import Image

        self._load_model()
        pil_image = Image.open(io.BytesIO(image_bytes)).convert("RGB")

        messages = [
            {
                "role": "system",
                "content": [{"type": "text", "text": SYSTEM_INSTRUCTION}],
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image", "image": pil_image},
                ],
            },
        ]
        return self._generate_with_messages(messages, max_new_tokens)

    def generate_text(
        self,
        prompt: str,
        max_new_tokens: int = MAX_NEW_TOKENS_DEFAULT,
        timeout_s: float | None = None,
    ) -> str:
        self._load_model()
        messages = [
            {
                "role": "system",
                "content": [{"type": "text", "text": SYSTEM_INSTRUCTION}],
            },
            {
                "role": "user",
                "content": [{"type": "text", "text": prompt}],
            },
        ]
        return self._generate_with_messages(messages, max_new_tokens)

    def _generate_with_messages(self, messages: list[dict], max_new_tokens: int) -> str:
        import torch

        inputs = self._processor.apply_chat_template(
            messages,
            add_generation_prompt=True,
            tokenize=True,
            return_dict=True,
            return_tensors="pt",
        ).to(self._model.device, dtype=torch.bfloat16)

        with torch.inference_mode():
            outputs = self._model.generate(
                **inputs,
                max_new_tokens=max_new_tokens,
                do_sample=False,
            )

        input_len = inputs["input_ids"].shape[-1]
        return self._processor.decode(outputs[0][input_len:], skip_special_tokens=True)


# --- Factory ---

BackendType = Literal["gemini", "modal", "transformers"]
SUPPORTED_BACKENDS: tuple[str, ...] = ("gemini", "modal", "transformers")


def get_backend(
    backend_type: BackendType = "gemini",
    *,
    gemini_api_key: str = "",
    gemini_model: str = GEMINI_MODEL_ID,
) -> InferenceBackend:
    """Factory function to get the appropriate backend.

    Args:
        backend_type: "gemini" for the hosted API, "modal" for remote GPU via
            Modal, "transformers" for local GPU
        gemini_api_key: API key, only used by the Gemini backend
        gemini_model: Hosted model id, only used by the Gemini backend

    Returns:
        InferenceBackend instance
    """
    if backend_type == "gemini":
        return GeminiBackend(api_key=gemini_api_key, model_id=gemini_model)
    elif backend_type == "modal":
        return ModalBackend()
    elif backend_type == "transformers":
        return TransformersBackend()
    else:
        raise ValueError(f"Unknown backend type: {backend_type}")
