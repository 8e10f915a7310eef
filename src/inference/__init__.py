"""Inference module: hosted and self-hosted multimodal backends."""

from .backends import (
    GeminiBackend,
    InferenceBackend,
    ModalBackend,
    TransformersBackend,
    get_backend,
)
from .client import InferenceClient, InferenceResult, resolve_backend_order
from .constants import GEMINI_MODEL_ID, MODEL_ID

__all__ = [
    # Constants
    "GEMINI_MODEL_ID",
    "MODEL_ID",
    # Backends
    "InferenceBackend",
    "GeminiBackend",
    "ModalBackend",
    "TransformersBackend",
    "get_backend",
    # Client
    "InferenceClient",
    "InferenceResult",
    "resolve_backend_order",
]
