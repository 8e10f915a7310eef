"""Shared constants for inference backends.

Single source of truth for model ids and token limits.
Imported by both backends.py (client-side) and modal_app.py (remote GPU).
"""

GEMINI_MODEL_ID = "gemini-2.5-flash"
GEMINI_URL_TEMPLATE = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)

# Open-weights multimodal model served by the Modal and local backends
MODEL_ID = "google/medgemma-1.5-4b-it"

# Parser output carries every analyte; task prompts answer with a handful of keys
MAX_NEW_TOKENS_PARSER = 4096
MAX_NEW_TOKENS_VALIDATOR = 2048
MAX_NEW_TOKENS_TASK = 512
MAX_NEW_TOKENS_DEFAULT = 2048

DEFAULT_IMAGE_MIME = "image/jpeg"
