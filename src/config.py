"""Runtime settings read from environment variables.

Environment variables:
    DATABASE_URL: SQLAlchemy URL (default: sqlite:///./labflow.db)
    INFERENCE_BACKEND: auto, gemini, modal or transformers (default: auto)
    GEMINI_API_KEY: Key for the hosted Gemini API
    GEMINI_MODEL: Hosted model id (default: gemini-2.5-flash)
    INFERENCE_TIMEOUT_S: Bound on one inference call (default: 60)
    ATTACHMENT_TIMEOUT_S: Bound on one attachment download (default: 30)
    TOOL_TIMEOUT_S: Bound on one external tool webhook (default: 60)
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from src.inference.constants import GEMINI_MODEL_ID

DEFAULT_DATABASE_URL = "sqlite:///./labflow.db"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    inference_backend: str = "auto"
    gemini_api_key: str = ""
    gemini_model: str = GEMINI_MODEL_ID
    inference_timeout_s: float = 60.0
    attachment_timeout_s: float = 30.0
    tool_timeout_s: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        return cls(
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            inference_backend=os.environ.get("INFERENCE_BACKEND", "auto").strip().lower(),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
            gemini_model=os.environ.get("GEMINI_MODEL", GEMINI_MODEL_ID),
            inference_timeout_s=_env_float("INFERENCE_TIMEOUT_S", 60.0),
            attachment_timeout_s=_env_float("ATTACHMENT_TIMEOUT_S", 30.0),
            tool_timeout_s=_env_float("TOOL_TIMEOUT_S", 60.0),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.from_env()
