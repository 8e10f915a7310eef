"""
External tool webhook client.

Workflow tasks may delegate to lab-hosted microservices configured by URL
on the task row (``workflow_tasks.tool_url``).

Counting tools (``cell_count`` tasks):
    POST {"image_url": "...", "params": {...}}
    -> {"rbc": 3, "wbc": 12, ...}

Generic webhooks (``custom_webhook`` tasks):
    POST {"inputs": {...}, "params": {...}, "raw": {...}}
    -> {"analytes": {"<name>": {"value": "...", "unit": "..."}}}

Both answer with a JSON object; anything else is a task failure.
"""

from typing import Any

import requests

from src.errors import TaskExecutionFailed
from src.logger import get_logger, log_timing

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 60.0


class ToolClient:
    """POST JSON to a tool URL and return the JSON object it answers with."""

    def __init__(self, timeout_s: float = DEFAULT_TIMEOUT_S, http: requests.Session | None = None):
        self.timeout_s = timeout_s
        self._http = http or requests.Session()

    def post_json(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            with log_timing(logger, f"tool.post {url}"):
                response = self._http.post(url, json=body, timeout=self.timeout_s)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise TaskExecutionFailed(f"Tool call to {url} failed: {exc}", exc) from exc
        except ValueError as exc:
            raise TaskExecutionFailed(f"Tool at {url} did not answer with JSON", exc) from exc

        if not isinstance(data, dict):
            raise TaskExecutionFailed(
                f"Tool at {url} answered with JSON {type(data).__name__}, expected an object"
            )
        return data

    def count_cells(self, url: str, image_url: str, params: dict[str, Any]) -> dict[str, Any]:
        """Call a counting tool with an image reference."""
        return self.post_json(url, {"image_url": image_url, "params": params})

    def call_webhook(
        self,
        url: str,
        inputs: dict[str, Any],
        params: dict[str, Any],
        raw: dict[str, Any],
    ) -> dict[str, Any]:
        """Call a generic webhook with task inputs and the raw submission."""
        return self.post_json(url, {"inputs": inputs, "params": params, "raw": raw})
