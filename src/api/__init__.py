# Clients for lab-hosted tool webhooks (cell counters, custom extractors)
from .tools import ToolClient

__all__ = ["ToolClient"]
