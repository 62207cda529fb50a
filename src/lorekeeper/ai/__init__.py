"""AI client and the agentic retrieval loop."""

from .client import AIClient, AIResponseError, ClientSettings

__all__ = ["AIClient", "AIResponseError", "ClientSettings"]
