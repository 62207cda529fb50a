"""Service layer helpers (settings persistence)."""

from .settings import (
    RetrievalSettings,
    SecretVault,
    Settings,
    SettingsStore,
    should_use_agentic_retrieval,
)

__all__ = [
    "RetrievalSettings",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "should_use_agentic_retrieval",
]
