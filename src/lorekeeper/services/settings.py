"""Persisted settings for the retrieval client.

Settings live in ``~/.lorekeeper/settings.json``. The API key never touches
disk in plaintext: it is stored as a Fernet token whose key file sits next to
the settings file. ``LOREKEEPER_*`` environment variables override whatever
was loaded, which is how scripts and CI pick models without editing files.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Literal, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.retrieval.controller import RetrievalConfig

__all__ = [
    "Settings",
    "RetrievalSettings",
    "SettingsStore",
    "SecretVault",
    "REASONING_EFFORT_CHOICES",
    "should_use_agentic_retrieval",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

_HOME_DIR = Path.home() / ".lorekeeper"
_SCHEMA_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_FERNET_PREFIX = "fernet"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})

ReasoningEffort = Literal["off", "minimal", "low", "medium", "high"]
REASONING_EFFORT_CHOICES: tuple[str, ...] = ("off", "minimal", "low", "medium", "high")


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def _as_int(raw: str) -> int:
    return int(raw.strip(), 10)


# (section, field, converter); section None targets Settings itself.
_ENV_FIELDS: Mapping[str, tuple[str | None, str, Callable[[str], Any]]] = {
    "LOREKEEPER_API_KEY": (None, "api_key", str),
    "LOREKEEPER_BASE_URL": (None, "base_url", str),
    "LOREKEEPER_MODEL": (None, "model", str),
    "LOREKEEPER_ORGANIZATION": (None, "organization", str),
    "LOREKEEPER_DEBUG_LOGGING": (None, "debug_logging", _as_bool),
    "LOREKEEPER_REQUEST_TIMEOUT": (None, "request_timeout", float),
    "LOREKEEPER_MAX_RETRIES": (None, "max_retries", _as_int),
    "LOREKEEPER_RETRIEVAL_ENABLED": ("retrieval", "enabled", _as_bool),
    "LOREKEEPER_RETRIEVAL_MODEL": ("retrieval", "model", str),
    "LOREKEEPER_RETRIEVAL_MAX_ITERATIONS": ("retrieval", "max_iterations", _as_int),
    "LOREKEEPER_RETRIEVAL_THRESHOLD": ("retrieval", "agentic_threshold", _as_int),
}


@dataclass(slots=True)
class RetrievalSettings:
    """User-facing knobs for agentic retrieval."""

    enabled: bool = False
    model: str = "minimax/minimax-m2.1"
    temperature: float = 0.3
    max_iterations: int = 10
    agentic_threshold: int = 30
    reasoning_effort: str = "high"
    provider_only: list[str] = field(default_factory=lambda: ["minimax"])
    manual_body: str = ""

    def extra_body(self) -> dict[str, Any]:
        """Provider request fields: reasoning effort, provider pinning, manual JSON."""

        body: dict[str, Any] = {}
        effort = (self.reasoning_effort or "").strip().lower()
        if effort and effort != "off":
            if effort not in REASONING_EFFORT_CHOICES:
                LOGGER.warning("Unknown reasoning effort %r; sending as-is", self.reasoning_effort)
            body["reasoning"] = {"effort": effort}
        providers = [name for name in self.provider_only if name]
        if providers:
            body["provider"] = {"only": providers}
        manual = (self.manual_body or "").strip()
        if manual:
            try:
                parsed = json.loads(manual)
            except json.JSONDecodeError as exc:
                LOGGER.warning("Ignoring manual request body that is not valid JSON: %s", exc)
            else:
                if isinstance(parsed, Mapping):
                    body.update(parsed)
                else:
                    LOGGER.warning("Ignoring manual request body that is not a JSON object")
        return body

    def to_config(self, **overrides: Any) -> RetrievalConfig:
        """Build the loop configuration these settings describe."""

        values: dict[str, Any] = {
            "max_iterations": self.max_iterations,
            "temperature": self.temperature,
            "extra_body": self.extra_body(),
        }
        values.update(overrides)
        return RetrievalConfig(**values)


@dataclass(slots=True)
class Settings:
    """Connection settings plus the nested retrieval section."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    model: str = "minimax/minimax-m2.1"
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)

    def to_client_settings(self, *, for_retrieval: bool = True) -> ClientSettings:
        """Client settings, using the retrieval model when ``for_retrieval`` is set."""

        model = self.retrieval.model if for_retrieval and self.retrieval.model else self.model
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            metadata={str(k): str(v) for k, v in self.metadata.items()} or None,
            debug_logging=self.debug_logging,
        )


def should_use_agentic_retrieval(settings: RetrievalSettings | Settings, chapter_count: int) -> bool:
    """Agentic retrieval pays off only for long stories; static retrieval covers the rest."""

    retrieval = settings.retrieval if isinstance(settings, Settings) else settings
    return retrieval.enabled and chapter_count > retrieval.agentic_threshold


# -----------------------------------------------------------------------------
# Secret storage
# -----------------------------------------------------------------------------


class SecretVault:
    """Fernet encryption for secrets, keyed by a file created on first use."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_HOME_DIR / "settings.key")
        self._cipher: Fernet | None = None

    @property
    def strategy(self) -> str:
        return _FERNET_PREFIX

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8"))
        return f"{_FERNET_PREFIX}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: The token names another backend or fails verification.
        """

        if not token:
            return ""
        backend, sep, body = token.partition(":")
        if not sep:
            backend, body = _FERNET_PREFIX, token
        if backend != _FERNET_PREFIX:
            raise ValueError(f"Unsupported secret backend: {backend}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_create_key())
        return self._cipher

    def _read_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        _atomic_write(self._key_path, key, private=True)
        return key


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON with an encrypted API key."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or (_HOME_DIR / "settings.json")
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load from disk, then apply ``overrides`` and environment variables.

        Legacy files (plaintext key or an older schema version) are rewritten
        in the current format as a side effect.
        """

        raw = self._read()
        settings, stale = self._decode(raw) if raw else (Settings(), False)
        if stale:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Could not rewrite legacy settings file %s: %s", self._path, exc)

        if overrides:
            settings = _with_overrides(settings, overrides, source="CLI")
        env = _environment_overrides()
        if env:
            settings = _with_overrides(settings, env, source="environment")
        return settings

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""

        document = asdict(settings)
        api_key = document.pop("api_key", "")
        if api_key:
            document[_CIPHERTEXT_KEY] = self._vault.encrypt(api_key)
        document["version"] = _SCHEMA_VERSION
        document["secret_backend"] = self._vault.strategy
        body = json.dumps(document, indent=2, sort_keys=True)
        _atomic_write(self._path, body.encode("utf-8"))
        LOGGER.debug("Settings saved to %s (api key stored: %s)", self._path, bool(api_key))
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring settings file %s: invalid JSON (%s)", self._path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Ignoring settings file %s: top level is not an object", self._path)
            return {}
        return document

    def _decode(self, document: dict[str, Any]) -> tuple[Settings, bool]:
        """Build settings from a stored document; flag it if it needs rewriting."""

        ciphertext = document.get(_CIPHERTEXT_KEY)
        plaintext = document.get("api_key")
        api_key = ""
        stale = document.get("version") != _SCHEMA_VERSION
        if ciphertext:
            try:
                api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt stored API key: %s", exc)
        elif plaintext:
            LOGGER.info("Found a plaintext API key in %s; it will be stored encrypted", self._path)
            api_key = str(plaintext)
            stale = True

        known = {item.name for item in fields(Settings)} - {"api_key", "retrieval"}
        values = {key: value for key, value in document.items() if key in known}
        try:
            settings = Settings(**values)
        except TypeError as exc:
            LOGGER.warning("Settings file %s has unexpected data: %s", self._path, exc)
            settings = Settings()
        retrieval = RetrievalSettings()
        section = document.get("retrieval")
        if isinstance(section, Mapping):
            retrieval = _merge_retrieval(retrieval, section)
        return replace(settings, api_key=api_key, retrieval=retrieval), stale


def _atomic_write(path: Path, data: bytes, *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(path.suffix + ".tmp")
    staging.write_bytes(data)
    if private and os.name != "nt":  # pragma: no cover - depends on OS
        os.chmod(staging, 0o600)
    staging.replace(path)


def _environment_overrides() -> dict[str, Any]:
    top: dict[str, Any] = {}
    retrieval: dict[str, Any] = {}
    for name, (section, field_name, convert) in _ENV_FIELDS.items():
        raw = os.environ.get(name)
        if raw is None:
            continue
        try:
            value = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring environment override %s=%r: not a valid value", name, raw)
            continue
        (retrieval if section == "retrieval" else top)[field_name] = value
    if retrieval:
        top["retrieval"] = retrieval
    return top


def _with_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    known = {item.name for item in fields(Settings)}
    updates = {key: value for key, value in overrides.items() if key in known and value is not None}
    section = updates.get("retrieval")
    if isinstance(section, Mapping):
        updates["retrieval"] = _merge_retrieval(settings.retrieval, section)
    if not updates:
        return settings
    LOGGER.debug("Applying %s settings overrides: %s", source, sorted(updates))
    return replace(settings, **updates)


def _merge_retrieval(current: RetrievalSettings, section: Mapping[str, Any]) -> RetrievalSettings:
    known = {item.name for item in fields(RetrievalSettings)}
    updates = {key: value for key, value in section.items() if key in known and value is not None}
    return replace(current, **updates)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of a secret."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]
