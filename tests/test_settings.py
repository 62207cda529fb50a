"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lorekeeper.services.settings import (
    RetrievalSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
    should_use_agentic_retrieval,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = _store(tmp_path).load()

    assert settings == Settings()
    assert settings.retrieval.max_iterations == 10
    assert settings.retrieval.agentic_threshold == 30


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="narrator-model",
        default_headers={"X-Test": "1"},
        retrieval=RetrievalSettings(enabled=True, model="retrieval-model", max_iterations=6),
    )

    store.save(original)
    reloaded = _store(tmp_path).load()

    assert reloaded == original
    raw = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert raw["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in (tmp_path / "settings.json").read_text(encoding="utf-8")


def test_load_legacy_plaintext_api_key(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key": "plain", "model": "old-model"}), encoding="utf-8")

    settings = _store(tmp_path).load()

    assert settings.api_key == "plain"
    assert settings.model == "old-model"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["version"] == 1


def test_undecryptable_key_is_dropped(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key_ciphertext": "fernet:bogus", "version": 1}), encoding="utf-8")

    assert _store(tmp_path).load().api_key == ""


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOREKEEPER_API_KEY", "env-key")
    monkeypatch.setenv("LOREKEEPER_MAX_RETRIES", "5")
    monkeypatch.setenv("LOREKEEPER_RETRIEVAL_ENABLED", "yes")
    monkeypatch.setenv("LOREKEEPER_RETRIEVAL_MAX_ITERATIONS", "4")
    monkeypatch.setenv("LOREKEEPER_RETRIEVAL_THRESHOLD", "not-a-number")

    settings = _store(tmp_path).load()

    assert settings.api_key == "env-key"
    assert settings.max_retries == 5
    assert settings.retrieval.enabled is True
    assert settings.retrieval.max_iterations == 4
    assert settings.retrieval.agentic_threshold == 30


def test_cli_overrides_merge_retrieval_fields(tmp_path: Path) -> None:
    settings = _store(tmp_path).load(overrides={"model": "cli-model", "retrieval": {"max_iterations": 2}})

    assert settings.model == "cli-model"
    assert settings.retrieval.max_iterations == 2
    assert settings.retrieval.model == "minimax/minimax-m2.1"


def test_retrieval_extra_body_combines_reasoning_provider_and_manual() -> None:
    retrieval = RetrievalSettings(
        reasoning_effort="medium",
        provider_only=["minimax"],
        manual_body='{"top_k": 20}',
    )

    assert retrieval.extra_body() == {
        "reasoning": {"effort": "medium"},
        "provider": {"only": ["minimax"]},
        "top_k": 20,
    }


@pytest.mark.parametrize("manual", ["{not json", "[1, 2]"])
def test_invalid_manual_body_is_ignored(manual: str) -> None:
    retrieval = RetrievalSettings(reasoning_effort="off", provider_only=[], manual_body=manual)

    assert retrieval.extra_body() == {}


def test_to_config_carries_loop_bounds() -> None:
    config = RetrievalSettings(max_iterations=7, temperature=0.5).to_config(max_tokens=300)

    assert config.max_iterations == 7
    assert config.temperature == 0.5
    assert config.max_tokens == 300
    assert config.extra_body["reasoning"] == {"effort": "high"}


def test_client_settings_use_retrieval_model() -> None:
    settings = Settings(model="narrator", retrieval=RetrievalSettings(model="retriever"))

    assert settings.to_client_settings().model == "retriever"
    assert settings.to_client_settings(for_retrieval=False).model == "narrator"


@pytest.mark.parametrize(
    ("enabled", "chapters", "expected"),
    [(False, 100, False), (True, 30, False), (True, 31, True)],
)
def test_should_use_agentic_retrieval(enabled: bool, chapters: int, expected: bool) -> None:
    settings = Settings(retrieval=RetrievalSettings(enabled=enabled, agentic_threshold=30))

    assert should_use_agentic_retrieval(settings, chapters) is expected
    assert should_use_agentic_retrieval(settings.retrieval, chapters) is expected


def test_vault_rejects_unknown_backend(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    assert vault.decrypt(vault.encrypt("secret")) == "secret"
    with pytest.raises(ValueError):
        vault.decrypt("dpapi:abc")


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abcd") == "****"
    assert redact_secret("sk-123456") == "sk*****56"
