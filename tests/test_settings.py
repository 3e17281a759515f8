"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path

import pytest

from editpilot.services.settings import SecretVault, Settings, SettingsStore, redact_secret


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("EDITPILOT_"):
            monkeypatch.delenv(name, raising=False)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == Settings()


def test_defaults_match_agent_limits() -> None:
    config = Settings().turn_config()

    assert config.max_iterations == 10
    assert config.max_tokens == 8192
    assert config.temperature == 0.1
    assert Settings().heartbeat_interval == 15.0


def test_save_and_load_roundtrip_encrypts_api_key(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        transport="gateway",
        default_headers={"X-Test": "1"},
        metadata={"env": "dev"},
        max_agent_iterations=12,
    )

    path = store.save(original)
    payload = json.loads(path.read_text(encoding="utf-8"))
    reloaded = _store(tmp_path).load()

    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in path.read_text(encoding="utf-8")
    assert payload["version"] == 1
    assert reloaded == original


def test_plaintext_api_key_is_migrated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"api_key": "legacy-key", "model": "m"}), encoding="utf-8")

    settings = _store(tmp_path).load()
    migrated = json.loads(path.read_text(encoding="utf-8"))

    assert settings.api_key == "legacy-key"
    assert settings.model == "m"
    assert "api_key" not in migrated
    assert migrated["api_key_ciphertext"].startswith("fernet:")


def test_unknown_fields_and_invalid_json_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"model": "m", "theme": "dark", "version": 1}), encoding="utf-8")
    assert _store(tmp_path).load().model == "m"

    path.write_text("{not json", encoding="utf-8")
    assert _store(tmp_path).load() == Settings()


def test_cli_overrides_then_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _store(tmp_path)
    store.save(Settings(model="from-file", port=8000))
    monkeypatch.setenv("EDITPILOT_MODEL", "from-env")
    monkeypatch.setenv("EDITPILOT_STREAMING", "off")
    monkeypatch.setenv("EDITPILOT_TOOL_CALL_DELAY_MS", "250")
    monkeypatch.setenv("EDITPILOT_HEARTBEAT_INTERVAL", "not-a-number")

    settings = store.load(overrides={"model": "from-cli", "port": 9000, "metadata": {"team": "docs"}})

    assert settings.model == "from-env"
    assert settings.port == 9000
    assert settings.streaming is False
    assert settings.tool_call_delay_ms == 250
    assert settings.heartbeat_interval == 15.0
    assert settings.metadata == {"team": "docs"}
    assert settings.turn_config().tool_call_delay == 0.25


def test_vault_passes_through_unknown_prefix(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    token = vault.encrypt("value")

    assert vault.decrypt(token) == "value"
    assert vault.decrypt("rot13:payload") == "rot13:payload"
    assert vault.encrypt("") == ""
    assert vault.strategy == "fernet"


def test_client_settings_and_configured_flag() -> None:
    settings = Settings(api_key="k", gateway_api_key_header="X-Gateway-Key", default_headers={"A": "b"})

    client = settings.client_settings()

    assert settings.configured
    assert not replace(settings, api_key="").configured
    assert client.api_key_header == "X-Gateway-Key"
    assert client.default_headers == {"A": "b"}


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abcd", "****"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected


def test_container_fields_are_not_read_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EDITPILOT_DEFAULT_HEADERS", "X-Test: 1")
    monkeypatch.setenv("EDITPILOT_UPSTREAM_AGENT_URL", "http://upstream.test/agent")

    settings = _store(tmp_path).load()

    assert settings.default_headers == {}
    assert settings.upstream_agent_url == "http://upstream.test/agent"


def test_api_key_from_another_key_file_is_dropped(tmp_path: Path) -> None:
    _store(tmp_path).save(Settings(api_key="secret", model="m"))
    (tmp_path / "settings.key").unlink()

    settings = _store(tmp_path).load()

    assert settings.api_key == ""
    assert settings.model == "m"
