"""Service settings and their on-disk store.

Settings live in ``~/.editpilot/settings.json``. The API key never touches
the file in plaintext: it is stored as ``api_key_ciphertext``, a
``"fernet:<token>"`` string whose key sits next to the settings file.

Every scalar field can be overridden from the environment as
``EDITPILOT_<FIELD_NAME>``; e.g. ``EDITPILOT_MODEL`` or
``EDITPILOT_TOOL_CALL_DELAY_MS``.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, get_args, get_origin, get_type_hints

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.orchestration.types import TurnConfig

__all__ = [
    "ENV_PREFIX",
    "FernetSecretProvider",
    "SecretProvider",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "EDITPILOT_"
SETTINGS_VERSION = 1

_SETTINGS_DIR = Path.home() / ".editpilot"
_CIPHERTEXT_FIELD = "api_key_ciphertext"
_LEGACY_KEY_FIELD = "api_key"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})


@dataclass(slots=True)
class Settings:
    """Everything the agent service reads at startup."""

    # Upstream model
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    transport: str = "openai"
    gateway_api_key_header: str = "X-API-Key"
    default_headers: dict[str, str] = field(default_factory=dict)
    request_timeout: float = 90.0
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0

    # Agent turn
    temperature: float = 0.1
    max_tokens: int = 8192
    max_agent_iterations: int = 10
    tool_call_delay_ms: int = 0
    streaming: bool = True

    # Service
    heartbeat_interval: float = 15.0
    cache_ttl_seconds: float = 60.0
    cache_max_entries: int = 32
    upstream_agent_url: str | None = None
    host: str = "127.0.0.1"
    port: int = 8000
    debug_logging: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        """True when an upstream model can be called."""
        return bool(self.api_key and self.base_url and self.model)

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            api_key_header=self.gateway_api_key_header,
            debug_logging=self.debug_logging,
        )

    def turn_config(self) -> TurnConfig:
        return TurnConfig(
            max_iterations=max(1, self.max_agent_iterations),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            streaming_enabled=self.streaming,
            tool_call_delay=max(0, self.tool_call_delay_ms) / 1000.0,
        )


# -----------------------------------------------------------------------------
# Secret storage
# -----------------------------------------------------------------------------


class SecretProvider(ABC):
    """One encryption scheme; ``name`` prefixes the tokens it produces."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, token: str) -> str:
        ...


class FernetSecretProvider(SecretProvider):
    """Symmetric Fernet encryption with the key kept in a 0600 file.

    The key file is created on first use.
    """

    name = "fernet"

    def __init__(self, key_path: Path) -> None:
        self._key_path = key_path
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        return self._cipher().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self._cipher().decrypt(token.encode("ascii")).decode("utf-8")

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._read_or_create_key())
        return self._fernet

    def _read_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        _write_atomically(self._key_path, key, mode=0o600)
        LOGGER.info("Created settings encryption key at %s", self._key_path)
        return key


class SecretVault:
    """Wraps a :class:`SecretProvider` and tags tokens as ``"<name>:<payload>"``.

    Tokens tagged by a different provider are returned unchanged, so a
    settings file written by another backend is never destroyed.
    """

    def __init__(self, *, key_path: Path | None = None, provider: SecretProvider | None = None) -> None:
        self._provider = provider or FernetSecretProvider(key_path or _SETTINGS_DIR / "settings.key")

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: The token is tagged for this provider but does not
                decrypt with the current key.
        """
        if not token:
            return ""
        name, separator, payload = token.partition(":")
        if not separator:
            name, payload = "", token
        if name and name != self._provider.name:
            LOGGER.warning("Secret was stored by provider %r; leaving it encrypted", name)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError(f"Secret does not decrypt with the current {self._provider.name} key") from exc


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON.

    ``load`` layers, lowest first: defaults, the file, caller overrides
    (the CLI's ``--set``), then ``EDITPILOT_*`` environment variables. Files
    holding a plaintext ``api_key`` or an older ``version`` are rewritten
    in the current format on load.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _SETTINGS_DIR / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        payload = self._read_payload()
        settings = self._from_payload(payload) if payload else Settings()
        if overrides:
            settings = _merge(settings, overrides, source="CLI")
        env_overrides = _environment_overrides(os.environ)
        if env_overrides:
            settings = _merge(settings, env_overrides, source="environment")
        return settings

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically and return the file path."""

        document = asdict(settings)
        api_key = document.pop("api_key")
        if api_key:
            document[_CIPHERTEXT_FIELD] = self._vault.encrypt(api_key)
        document["version"] = SETTINGS_VERSION
        document["secret_backend"] = self._vault.strategy
        _write_atomically(self._path, json.dumps(document, indent=2, sort_keys=True).encode("utf-8"))
        LOGGER.debug("Saved settings to %s", self._path)
        return self._path

    def _from_payload(self, payload: Dict[str, Any]) -> Settings:
        ciphertext = payload.get(_CIPHERTEXT_FIELD)
        legacy_key = payload.get(_LEGACY_KEY_FIELD)
        api_key = ""
        if ciphertext:
            try:
                api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Ignoring stored API key: %s", exc)
        elif isinstance(legacy_key, str) and legacy_key:
            LOGGER.info("Encrypting plaintext API key found in %s", self._path)
            api_key = legacy_key

        known = _field_names() - {"api_key"}
        values = {key: value for key, value in payload.items() if key in known}
        try:
            settings = Settings(**values, api_key=api_key)
        except TypeError as exc:
            LOGGER.warning("Settings file %s has invalid values (%s); using defaults", self._path, exc)
            settings = Settings(api_key=api_key)

        stale = bool(legacy_key) or payload.get("version") != SETTINGS_VERSION
        if stale:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Could not rewrite settings file %s: %s", self._path, exc)
        return settings

    def _read_payload(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    stripped = (value or "").strip()
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _field_names() -> set[str]:
    return {item.name for item in fields(Settings)}


def _merge(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    known = _field_names()
    changes = {key: value for key, value in overrides.items() if key in known and value is not None}
    if isinstance(changes.get("metadata"), Mapping):
        changes["metadata"] = {**settings.metadata, **changes["metadata"]}
    if not changes:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, sorted(changes))
    return replace(settings, **changes)


def _parse_env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


_ENV_PARSERS: Dict[type, Callable[[str], Any]] = {
    str: str,
    bool: _parse_env_bool,
    int: lambda value: int(value, 10),
    float: float,
}


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    hints = get_type_hints(Settings)
    overrides: Dict[str, Any] = {}
    for name in sorted(_field_names()):
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        hint = hints[name]
        if get_origin(hint) in (dict, list):
            continue
        scalar = next((arg for arg in (hint, *get_args(hint)) if arg in _ENV_PARSERS), None)
        if scalar is None:
            continue
        try:
            overrides[name] = _ENV_PARSERS[scalar](raw)
        except ValueError:
            LOGGER.warning("Ignoring %s%s=%r: not a valid %s", ENV_PREFIX, name.upper(), raw, scalar.__name__)
    return overrides


def _write_atomically(path: Path, data: bytes, *, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_bytes(data)
    if mode is not None and os.name != "nt":
        os.chmod(tmp_path, mode)
    tmp_path.replace(path)
