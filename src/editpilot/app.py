"""Composition root and ``editpilot`` console script.

``editpilot serve`` (the default command) loads settings, builds the
FastAPI app and hands it to uvicorn. ``--dump-settings`` prints the
effective configuration, with the API key redacted, instead of serving.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

import uvicorn

from .server import create_app
from .services.cache import TTLCache
from .services.settings import ENV_PREFIX, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})
_NULL_VALUES = frozenset({"none", "null"})


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Install the service log handlers at INFO, or DEBUG when ``debug``."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging to %s at %s", log_path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings; an unreadable file yields the defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Could not read settings at %s (%s); using defaults", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point of the ``editpilot`` console script."""

    args = _build_parser().parse_args(argv)
    debug = _env_flag(f"{ENV_PREFIX}DEBUG")
    configure_logging(debug)

    raw_path = args.settings_path or os.environ.get(f"{ENV_PREFIX}SETTINGS_PATH")
    store = SettingsStore(Path(raw_path).expanduser() if raw_path else None)
    try:
        overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port

    settings = load_settings(store=store, overrides=overrides or None)
    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return
    _serve(settings, debug=debug)


def _serve(settings: Settings, *, debug: bool) -> None:
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
    if not settings.configured:
        _LOGGER.warning("No API key configured; /agent answers 503 until one is set")

    cache: TTLCache[str] = TTLCache(max_entries=settings.cache_max_entries, ttl_seconds=settings.cache_ttl_seconds)
    app = create_app(settings, cache=cache)
    _LOGGER.info("EditPilot agent listening on %s:%d (model=%s)", settings.host, settings.port, settings.model)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="editpilot",
        description="Serve the EditPilot agent or inspect its configuration.",
    )
    parser.add_argument("command", nargs="?", choices=("serve",), default="serve")
    parser.add_argument("--settings", dest="settings_path", metavar="PATH", help="Settings file (default ~/.editpilot/settings.json).")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override one setting for this run; repeatable.",
    )
    parser.add_argument("--dump-settings", action="store_true", help="Print effective settings as JSON and exit.")
    parser.add_argument("--host", help="Interface to bind.")
    parser.add_argument("--port", type=int, help="Port to listen on.")
    return parser


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


# -----------------------------------------------------------------------------
# --set KEY=VALUE coercion
# -----------------------------------------------------------------------------


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into typed values for :class:`Settings`."""

    field_types = _settings_field_types()
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, separator, raw_value = entry.partition("=")
        key = key.strip()
        if not separator:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in field_types:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(field_types[key], raw_value.strip())
    return overrides


def _settings_field_types() -> Dict[str, Any]:
    hints = get_type_hints(Settings)
    return {item.name: hints.get(item.name, item.type) for item in fields(Settings)}


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    optional = type(None) in get_args(annotation)
    if optional and raw_value.lower() in _NULL_VALUES:
        return None

    target = _resolve_annotation(annotation)
    parser = _SCALAR_PARSERS.get(target)
    if parser is not None:
        return parser(raw_value)
    if target in (list, dict):
        return _parse_json_container(target, raw_value)
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in (list, dict):
        return origin
    members = [arg for arg in get_args(annotation) if arg is not type(None)]
    return _resolve_annotation(members[0]) if members else origin


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _parse_json_container(target: type, raw_value: str) -> Any:
    try:
        value = json.loads(raw_value or ("[]" if target is list else "{}"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{target.__name__} overrides must be valid JSON") from exc
    if not isinstance(value, target):
        raise ValueError(f"Expected a JSON {target.__name__}, got {type(value).__name__}")
    return value


_SCALAR_PARSERS: Dict[Any, Callable[[str], Any]] = {
    str: str,
    Any: str,
    bool: _parse_bool,
    int: lambda value: int(value, 10),
    float: float,
}


# -----------------------------------------------------------------------------
# --dump-settings
# -----------------------------------------------------------------------------


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    report = {
        "settings": {**asdict(settings), "api_key": redact_secret(settings.api_key)},
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(name for name in os.environ if name.startswith(ENV_PREFIX)),
        },
    }
    destination = stream or sys.stdout
    json.dump(report, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    main()
