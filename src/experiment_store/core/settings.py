from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from jsonschema import ValidationError, validate

from .errors import SettingsError
from .utils import env_flag, resolve_env_placeholders

SETTINGS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["path"],
    "properties": {
        "path": {"type": "string", "minLength": 1},
        "keep_alive": {"type": "boolean", "default": True},
        "journal_mode": {
            "type": "string",
            "enum": ["DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"],
            "default": "WAL",
        },
        "synchronous": {
            "type": "string",
            "enum": ["OFF", "NORMAL", "FULL", "EXTRA"],
            "default": "NORMAL",
        },
        "busy_timeout_ms": {"type": "integer", "minimum": 0, "default": 30000},
        "type_policy": {"type": "string", "enum": ["coerce", "reject"], "default": "coerce"},
        "log_path": {"type": ["string", "null"], "default": None},
    },
}


@dataclass(frozen=True)
class StoreSettings:
    path: str
    keep_alive: bool = True
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout_ms: int = 30000
    type_policy: str = "coerce"
    log_path: str | None = None


def _apply_defaults(schema: dict[str, Any], instance: dict[str, Any]) -> dict[str, Any]:
    for key, prop_schema in sorted((schema.get("properties") or {}).items()):
        if key not in instance and "default" in prop_schema:
            instance[key] = copy.deepcopy(prop_schema["default"])
    return instance


def _apply_env(raw: dict[str, Any]) -> dict[str, Any]:
    path = os.environ.get("EXPERIMENT_STORE_PATH", "").strip()
    if path:
        raw["path"] = path
    keep_alive = env_flag("EXPERIMENT_STORE_KEEP_ALIVE")
    if keep_alive is not None:
        raw["keep_alive"] = keep_alive
    log_path = os.environ.get("EXPERIMENT_STORE_LOG", "").strip()
    if log_path:
        raw["log_path"] = log_path
    return raw


def settings_from_mapping(mapping: Mapping[str, Any] | None) -> StoreSettings:
    """Validate a settings mapping (after env overrides) and build StoreSettings."""

    try:
        raw = resolve_env_placeholders(dict(mapping or {}))
    except ValueError as exc:
        raise SettingsError(str(exc)) from exc
    raw = _apply_defaults(SETTINGS_SCHEMA, _apply_env(raw))
    try:
        validate(instance=raw, schema=SETTINGS_SCHEMA)
    except ValidationError as exc:
        raise SettingsError(f"Invalid settings: {exc.message}") from exc
    return StoreSettings(**raw)


def load_settings(path: str | Path) -> StoreSettings:
    config_path = Path(path)
    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsError(f"Cannot read settings {config_path}: {exc}") from exc
    try:
        if config_path.suffix == ".json":
            raw = json.loads(content)
        else:
            raw = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SettingsError(f"Cannot parse settings {config_path}: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise SettingsError(f"Settings {config_path} must be a mapping")
    # the store section may be nested under `store:` in a larger config file
    if isinstance(raw.get("store"), dict):
        raw = raw["store"]
    return settings_from_mapping(raw)
