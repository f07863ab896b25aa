"""Configuration for sim-apps.

Values come from (lowest to highest precedence):

  1. the defaults on `SimAppsConfig`
  2. an optional YAML/JSON config file (validated against `CONFIG_SCHEMA`)
  3. ``SIM_APPS_*`` environment variables

Example file::

    device_udid: 5A1B...            # or "booted"
    unzip_timeout_s: 60
    architecture_table:
      arm64: [arm64, x86_64]        # Rosetta-capable host
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from jsonschema import Draft202012Validator

from sim_apps.errors import ConfigError

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "xcrun_path": {"type": "string", "minLength": 1},
        "plutil_path": {"type": "string", "minLength": 1},
        "device_udid": {"type": "string", "minLength": 1},
        "unzip_path": {"type": "string", "minLength": 1},
        "unzip_timeout_s": {"type": "number", "exclusiveMinimum": 0},
        "command_timeout_s": {"type": "number", "exclusiveMinimum": 0},
        "termination_timeout_s": {"type": "number", "exclusiveMinimum": 0},
        "temp_root": {"type": ["string", "null"]},
        "device_variant": {"type": ["string", "null"]},
        "architecture_table": {
            "type": "object",
            "additionalProperties": {
                "type": "array",
                "items": {"type": "string", "minLength": 1},
            },
        },
    },
}

_CONFIG_VALIDATOR = Draft202012Validator(CONFIG_SCHEMA)

# env var -> (field name, type)
_ENV_OVERRIDES: Dict[str, tuple[str, type]] = {
    "SIM_APPS_XCRUN_PATH": ("xcrun_path", str),
    "SIM_APPS_PLUTIL_PATH": ("plutil_path", str),
    "SIM_APPS_UDID": ("device_udid", str),
    "SIM_APPS_UNZIP_PATH": ("unzip_path", str),
    "SIM_APPS_UNZIP_TIMEOUT_S": ("unzip_timeout_s", float),
    "SIM_APPS_COMMAND_TIMEOUT_S": ("command_timeout_s", float),
    "SIM_APPS_TERMINATION_TIMEOUT_S": ("termination_timeout_s", float),
    "SIM_APPS_TEMP_ROOT": ("temp_root", Path),
    "SIM_APPS_DEVICE_VARIANT": ("device_variant", str),
}


@dataclass(frozen=True)
class SimAppsConfig:
    xcrun_path: str = "xcrun"
    plutil_path: str = "plutil"
    device_udid: str = "booted"
    unzip_path: str = "/usr/bin/unzip"
    unzip_timeout_s: float = 30.0
    command_timeout_s: float = 30.0
    termination_timeout_s: float = 10.0
    temp_root: Optional[Path] = None
    device_variant: Optional[str] = None
    architecture_table: Mapping[str, List[str]] = field(default_factory=dict)


def load_yaml_or_json(path: Path) -> Dict[str, Any]:
    """Load a YAML/JSON file into a dict. The top level must be an object."""

    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        elif path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            raise ConfigError(f"Unsupported config file extension: {path}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config must be an object: {path}")
    return data


def validate_config_data(data: Mapping[str, Any], *, where: str) -> None:
    errors = sorted(_CONFIG_VALIDATOR.iter_errors(dict(data)), key=lambda e: list(e.path))
    if errors:
        msgs = []
        for e in errors[:20]:
            loc = "/".join([str(p) for p in e.path])
            msgs.append(f"- {where}:{loc}: {e.message}")
        raise ConfigError("\n".join(msgs))


def _apply_env(cfg: SimAppsConfig, env: Mapping[str, str]) -> SimAppsConfig:
    updates: Dict[str, Any] = {}
    for var, (name, typ) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or not raw.strip():
            continue
        try:
            value = typ(raw.strip())
        except ValueError as e:
            raise ConfigError(f"Invalid value for ${var}: {raw!r}") from e
        if typ is float and value <= 0:
            raise ConfigError(f"${var} must be positive, got {raw!r}")
        updates[name] = value
    return replace(cfg, **updates) if updates else cfg


def load_config(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> SimAppsConfig:
    cfg = SimAppsConfig()
    if path is not None:
        data = load_yaml_or_json(Path(path))
        validate_config_data(data, where=str(path))
        known = {f.name for f in fields(SimAppsConfig)}
        values = {k: v for k, v in data.items() if k in known}
        if values.get("temp_root") is not None:
            values["temp_root"] = Path(values["temp_root"])
        if "architecture_table" in values:
            values["architecture_table"] = {
                str(k): list(v) for k, v in values["architecture_table"].items()
            }
        cfg = replace(cfg, **values)
    return _apply_env(cfg, os.environ if env is None else env)
