"""Configuration loading and saving (camelCase JSON on disk)."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from wabot.config.schema import Config
from wabot.utils.helpers import get_data_path

_VERBATIM_KEYS = {"extraHeaders", "extra_headers"}

def get_data_dir() -> Path:
    """Active data directory (config, workspace, stores)."""
    return get_data_path()


def get_config_path() -> Path:
    """Path of the JSON config file inside the data directory."""
    return get_data_path() / "config.json"


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_keys(data: Any) -> Any:
    """Recursively convert camelCase keys to snake_case. Header maps are kept verbatim."""
    if isinstance(data, dict):
        return {
            camel_to_snake(str(k)): v if k in _VERBATIM_KEYS else convert_keys(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Recursively convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {
            snake_to_camel(str(k)): v if k in _VERBATIM_KEYS else convert_to_camel(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def deep_merge_config(existing: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    """Merge defaults into existing config without overwriting existing values."""
    merged = dict(existing)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = value
        elif isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge_config(merged[key], value)
    return merged


def load_config(config_path: Path | None = None) -> Config:
    """Load config from disk, falling back to defaults on missing or invalid files."""
    path = config_path or get_config_path()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Config.model_validate(convert_keys(data))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")
    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write config to disk in camelCase form."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
