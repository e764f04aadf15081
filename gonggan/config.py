from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/gonggan/config.json").expanduser()
DEFAULT_LIBRARY_DIR = "~/.gonggan/spaces"

CONFIG_ENV_OVERRIDES = {
    "provider": "GONGGAN_PROVIDER",
    "api_key": "GONGGAN_API_KEY",
    "base_url": "GONGGAN_BASE_URL",
    "text_model": "GONGGAN_TEXT_MODEL",
    "image_model": "GONGGAN_IMAGE_MODEL",
    "history_limit": "GONGGAN_HISTORY_LIMIT",
    "request_timeout_s": "GONGGAN_REQUEST_TIMEOUT_S",
    "library_dir": "GONGGAN_LIBRARY_DIR",
    "export_dir": "GONGGAN_EXPORT_DIR",
}

DEFAULT_HISTORY_LIMIT = 10

_INT_KEYS = {"history_limit", "request_timeout_s"}
PROVIDERS = ("openai", "anthropic")


def get_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    return Path(os.getenv("GONGGAN_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    """Raw key/value pairs from the JSON config file; ``{}`` when absent or blank."""
    config_path = get_config_path(path)
    try:
        raw = config_path.read_text()
    except FileNotFoundError:
        return {}
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def set_config_value(key: str, value: str, path: Path | None = None) -> Path:
    """Validate one setting and persist it into the config file."""
    names = {f.name for f in fields(GongganConfig)}
    if key not in names:
        raise ValueError(f"unknown config key: {key} (expected one of {', '.join(sorted(names))})")
    stored: object = value
    if key in _INT_KEYS:
        try:
            stored = int(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be an integer") from exc
    elif key == "provider":
        stored = value.strip().lower()
        if stored not in PROVIDERS:
            raise ValueError(f"provider must be one of {', '.join(PROVIDERS)}")
    data = read_config_file(path)
    data[key] = stored
    return write_config_file(data, path)


def get_env_overrides() -> dict[str, str]:
    return {
        key: os.environ[env_var]
        for key, env_var in CONFIG_ENV_OVERRIDES.items()
        if env_var in os.environ
    }


@dataclass
class GongganConfig:
    provider: str = "openai"
    api_key: str | None = None
    base_url: str | None = None
    text_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1"
    # Only the most recent messages are sent as conversation history.
    history_limit: int = DEFAULT_HISTORY_LIMIT
    request_timeout_s: int = 60
    library_dir: str = DEFAULT_LIBRARY_DIR
    export_dir: str = "."

    @property
    def library_path(self) -> Path:
        return Path(self.library_dir).expanduser()


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def load_config(path: Path | None = None) -> GongganConfig:
    cfg = GongganConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = read_config_file(config_path)
        except ValueError as exc:
            warnings.warn(
                f"Invalid config file {config_path}: {exc}", RuntimeWarning, stacklevel=2
            )
            data = {}
        cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: GongganConfig, data: dict[str, Any]) -> GongganConfig:
    for key, value in data.items():
        if not hasattr(cfg, key) or key == "library_path":
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key == "provider":
            provider = str(value or "").strip().lower()
            if provider not in PROVIDERS:
                warnings.warn(f"Invalid provider: {value!r}", RuntimeWarning, stacklevel=2)
                continue
            cfg.provider = provider
            continue
        setattr(cfg, key, value)
    return cfg
