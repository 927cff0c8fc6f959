import os
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

CONFIG_DIR = Path.home() / ".quarry"
CONFIG_FILE = CONFIG_DIR / "config"

DEFAULT_REGISTRY_URL = "https://registry.quarry.dev/api/v1/index"

# keys understood in the config file and the environment
REGISTRY_KEY = "QUARRY_REGISTRY"
OFFLINE_KEY = "QUARRY_OFFLINE"
TOKEN_KEY = "QUARRY_TOKEN"
CACHE_DIR_KEY = "QUARRY_CACHE_DIR"


class Config(BaseModel):
    """read-only settings shared by every registry client."""
    model_config = ConfigDict(frozen=True)

    cache_dir: Path = CONFIG_DIR / "cache"
    offline: bool = False
    registry_url: str = DEFAULT_REGISTRY_URL
    registry_token: Optional[str] = None
    http_timeout: float = 30.0


def _read_config_file(config_file: Path) -> Dict[str, str]:
    values = {}
    if not config_file.exists():
        return values
    try:
        with open(config_file, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                values[key.strip()] = value.strip()
    except (IOError, PermissionError, OSError):
        # if we can't read the file, treat as not configured
        return {}
    return values


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_file: Path = CONFIG_FILE, **overrides) -> Config:
    """
    build a Config from the config file, the environment and explicit overrides.

    precedence (lowest to highest): defaults, config file, environment, overrides.
    overrides whose value is None are ignored.
    """
    values = _read_config_file(config_file)
    for key in (REGISTRY_KEY, OFFLINE_KEY, TOKEN_KEY, CACHE_DIR_KEY):
        if key in os.environ:
            values[key] = os.environ[key]

    settings = {}
    if REGISTRY_KEY in values:
        settings["registry_url"] = values[REGISTRY_KEY]
    if OFFLINE_KEY in values:
        settings["offline"] = _parse_bool(values[OFFLINE_KEY])
    if TOKEN_KEY in values:
        settings["registry_token"] = values[TOKEN_KEY] or None
    if CACHE_DIR_KEY in values:
        settings["cache_dir"] = Path(values[CACHE_DIR_KEY]).expanduser()

    settings.update({k: v for k, v in overrides.items() if v is not None})
    return Config(**settings)


def set_config_value(key: str, value: str, config_file: Path = CONFIG_FILE):
    """set a value in the config file, preserving other config values."""
    config_file.parent.mkdir(parents=True, exist_ok=True)

    config = _read_config_file(config_file)
    config[key] = value

    try:
        with open(config_file, "w") as f:
            for k, v in config.items():
                f.write(f"{k}={v}\n")
    except (IOError, PermissionError, OSError) as e:
        raise RuntimeError(f"failed to write config file: {e}") from e
