"""Configuration management for chargeguard."""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

APP_DIR_NAME = "chargeguard"
MOCK_MARKER = "use_mock"

# Default configuration values
DEFAULTS = {
    "sysfs": {
        "power_supply_dir": "/sys/class/power_supply",
    },

    # Privileged helper that performs the actual writes
    "helper": {
        "name": "chargeguard-ctl",
        "fallback_dir": "/usr/local/bin",  # Searched when not on PATH
        "use_pkexec": True,
        "timeout_seconds": 5,
        "max_queue_depth": 8,  # Pending commands before new ones are rejected
    },

    "force_discharge": {
        "verify_delays_ms": [50, 100, 200, 400, 800, 1600],
    },

    "monitoring": {
        "enabled": True,  # Watch udev for external threshold changes
    },

    "logging": {
        "level": "WARNING",
    },
}


def get_config_dir() -> Path:
    """Get the configuration directory, creating it if needed."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        config_dir = Path(xdg_config) / APP_DIR_NAME
    else:
        config_dir = Path.home() / ".config" / APP_DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    """Get the path to the configuration file."""
    return get_config_dir() / "config.json"


def use_mock_device() -> bool:
    """Whether the development marker asking for the mock battery exists."""
    return (get_config_dir() / MOCK_MARKER).exists()


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base, returning new dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> dict:
    """Load configuration from file, merging with defaults."""
    config_path = get_config_path()

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                user_config = json.load(f)
            if not isinstance(user_config, dict):
                raise ValueError("top-level value is not an object")
            return _deep_merge(DEFAULTS, user_config)
        except (ValueError, OSError) as e:
            log.warning("Could not load config from %s: %s", config_path, e)
            return copy.deepcopy(DEFAULTS)

    # Create default config file on first run
    save_config(DEFAULTS)
    return copy.deepcopy(DEFAULTS)


def save_config(config: dict) -> bool:
    """Save configuration to file."""
    config_path = get_config_path()

    try:
        with open(config_path, "w") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        log.error("Could not save config to %s: %s", config_path, e)
        return False


def get(key: str, default: Any = None) -> Any:
    """Get a config value using dot notation (e.g., 'helper.name')."""
    config = load_config()
    value = config

    for k in key.split("."):
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default

    return value


def set(key: str, value: Any) -> bool:
    """Set a config value using dot notation."""
    config = load_config()
    keys = key.split(".")

    # Navigate to parent
    target = config
    for k in keys[:-1]:
        if not isinstance(target.get(k), dict):
            target[k] = {}
        target = target[k]

    target[keys[-1]] = value
    return save_config(config)


class Config:
    """Configuration accessor with attribute-style access."""

    def __init__(self, data: dict = None):
        self._config = data if data is not None else load_config()

    def reload(self):
        """Reload configuration from file."""
        self._config = load_config()

    def save(self):
        """Save current configuration to file."""
        return save_config(self._config)

    @property
    def power_supply_dir(self) -> Path:
        return Path(self._section("sysfs")["power_supply_dir"])

    @property
    def helper(self) -> dict:
        return self._section("helper")

    @property
    def verify_delays(self) -> tuple:
        """Force discharge verification backoff, in seconds."""
        delays = self._section("force_discharge")["verify_delays_ms"]
        return tuple(ms / 1000.0 for ms in delays)

    @property
    def monitoring_enabled(self) -> bool:
        return bool(self._section("monitoring")["enabled"])

    @property
    def log_level(self) -> str:
        return str(self._section("logging")["level"]).upper()

    def _section(self, name: str) -> dict:
        section = self._config.get(name)
        if not isinstance(section, dict):
            return DEFAULTS[name]
        return _deep_merge(DEFAULTS[name], section)

    def __getitem__(self, key: str) -> Any:
        value = self._config
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                raise KeyError(key)
            value = value[k]
        return value
