# flowkit/config.py
# Description: Configuration management for the flowkit runtime.
#
# Imports
import copy
import os
import sys
if sys.version_info < (3, 11):
    import tomli as tomllib
else:
    import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Defaults

DEFAULT_CONFIG_PATH = Path(
    os.environ.get("FLOWKIT_CONFIG", Path.home() / ".config" / "flowkit" / "config.toml")
).expanduser()

DEFAULT_FLOW_CONFIG: Dict[str, Any] = {
    "runtime": {
        "lifecycle_timeout": 8.0,
        "root_switch_grace": 1.0,
        "max_redirect_depth": 8,
    },
    "history": {
        "max_history": 50,
        "persist": True,
    },
    "state": {
        "persist_by_default": True,
        "suggest_limit": 50,
        "secure_passphrase": "",
    },
    "storage": {
        "backend": "memory",
        "path": "~/.local/share/flowkit/state",
    },
    "logging": {
        "level": "INFO",
        "log_file": "",
    },
}


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_flow_config(path: Optional[Path] = None, force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads flowkit settings from the user's TOML file, layered over DEFAULT_FLOW_CONFIG.

    A missing file is not an error; decoding errors are logged and the defaults are used.
    Only the default path is cached.
    """
    global _CONFIG_CACHE
    use_cache = path is None
    if use_cache and _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    config_path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH
    loaded_config = copy.deepcopy(DEFAULT_FLOW_CONFIG)

    if config_path.exists():
        logger.debug(f"Loading flowkit config from: {config_path}")
        try:
            with open(config_path, "rb") as f:
                user_config = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding flowkit config {config_path}: {e}. Using defaults.")
        except OSError as e:
            logger.error(f"Could not read flowkit config {config_path}: {e}. Using defaults.")
    else:
        logger.debug(f"No flowkit config at {config_path}, using defaults")

    if use_cache:
        _CONFIG_CACHE = loaded_config
    return loaded_config


def get_flow_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_flow_config()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_flow_setting(section: str, key: str, value: Any, path: Optional[Path] = None) -> bool:
    """
    Saves a single setting to the TOML configuration file.

    Nested sections are addressed with dots ("storage.file"). The cache is
    invalidated afterwards so the next read sees the new value.

    Returns:
        True if the setting was saved successfully, False otherwise.
    """
    global _CONFIG_CACHE
    config_path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH
    logger.info(f"Saving flowkit setting: [{section}].{key} = {value!r}")

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create config directory {config_path.parent}: {e}")
        return False

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Corrupted config file at {config_path}. Cannot save. Error: {e}")
            return False

    current_level = config_data
    try:
        for part in section.split('.'):
            current_level = current_level.setdefault(part, {})
        current_level[key] = value
    except (TypeError, AttributeError):
        logger.error(f"Could not set '{key}' in section '{section}': a part of the path is not a table.")
        return False

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(config_data, f)
    except (OSError, TypeError) as e:
        logger.error(f"Failed to write config to {config_path}: {e}")
        return False

    if path is None:
        _CONFIG_CACHE = None
    logger.success(f"Saved setting to {config_path}")
    return True


@dataclass
class FlowSettings:
    """Typed view over the configuration sections the runtime reads."""
    lifecycle_timeout: float = 8.0
    root_switch_grace: float = 1.0
    max_redirect_depth: int = 8
    max_history: int = 50
    persist_history: bool = True
    persist_state_by_default: bool = True
    suggest_limit: int = 50
    secure_passphrase: str = ""
    storage_backend: str = "memory"
    storage_path: str = "~/.local/share/flowkit/state"

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "FlowSettings":
        config = deep_merge_dicts(DEFAULT_FLOW_CONFIG, config or {})
        runtime = config["runtime"]
        history = config["history"]
        state = config["state"]
        storage = config["storage"]
        return cls(
            lifecycle_timeout=float(runtime["lifecycle_timeout"]),
            root_switch_grace=float(runtime["root_switch_grace"]),
            max_redirect_depth=int(runtime["max_redirect_depth"]),
            max_history=int(history["max_history"]),
            persist_history=bool(history["persist"]),
            persist_state_by_default=bool(state["persist_by_default"]),
            suggest_limit=int(state["suggest_limit"]),
            secure_passphrase=state["secure_passphrase"] or os.environ.get("FLOWKIT_SECURE_PASSPHRASE", ""),
            storage_backend=str(storage["backend"]),
            storage_path=str(storage["path"]),
        )

#
# End of config.py
#######################################################################################################################
