# unwind_sync/config.py
# Description: Configuration management for the unwind_sync library and CLI.
#
# Imports
import copy
import tomllib
import os
from pathlib import Path
import toml
from typing import Dict, Any, Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from unwind_sync.Constants import APP_NAME
#
#######################################################################################################################
#
# Functions:

# --- Path to the configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / "config.toml"
CONFIG_PATH_ENV_VAR = "UNWIND_SYNC_CONFIG"

BASE_DATA_DIR = Path.home() / ".local" / "share" / APP_NAME

CONFIG_TOML_CONTENT = """
# Configuration for unwind_sync
# This file is created with default values on first run.

[general]
client_id = "unwind_sync_local_instance_v1"
log_level = "INFO"                # DEBUG, INFO, WARNING, ERROR, CRITICAL

[database]
db_path = "~/.local/share/unwind_sync/unwind.db"

[api]
base_url = "http://127.0.0.1:5000"
token_env_var = "UNWIND_ID_TOKEN"  # The ID token is read from this environment variable
pull_page_size = 200

[network]
poll_interval_seconds = 5.0
probe_host = ""                   # Empty means: use the host of api.base_url
probe_port = 0                    # 0 means: use the port of api.base_url
probe_timeout = 3.0

[logging]
log_filename = "unwind_sync.log"
file_log_level = "INFO"
log_max_bytes = 10485760          # 10 MB
log_backup_count = 5
"""

# --- Load Default Config from the TOML string ---
try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


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


def get_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Explicit path, then the UNWIND_SYNC_CONFIG environment variable, then ~/.config/unwind_sync/config.toml."""
    if config_path:
        return Path(config_path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads settings from the config file merged over the built-in defaults.
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = get_config_path(config_path)
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def save_settings(settings: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> Path:
    """Writes `settings` to the config file and refreshes the cache."""
    global _CONFIG_CACHE
    path = get_config_path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(settings, f)
    _CONFIG_CACHE = copy.deepcopy(settings)
    logger.info(f"Saved config to {path}")
    return path


# --- Setting Getter ---
def get_setting(section: str, key: str, default: Any = None, settings: Optional[Dict[str, Any]] = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = settings if settings is not None else load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


# --- Database and Log File Path Getters ---
def get_db_path(settings: Optional[Dict[str, Any]] = None) -> Union[Path, str]:
    default_db_path_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get("db_path", str(BASE_DATA_DIR / "unwind.db"))
    db_path_str = get_setting("database", "db_path", default_db_path_str, settings=settings)
    if db_path_str == ":memory:":
        return db_path_str
    return Path(db_path_str).expanduser().resolve()


def get_log_file_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    db_path = get_db_path(settings)
    parent_dir = BASE_DATA_DIR if isinstance(db_path, str) else db_path.parent
    default_log_filename = DEFAULT_CONFIG_FROM_TOML.get("logging", {}).get("log_filename", f"{APP_NAME}.log")
    log_filename = get_setting("logging", "log_filename", default_log_filename, settings=settings)
    log_file_path = parent_dir / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path

#
# End of config.py
#######################################################################################################################
