"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (``~/.quotashield/config.yaml``). Typed accessors group
the keys used by the cache, the retry executor, the query executor and the
named task queues.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from quotashield.domain.models.common import BackoffPolicy, QueuePolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".quotashield"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "QUOTASHIELD_"

DEFAULTS: Dict[str, Any] = {
    "cache.dir": str(DEFAULT_CONFIG_DIR / "cache"),
    "cache.default_ttl_ms": 60 * 60 * 1000,
    "retry.max_attempts": 6,
    "retry.base_delay_s": 1.0,
    "retry.jitter_ratio": 0.1,
    "query.timeout_s": None,
    "query.default_retry_after_s": 60,
    "queue.lookup.max_concurrency": 2,
    "queue.lookup.retry_delay_s": 2.0,
    "queue.lookup.max_retries": 3,
    "queue.fetch.max_concurrency": 3,
    "queue.fetch.retry_delay_s": 1.0,
    "queue.fetch.max_retries": 2,
    "logging.level": "INFO",
    "logging.file": None,
    "logging.format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def _flatten(data: Dict[str, Any], parent: str = "") -> Dict[str, Any]:
    """Turns nested YAML mappings into dotted keys (``{'retry': {'max_attempts': 3}}`` -> ``retry.max_attempts``)."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{parent}.{key}" if parent else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, dotted))
        else:
            flat[dotted] = value
    return flat


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides
    2. Environment Variables (``QUOTASHIELD_RETRY_MAX_ATTEMPTS`` for ``retry.max_attempts``)
    3. .env file
    4. YAML configuration file
    5. Built-in defaults

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no .env found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.info("Configuration loading process completed.")


def _env_name(key: str) -> str:
    return ENV_PREFIX + key.upper().replace(".", "_")


def _coerce(value: str) -> Any:
    """Converts environment strings to bool/int/float/None where they look like one."""
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("none", "null", ""):
        return None
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Args:
        key: The configuration key (e.g., 'retry.max_attempts').
        default: Returned when the key is set nowhere, not even in DEFAULTS.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = _env_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    if key in DEFAULTS:
        return DEFAULTS[key]

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the running process."""
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Typed accessors ---

def get_cache_settings() -> Dict[str, Any]:
    return {
        "directory": Path(str(get_config("cache.dir"))).expanduser(),
        "default_ttl_ms": float(get_config("cache.default_ttl_ms")),
    }


def get_retry_settings() -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=int(get_config("retry.max_attempts")),
        base_delay_s=float(get_config("retry.base_delay_s")),
        jitter_ratio=float(get_config("retry.jitter_ratio")),
    )


def get_query_settings() -> Dict[str, Any]:
    timeout = get_config("query.timeout_s")
    return {
        "timeout_s": float(timeout) if timeout is not None else None,
        "default_retry_after_s": int(get_config("query.default_retry_after_s")),
    }


def get_queue_settings(name: str) -> QueuePolicy:
    """Policy for the queue called ``name``; unknown names get the generic queue defaults."""
    max_pending = get_config(f"queue.{name}.max_pending")
    return QueuePolicy(
        max_concurrency=int(get_config(f"queue.{name}.max_concurrency", 3)),
        retry_delay_s=float(get_config(f"queue.{name}.retry_delay_s", 1.0)),
        max_retries=int(get_config(f"queue.{name}.max_retries", 3)),
        max_pending=int(max_pending) if max_pending is not None else None,
    )


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
