"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.promptforge/config.yaml). Nested YAML sections
are addressed with dotted keys, e.g. 'llm.retry_attempts'.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".promptforge"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DB_PATH = DEFAULT_CONFIG_DIR / "history.db"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "PROMPTFORGE_"

DEFAULT_RETRY_ATTEMPTS = 2
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_DEBOUNCE_S = 0.5
DEFAULT_HISTORY_PAGE_SIZE = 50
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODELS = ["mock:mock-text-basic"]

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables
    3. .env file
    4. YAML configuration file
    5. Defaults passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
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
        if load_dotenv(dotenv_path=dotenv_path, override=False):  # ENV VARS take precedence
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no .env found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _coerce_env_value(value: str) -> Any:
    # Try to convert common types
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _lookup_nested(key: str) -> Any:
    node: Any = _config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (KEY or PROMPTFORGE_KEY, dots become underscores)
    3. YAML config (flat key first, then nested lookup)
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    for candidate in (env_key, f"{ENV_PREFIX}{env_key}"):
        if candidate in os.environ:
            return _coerce_env_value(os.environ[candidate])

    if key in _config:
        return _config[key]
    nested = _lookup_nested(key)
    if nested is not None:
        return nested

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the current process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    logger.debug(f"Setting config: {key} = {value!r}")
    _config[key] = value


# --- Convenience Functions ---

def get_api_key(provider_id: str) -> Optional[str]:
    """Returns the API key of a provider.

    Checks '<PROVIDER>_API_KEY' (env, .env or flat YAML key) first, then the
    nested YAML key '<provider>.api_key'.
    """
    key = get_config(f'{provider_id}_api_key') or get_config(f'{provider_id}.api_key')
    return str(key) if key else None


def get_retry_attempts() -> int:
    return int(get_config('llm.retry_attempts', DEFAULT_RETRY_ATTEMPTS))


def get_retry_delay() -> float:
    """Delay between retries, in seconds."""
    return float(get_config('llm.retry_delay', DEFAULT_RETRY_DELAY_S))


def get_cache_adapters() -> bool:
    return bool(get_config('llm.cache_adapters', True))


def get_debounce_seconds() -> float:
    return float(get_config('persistence.debounce_seconds', DEFAULT_DEBOUNCE_S))


def get_db_path() -> str:
    path = get_config('persistence.db_path', str(DEFAULT_DB_PATH))
    return str(Path(path).expanduser()) if path != ":memory:" else path


def get_history_page_size() -> int:
    return int(get_config('history.page_size', DEFAULT_HISTORY_PAGE_SIZE))


def get_ollama_base_url() -> str:
    return str(get_config('ollama.base_url', DEFAULT_OLLAMA_BASE_URL))


def get_default_models() -> List[str]:
    """Model keys used by 'ask' when none are given on the command line."""
    models = get_config('defaults.models', DEFAULT_MODELS)
    if isinstance(models, str):
        models = [m.strip() for m in models.split(',') if m.strip()]
    return list(models)


def get_custom_models() -> List[Dict[str, Any]]:
    """User-defined OpenAI-compatible endpoints from the YAML 'custom_models' list."""
    models = get_config('custom_models', [])
    if not isinstance(models, list):
        logger.warning("'custom_models' must be a list; ignoring it.")
        return []
    return [m for m in models if isinstance(m, dict)]


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# Load configuration when the module is imported
load_configuration()
