"""
Async configuration management for the search docs plugin.

Configuration comes from two places:

  - Environment variables for deployment wiring and secrets:
      * `PORT` (int, default 8080): port the HTTP server binds to.
      * `HOST` (str, default "0.0.0.0"): interface the HTTP server binds to.
      * `OPENAI_API_KEY` (str, optional): credential for the OpenAI Assistants API.
      * `OPENSCAD_VECTOR_STORE_ID` (str, optional): vector store holding the documentation.
        Its absence is a normal runtime condition; searches answer with a "not configured" result.
      * `SEARCH_DOCS_CONFIG_FILE` (str, optional): path to a JSON tuning file (below).

  - An optional JSON tuning file, read with aiofiles. It must be a JSON object and may
    contain any of the following keys (all optional):

        - `model` (str): model used when the assistant has to be created. Default "gpt-4o".
        - `assistant_name` (str): well-known name used to find or create the assistant.
          Default "OpenSCAD Documentation Search".
        - `cache_ttl_seconds` (int | float): lifetime of cached answers. Default 1800.
        - `cache_failed_results` (bool): whether failed-run and unparseable answers are cached
          for the full TTL like successful ones. Default true.
        - `temperature` (int | float): run temperature. Default 0.
        - `top_p` (int | float): run nucleus sampling. Default 0.1.
        - `openai_base_url` (str): alternative OpenAI-compatible endpoint.

Example tuning file:
```json
{
    "model": "gpt-4o",
    "cache_ttl_seconds": 600,
    "cache_failed_results": false
}
```

Unknown keys or values of the wrong type raise ConfigurationError.

Features:
    - Coroutine-safe, cached loading via `ConfigManager` and an asyncio.Lock.
    - `clear_config_cache()` forces the next access to re-read the environment and file, which is
      how a changed vector store id reaches a running service.
    - Secrets are redacted from log output.
"""

__all__ = [
    "CONFIG_ENV_VAR",
    "API_KEY_ENV_VAR",
    "VECTOR_STORE_ENV_VAR",
    "PORT_ENV_VAR",
    "HOST_ENV_VAR",
    "DEFAULT_ASSISTANT_NAME",
    "DEFAULT_MODEL",
    "SearchDocsConfig",
    "ConfigManager",
    "get_config_path",
    "load_config",
    "validate_config",
    "redact_config",
]

import asyncio
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, replace
from typing import Any, cast

import aiofiles

from .._exceptions import ConfigurationError

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SEARCH_DOCS_CONFIG_FILE"
"""str: Environment variable naming the optional JSON tuning file."""

API_KEY_ENV_VAR = "OPENAI_API_KEY"
"""str: Environment variable holding the OpenAI API key."""

VECTOR_STORE_ENV_VAR = "OPENSCAD_VECTOR_STORE_ID"
"""str: Environment variable holding the documentation vector store id."""

PORT_ENV_VAR = "PORT"
"""str: Environment variable holding the server port."""

HOST_ENV_VAR = "HOST"
"""str: Environment variable holding the server bind address."""

DEFAULT_ASSISTANT_NAME = "OpenSCAD Documentation Search"
DEFAULT_MODEL = "gpt-4o"

# Allowed tuning file keys mapped to the accepted value types
_FILE_KEY_TYPES: dict[str, tuple[type, ...]] = {
    "model": (str,),
    "assistant_name": (str,),
    "cache_ttl_seconds": (int, float),
    "cache_failed_results": (bool,),
    "temperature": (int, float),
    "top_p": (int, float),
    "openai_base_url": (str,),
}

_REDACTED_FIELDS = frozenset({"openai_api_key"})


@dataclass(frozen=True)
class SearchDocsConfig:
    """
    Resolved plugin configuration.

    Attributes:
        openai_api_key (str | None): OpenAI credential, None when unset.
        vector_store_id (str | None): Documentation vector store id, None when unset.
        host (str): Server bind address.
        port (int): Server port.
        model (str): Model used when creating the assistant.
        assistant_name (str): Well-known assistant name used for lookup and creation.
        cache_ttl_seconds (float): Lifetime of cached answers.
        cache_failed_results (bool): Cache failed-run and unparseable answers too.
        temperature (float): Run temperature.
        top_p (float): Run nucleus sampling.
        openai_base_url (str | None): Alternative API endpoint, None for the SDK default.
    """

    openai_api_key: str | None = None
    vector_store_id: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    model: str = DEFAULT_MODEL
    assistant_name: str = DEFAULT_ASSISTANT_NAME
    cache_ttl_seconds: float = 30 * 60
    cache_failed_results: bool = True
    temperature: float = 0.0
    top_p: float = 0.1
    openai_base_url: str | None = None

    @property
    def is_search_configured(self) -> bool:
        """True when a vector store id is available."""
        return bool(self.vector_store_id)


def redact_config(config: SearchDocsConfig) -> dict[str, Any]:
    """
    Return a log-safe dict view of a configuration with secrets replaced.

    Args:
        config (SearchDocsConfig): The configuration to redact.

    Returns:
        dict[str, Any]: All fields, with secret values replaced by "[REDACTED]" when set.
    """
    redacted = asdict(config)
    for field in _REDACTED_FIELDS:
        if redacted.get(field):
            redacted[field] = "[REDACTED]"
    return redacted


class ConfigManager:
    """
    Async configuration manager for the search docs plugin.

    Loads, validates and caches a `SearchDocsConfig`. Typically one instance is created at
    startup and shared by the HTTP layer and the search service.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        """
        Initialize a new ConfigManager.

        Args:
            environ (Mapping[str, str] | None): Environment to read from. Defaults to `os.environ`,
                read at load time so later changes are seen after `clear_config_cache()`.
        """
        self._environ = environ
        self._cache: SearchDocsConfig | None = None
        self._lock = asyncio.Lock()

    async def clear_config_cache(self) -> None:
        """
        Clear the cached configuration (coroutine-safe).

        The next `get_config()` call re-reads the environment and the tuning file.
        """
        _LOGGER.debug("[ConfigManager:clear_config_cache] Clearing configuration cache...")
        async with self._lock:
            self._cache = None
        _LOGGER.debug("[ConfigManager:clear_config_cache] Configuration cache cleared.")

    async def _set_config_cache(self, config: SearchDocsConfig) -> None:
        """
        PRIVATE: Inject a configuration directly, bypassing environment and file I/O (for tests).

        Args:
            config (SearchDocsConfig): The configuration to cache.
        """
        async with self._lock:
            self._cache = config

    async def get_config(self) -> SearchDocsConfig:
        """
        Return the plugin configuration, loading and caching it on first use (coroutine-safe).

        Returns:
            SearchDocsConfig: The resolved configuration.

        Raises:
            ConfigurationError: If an environment value or the tuning file is invalid.
        """
        async with self._lock:
            if self._cache is not None:
                return self._cache

            environ = self._environ if self._environ is not None else os.environ
            config = await load_config(environ)
            self._cache = config
            _log_config_summary(config)
            return config


def get_config_path(environ: Mapping[str, str]) -> str | None:
    """
    Return the tuning file path from the environment, or None when not set.

    Args:
        environ (Mapping[str, str]): Environment to read.

    Returns:
        str | None: The value of SEARCH_DOCS_CONFIG_FILE, or None when unset or empty.
    """
    config_path = environ.get(CONFIG_ENV_VAR)
    if not config_path:
        _LOGGER.debug(
            f"[config:get_config_path] {CONFIG_ENV_VAR} is not set; using defaults."
        )
        return None
    _LOGGER.info(f"[config:get_config_path] {CONFIG_ENV_VAR} is set to: {config_path}")
    return config_path


async def _load_config_from_file(config_path: str) -> dict[str, Any]:
    """
    Load and parse the JSON tuning file asynchronously.

    Args:
        config_path (str): Path to the JSON file.

    Returns:
        dict[str, Any]: The parsed JSON value.

    Raises:
        ConfigurationError: If the file is missing, unreadable, or not valid JSON.
    """
    try:
        async with aiofiles.open(config_path, encoding="utf-8") as f:
            content = await f.read()
        return cast(dict[str, Any], json.loads(content))
    except FileNotFoundError:
        _LOGGER.error(f"[config:_load_config_from_file] Configuration file not found: {config_path}")
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        ) from None
    except PermissionError:
        _LOGGER.error(
            f"[config:_load_config_from_file] Permission denied reading configuration file: {config_path}"
        )
        raise ConfigurationError(
            f"Permission denied when trying to read configuration file: {config_path}"
        ) from None
    except json.JSONDecodeError as e:
        _LOGGER.error(
            f"[config:_load_config_from_file] Invalid JSON in configuration file {config_path}: {e}"
        )
        raise ConfigurationError(
            f"Invalid JSON in configuration file {config_path}: {e}"
        ) from e
    except Exception as e:
        # e.g. a directory path (IsADirectoryError) or bytes that are not UTF-8
        _LOGGER.error(
            f"[config:_load_config_from_file] Unexpected error loading configuration file {config_path}: {e}"
        )
        raise ConfigurationError(
            f"Unexpected error loading configuration file {config_path}: {e}"
        ) from e


def validate_config(data: Any) -> dict[str, Any]:
    """
    Validate the contents of the JSON tuning file.

    Args:
        data (Any): The parsed JSON value.

    Returns:
        dict[str, Any]: The validated tuning values.

    Raises:
        ConfigurationError: If the value is not an object, has unknown keys, or has values of the
            wrong type or range.

    Example:
        >>> validate_config({"cache_ttl_seconds": 60})
        {'cache_ttl_seconds': 60}
    """
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a JSON object, got {type(data).__name__}"
        )

    unknown_keys = set(data) - set(_FILE_KEY_TYPES)
    if unknown_keys:
        _LOGGER.error(f"[config:validate_config] Unknown configuration keys: {sorted(unknown_keys)}")
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    for key, value in data.items():
        allowed = _FILE_KEY_TYPES[key]
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in allowed:
            valid = False
        else:
            valid = isinstance(value, allowed)
        if not valid:
            names = " or ".join(t.__name__ for t in allowed)
            raise ConfigurationError(
                f"Configuration key '{key}' must be of type {names}, got {type(value).__name__}"
            )

    ttl = data.get("cache_ttl_seconds")
    if ttl is not None and ttl < 0:
        raise ConfigurationError("Configuration key 'cache_ttl_seconds' must be >= 0")
    for key in ("model", "assistant_name"):
        if key in data and not data[key].strip():
            raise ConfigurationError(f"Configuration key '{key}' must be a non-empty string")

    _LOGGER.debug("[config:validate_config] Configuration validation passed.")
    return data


def _parse_port(value: str) -> int:
    """Parse the PORT environment value, raising ConfigurationError when invalid."""
    try:
        port = int(value)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {PORT_ENV_VAR} must be an integer, got {value!r}"
        ) from None
    if not 0 < port < 65536:
        raise ConfigurationError(
            f"Environment variable {PORT_ENV_VAR} must be between 1 and 65535, got {port}"
        )
    return port


async def load_config(environ: Mapping[str, str]) -> SearchDocsConfig:
    """
    Build a `SearchDocsConfig` from the environment and the optional tuning file.

    Args:
        environ (Mapping[str, str]): Environment to read.

    Returns:
        SearchDocsConfig: The resolved configuration.

    Raises:
        ConfigurationError: If PORT is invalid or the tuning file is invalid.
    """
    config = SearchDocsConfig(
        openai_api_key=environ.get(API_KEY_ENV_VAR) or None,
        vector_store_id=environ.get(VECTOR_STORE_ENV_VAR) or None,
        host=environ.get(HOST_ENV_VAR) or SearchDocsConfig.host,
    )
    if environ.get(PORT_ENV_VAR):
        config = replace(config, port=_parse_port(environ[PORT_ENV_VAR]))

    config_path = get_config_path(environ)
    if config_path is not None:
        file_values = validate_config(await _load_config_from_file(config_path))
        for key in ("cache_ttl_seconds", "temperature", "top_p"):
            if key in file_values:
                file_values[key] = float(file_values[key])
        config = replace(config, **file_values)

    return config


def _log_config_summary(config: SearchDocsConfig) -> None:
    """Log the resolved configuration with secrets redacted."""
    _LOGGER.info(f"[config:_log_config_summary] Resolved configuration: {redact_config(config)}")
    if not config.is_search_configured:
        _LOGGER.warning(
            f"[config:_log_config_summary] {VECTOR_STORE_ENV_VAR} is not set; searches will report "
            "that the vector store is not configured."
        )
