"""
Handshake - Configuration Management

This module handles loading and merging configuration from TOML files and
environment variables. Supports default values and runtime updates.
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_CHAT_TTL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DATA_DIR,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_IPFS_QUERY_TYPE,
    DEFAULT_LOOKUP_COUNT,
    DEFAULT_MESSAGE_STORE_URL,
    DEFAULT_RENDEZVOUS_URL,
    DEFAULT_STORAGE_FILENAME,
    MAX_MESSAGE_SIZE,
    NONCE_TIME_SERIES,
)
from .errors import ConfigError, ErrorCode

ENV_PREFIX = "HANDSHAKE"

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "path": str(Path(DEFAULT_DATA_DIR) / DEFAULT_STORAGE_FILENAME),
    },
    "chat": {
        "max_ttl": DEFAULT_CHAT_TTL,
        "max_message_size": MAX_MESSAGE_SIZE,
        "lookup_count": DEFAULT_LOOKUP_COUNT,
    },
    "crypto": {
        "chunk_size": DEFAULT_CHUNK_SIZE,
        "nonce": NONCE_TIME_SERIES,
    },
    "strategy": {
        "rendezvous_url": DEFAULT_RENDEZVOUS_URL,
        "message_store_url": DEFAULT_MESSAGE_STORE_URL,
        "message_store_query_type": DEFAULT_IPFS_QUERY_TYPE,
        "timeout": DEFAULT_HTTP_TIMEOUT,
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}


class Config:
    """Configuration manager for handshake.

    Loads configuration from a TOML file, merges with defaults, and applies
    environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: HANDSHAKE_SECTION_KEY
        For example: HANDSHAKE_CHAT_LOOKUP_COUNT=500

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied

        Raises:
            ConfigError: If an override cannot be converted to the default's type
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                original_type = type(current)
                try:
                    if original_type == bool:
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        settings[key] = int(env_value)
                    elif original_type == float:
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "expected": original_type.__name__},
                    ) from e

        return config

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value for this process (never written back)."""
        self.data.setdefault(section, {})[key] = value

    @property
    def storage_path(self) -> Path:
        return Path(self.get("storage", "path")).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)
