#!/usr/bin/env python3
"""Configuration loader for the booking chat relay.

This module provides a centralized configuration management system for the relay.
It handles loading, merging, and validating configuration from three sources,
each overriding the previous one:

1. Built-in defaults
2. ``config/server_config.json``
3. Environment variables (a ``.env`` file is loaded first)

Key Features:
- Hierarchical configuration management
- Default configuration values
- JSON file-based configuration
- Environment variable overrides
- Deep merging of configuration updates
- Runtime configuration updates
"""
import os
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from dotenv import load_dotenv

from .path_config import get_server_config_file

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# env var -> (section, key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "HOST": ("server", "host", str),
    "PORT": ("server", "port", int),
    "CLIENT_URL": ("server", "cors_origins", lambda value: [value]),
    "LOG_LEVEL": ("server", "log_level", str.upper),
    "API_URL": ("backend", "api_url", lambda value: value.rstrip("/")),
    "BACKEND_TIMEOUT": ("backend", "timeout", float),
}


class ConfigManager:
    def __init__(self, config_file: Optional[str] = None, use_env: bool = True):
        """Initialize the configuration manager.

        Args:
            config_file: JSON file to merge over the defaults. Defaults to
                ``config/server_config.json``.
            use_env: Whether environment variables (and ``.env``) are applied.
        """
        self._config: Dict[str, Any] = {}
        self._config_file = config_file or get_server_config_file()
        self._load_defaults()
        self._load_config_file()
        if use_env:
            load_dotenv()
            self._load_env_overrides(os.environ)

    def _load_defaults(self) -> None:
        """Load default configuration values."""
        self._config = {
            "logging": {
                "format": LOG_FORMAT
            },
            "server": {
                "host": "0.0.0.0",
                "port": 3001,
                "namespace": "/",
                "socketio_path": "socket.io",
                "cors_origins": ["http://localhost:5173"],
                "log_level": "INFO",
                "shutdown_timeout": 5.0
            },
            "backend": {
                "api_url": "http://localhost:3000",
                "timeout": 10.0
            }
        }

    def _load_config_file(self) -> None:
        """Merge the JSON configuration file, if one exists."""
        if not os.path.exists(self._config_file):
            logger.debug(f"No config file at {self._config_file}, using defaults")
            return

        with open(self._config_file, 'r') as f:
            try:
                file_config = json.load(f)
            except json.JSONDecodeError as e:
                logger.error(f"Error decoding JSON from {self._config_file}: {e}. Using defaults.")
                return

        if "server" in file_config:
            self._validate_server_config(file_config["server"])
        self._merge_config(self._config, file_config)
        logger.debug(f"Loaded config file {self._config_file}")

    def _load_env_overrides(self, environ) -> None:
        """Apply environment variable overrides on top of file configuration."""
        for name, (section, key, convert) in ENV_OVERRIDES.items():
            raw = environ.get(name)
            if raw is None or raw == "":
                continue
            try:
                self.set(section, key, convert(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid value for {name}: {raw!r}")

    def _merge_config(self, base: Dict, update: Dict) -> None:
        """
        Recursively merge two configuration dictionaries.
        Args:
            base: Base configuration dictionary
            update: Dictionary with updates to merge
        """
        for key, value in update.items():
            if (
                key in base and
                isinstance(base[key], dict) and
                isinstance(value, dict)
            ):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _validate_server_config(self, config: Dict[str, Any]) -> None:
        """Validate server configuration"""
        required = {"host", "port"}
        if not all(k in config for k in required):
            raise ValueError(f"Missing required server config keys: {required}")

        if not isinstance(config["port"], int):
            raise ValueError("Server port must be an integer")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.
        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found
        Returns:
            Configuration value or default
        """
        try:
            return self._config[section][key]
        except KeyError:
            return default

    def set(self, section: str, key: str, value: Any) -> None:
        """
        Set a configuration value.
        Args:
            section: Configuration section
            key: Configuration key
            value: Value to set
        """
        if section not in self._config:
            self._config[section] = {}
        self._config[section][key] = value


# Create a global configuration instance
config = ConfigManager()
