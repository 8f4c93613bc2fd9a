"""Path configuration utilities for the booking chat relay.

This module provides centralized path management for the relay's directories.
It ensures a consistent directory layout and creates directories as needed.

Key Features:
- Application root path resolution
- Configuration and log directory management
- Configuration file path resolution
"""
import os
from pathlib import Path


def get_app_root():
    """Get the root directory of the application."""
    return str(Path(__file__).parent.parent.absolute())


def get_config_dir():
    """Get the configuration directory path."""
    config_dir = os.path.join(get_app_root(), "config")
    os.makedirs(config_dir, exist_ok=True)
    return config_dir


def get_logs_dir():
    """Get the logs directory path."""
    logs_dir = os.path.join(get_app_root(), "logs")
    os.makedirs(logs_dir, exist_ok=True)
    return logs_dir


def get_server_config_file():
    """Get the relay server configuration file path."""
    return os.path.join(get_config_dir(), "server_config.json")
