"""Utility functions and helpers for the booking chat relay"""
from .path_config import (
    get_app_root,
    get_config_dir,
    get_logs_dir,
    get_server_config_file
)
from .config_loader import ConfigManager

__all__ = [
    'get_app_root',
    'get_config_dir',
    'get_logs_dir',
    'get_server_config_file',
    'ConfigManager'
]
