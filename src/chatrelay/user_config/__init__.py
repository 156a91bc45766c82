"""
Application Configuration Module
"""

from .models import AppConfig, create_app_config, load_config_from_env

__all__ = [
    "AppConfig",
    "create_app_config",
    "load_config_from_env",
]
