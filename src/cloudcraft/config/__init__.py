"""Configuration package."""
from .defaults import DEFAULT_CONFIG, expand_env_vars
from .manager import ConfigurationManager
from .schemas import AppConfig

__all__ = ["DEFAULT_CONFIG", "expand_env_vars", "ConfigurationManager", "AppConfig"]
