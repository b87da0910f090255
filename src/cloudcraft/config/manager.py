"""Configuration management for the application."""
import copy
import json
import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from cloudcraft.config.defaults import DEFAULT_CONFIG, expand_env_vars
from cloudcraft.config.schemas import AppConfig
from cloudcraft.domain.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.cloudcraft/config.yaml"


class ConfigurationManager:
    """
    Manages application configuration with defaults and overrides.

    Resolution order, later wins:
    - ``DEFAULT_CONFIG``
    - the config file (YAML or JSON), explicit or ``~/.cloudcraft/config.yaml``
    - environment variables, through ``${VAR:default}`` placeholders
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self._app_config: Optional[AppConfig] = None

        if config_file:
            self._load_config_file(config_file)
        else:
            default_path = os.path.expanduser(
                os.environ.get("CLOUDCRAFT_CONFIG", DEFAULT_CONFIG_PATH)
            )
            if os.path.exists(default_path):
                self._load_config_file(default_path)

    def _load_config_file(self, config_path: str) -> None:
        path = os.path.expanduser(config_path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.endswith(".json"):
                    user_config = json.load(f)
                else:
                    user_config = yaml.safe_load(f) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        logger.debug(f"Loaded configuration file {path}")
        self.update_config(user_config)

    def update_config(self, user_config: Dict[str, Any]) -> None:
        """Deep-merge ``user_config`` over the current configuration."""
        def deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    deep_update(target[key], value)
                else:
                    target[key] = value

        deep_update(self._config, user_config)
        self._app_config = None

    def get_config(self) -> Dict[str, Any]:
        """The raw configuration with all placeholders expanded."""
        return expand_env_vars(self._config)

    @property
    def app_config(self) -> AppConfig:
        if self._app_config is None:
            try:
                self._app_config = AppConfig.model_validate(self.get_config())
            except PydanticValidationError as e:
                fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
                raise ConfigurationError(f"Invalid configuration: {e}", fields) from e
        return self._app_config
