"""
Configuration Loader

Handles loading, validating and permission checking of the YAML
configuration file.
"""

import os
import stat
from typing import Any, Dict

import yaml
from loguru import logger
from pydantic import ValidationError

from ..errors import ConfigError, Violation
from .types import Config
from .validation import ConfigValidator, violations_from_pydantic

DEFAULT_CONFIG_PATH = "/etc/cloud-burster/config.yaml"


class ConfigLoader:
    """Loads and validates configuration from files"""

    @staticmethod
    def load_from_file(config_path: str) -> Config:
        """Load the configuration from a YAML file"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"{config_path} is not valid YAML", [Violation("<root>", str(e))]) from e

        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping", [Violation("<root>", "expected a mapping")])

        return ConfigLoader.from_dict(data)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Config:
        """Create a Config from a dictionary with camelCase keys"""
        try:
            return Config.model_validate(data)
        except ValidationError as e:
            raise ConfigError("invalid configuration", violations_from_pydantic(e)) from e

    @staticmethod
    def validate(config: Config) -> Config:
        """
        Run the cross-entity checks on a parsed configuration.

        Raises:
            ConfigError: with one violation per problem found
        """
        violations = ConfigValidator().validate(config)
        if violations:
            raise ConfigError("invalid configuration", violations)
        return config

    @staticmethod
    def check_permissions(config_path: str) -> None:
        """The configuration holds credentials and must be readable by its owner only"""
        mode = stat.S_IMODE(os.stat(config_path).st_mode)
        if mode & 0o077 != 0:
            raise ConfigError(
                f"{config_path} has permissions {oct(mode)}, "
                f"the file must not be accessible by group or others (chmod 600)"
            )

    @staticmethod
    def load(config_path: str, check_permissions: bool = True) -> Config:
        """Permission check, parse and validation in one call"""
        if check_permissions:
            ConfigLoader.check_permissions(config_path)
        config = ConfigLoader.validate(ConfigLoader.load_from_file(config_path))
        logger.debug(f"loaded {len(config.clouds)} clouds from {config_path}")
        return config
