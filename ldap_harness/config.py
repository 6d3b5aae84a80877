"""
Configuration loading and management for the LDAP Provisioning Harness.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ldap_harness.errors import HarnessError

logger = logging.getLogger(__name__)


class ConfigurationError(HarnessError):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'provider.bindCredential': 'LDAP_BIND_CREDENTIAL',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        provider = self.config.get('provider')
        if not isinstance(provider, dict) or not provider:
            errors.append("Missing required section: provider")
        else:
            for field in ['connectionUrl', 'bindDn', 'baseDn']:
                if not provider.get(field):
                    errors.append(f"Missing required provider field: {field}")
            for key, value in provider.items():
                if isinstance(value, (dict, list)):
                    errors.append(f"Provider setting {key} must be a scalar value")

        harness = self.config.get('harness') or {}
        default_groups = harness.get('default_groups', [])
        if not isinstance(default_groups, list):
            errors.append("harness.default_groups must be a list of group paths")
        else:
            for path in default_groups:
                if not isinstance(path, str) or not path.startswith('/'):
                    errors.append(f"Invalid default group path: {path}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        # Provider settings are handed to the provider registry as strings
        provider = self.config['provider']
        for key, value in list(provider.items()):
            if isinstance(value, bool):
                provider[key] = 'true' if value else 'false'
            elif value is not None:
                provider[key] = str(value)
            else:
                del provider[key]

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self._section('logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self._section('error_handling')
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        harness_defaults = {
            'import_enabled': False,
            'default_groups': [],
        }
        harness_config = self._section('harness')
        for key, value in harness_defaults.items():
            harness_config.setdefault(key, value)

    def _section(self, name: str) -> Dict[str, Any]:
        """Return a config section, replacing an empty YAML value with a dict."""
        if not isinstance(self.config.get(name), dict):
            self.config[name] = {}
        return self.config[name]


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
