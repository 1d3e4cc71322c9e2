"""
Configuration loading and management for ldapdn.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults. The configuration names the directory gateway to use
and the entries to manage.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ldapdn.reconcile import ENSURE_VALUES, ENSURE_PRESENT
from ldapdn.gateway import GATEWAY_TYPES, DEFAULT_AUTH_OPTS, DEFAULT_URI

logger = logging.getLogger(__name__)

AUTH_METHODS = ('simple', 'sasl_external', 'anonymous')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'directory.bind_password': 'LDAPDN_BIND_PASSWORD',
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
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

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
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        directory = self.config.get('directory') or {}
        gateway_type = directory.get('type', 'ldap3')
        if gateway_type not in GATEWAY_TYPES:
            errors.append(f"Unknown directory type: {gateway_type} (expected one of {sorted(GATEWAY_TYPES)})")

        if gateway_type == 'ldap3':
            if not directory.get('server_url'):
                errors.append("Missing required directory field: server_url")
            auth_method = directory.get('auth_method', 'simple')
            if auth_method not in AUTH_METHODS:
                errors.append(f"Unknown directory auth_method: {auth_method}")
            if auth_method == 'simple':
                for field in ('bind_dn', 'bind_password'):
                    if not directory.get(field):
                        errors.append(f"Missing required directory field for simple bind: {field}")

        if gateway_type == 'command':
            auth_opts = directory.get('auth_opts')
            if auth_opts is not None and not isinstance(auth_opts, list):
                errors.append("directory.auth_opts must be a list of command line arguments")

        entries = self.config.get('entries') or []
        if not entries:
            errors.append("At least one entry must be configured")

        for i, entry in enumerate(entries):
            prefix = f"entries[{i}]"
            if not isinstance(entry, dict):
                errors.append(f"{prefix} must be a mapping")
                continue

            if not entry.get('dn'):
                errors.append(f"Missing required field {prefix}.dn")

            ensure = entry.get('ensure', ENSURE_PRESENT)
            if ensure not in ENSURE_VALUES:
                errors.append(f"Invalid {prefix}.ensure: {ensure} (expected one of {list(ENSURE_VALUES)})")

            attributes = entry.get('attributes')
            if not attributes or not isinstance(attributes, list):
                errors.append(f"{prefix}.attributes must be a non-empty list of 'name: value' strings")
            else:
                for j, attribute in enumerate(attributes):
                    if not isinstance(attribute, str) or ':' not in attribute or not attribute.split(':', 1)[0].strip():
                        errors.append(f"{prefix}.attributes[{j}] is not a 'name: value' string: {attribute!r}")

            for field in ('unique_attributes', 'indifferent_attributes'):
                value = entry.get(field)
                if value is not None and not isinstance(value, list):
                    errors.append(f"{prefix}.{field} must be a list of attribute names")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory_defaults = {
            'type': 'ldap3',
            'auth_method': 'simple',
            'uri': DEFAULT_URI,
            'auth_opts': list(DEFAULT_AUTH_OPTS),
            'connection_timeout': 10,
            'receive_timeout': 10,
            'command_timeout': 60,
            'verify_ssl': True
        }
        directory_config = self.config.setdefault('directory', {})
        for key, value in directory_defaults.items():
            directory_config.setdefault(key, value)

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Error handling defaults
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
            'retry_backoff': 1.0,
            'continue_on_error': True
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # Entry defaults
        for entry in self.config.get('entries', []):
            entry.setdefault('name', entry['dn'])
            entry.setdefault('ensure', ENSURE_PRESENT)
            entry.setdefault('unique_attributes', [])
            entry.setdefault('indifferent_attributes', [])


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
