"""
Configuration Management for the Chat CLI.

This module handles client configuration including the addresses of the auth
and chat services, the session file and renewal intervals, and logging, with
support for configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from chat_shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = ".chat-cli-session"


class ClientConfiguration:
    """
    Configuration manager for the Chat CLI.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        # Load configuration
        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path (``~/.chat-cli/client.conf``)."""
        return str(Path.home() / '.chat-cli' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for complex values
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'AUTH_HOST': ('auth', 'host'),
            'AUTH_PORT': ('auth', 'port'),
            'CHAT_HOST': ('chat', 'host'),
            'CHAT_PORT': ('chat', 'port'),
            'CHAT_CLI_SESSION_FILE': ('session', 'file'),
            'CHAT_CLI_LOG_LEVEL': ('logging', 'level'),
            'CHAT_CLI_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                elif value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'auth': {
                'host': None,
                'port': None,
                'ca_file': None,
                'use_tls': False
            },
            'chat': {
                'host': None,
                'port': None,
                'ca_file': None,
                'use_tls': False
            },
            'session': {
                'file': str(Path.cwd() / SESSION_FILE_NAME),
                'refresh_interval': 82800,  # 23 hours
                'access_interval': 840,  # 14 minutes
                'request_timeout': 20.0
            },
            'server': {
                'retry_attempts': 3,
                'retry_delay': 1.0
            },
            'logging': {
                'level': 'INFO',
                'file': None,
                'format': 'standard',
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            }
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def _get_address(self, service: str) -> str:
        section = self._config_data[service]
        host = self._overrides.get(f'{service}_host') or section.get('host')
        if not host:
            raise ConfigurationError(
                f"{service.upper()}_HOST is not set",
                ErrorCode.CONFIG_MISSING_REQUIRED_SETTING,
                config_key=f'{service}.host'
            )

        if section.get('ca_file') and not section.get('use_tls'):
            raise ConfigurationError(
                f"{service}.ca_file is set but {service}.use_tls is false",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key=f'{service}.use_tls'
            )

        port = self._overrides.get(f'{service}_port') or section.get('port')
        scheme = 'https' if section.get('use_tls') else 'http'
        if port:
            return f"{scheme}://{host}:{port}"
        return f"{scheme}://{host}"

    def get_auth_address(self) -> str:
        """Base URL of the authentication service."""
        return self._get_address('auth')

    def get_chat_address(self) -> str:
        """Base URL of the chat service."""
        return self._get_address('chat')

    def get_ca_file(self, service: str) -> Optional[str]:
        return self._config_data[service].get('ca_file')

    def get_session_file(self) -> str:
        """Base path of the per-user session files."""
        return self._overrides.get('session_file') or self._config_data['session']['file']

    def get_refresh_interval(self) -> float:
        return self._get_positive_number('session.refresh_interval')

    def get_access_interval(self) -> float:
        return self._get_positive_number('session.access_interval')

    def get_request_timeout(self) -> float:
        return self._get_positive_number('session.request_timeout')

    def _get_positive_number(self, key: str) -> float:
        value = self.get_config(key)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key=key,
                cause=e
            )
        if number <= 0:
            raise ConfigurationError(
                f"{key} must be positive, got {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key=key
            )
        return number

    def get_log_level(self) -> str:
        return self._overrides.get('log_level') or self._config_data['logging']['level']

    def get_log_file(self) -> Optional[str]:
        return self._overrides.get('log_file') or self._config_data['logging'].get('file')

    def get_log_format(self) -> str:
        return self._overrides.get('log_format') or self._config_data['logging'].get('format', 'standard')

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key
            value: Override value
        """
        self._overrides[key] = value
