#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Configuration Module for MiniHTTPD
----------------------------------
Handles loading and managing server configuration from various sources:
- Default configuration
- Configuration file (JSON, or ``key=value`` properties such as server.conf)
- Command-line arguments

The request-handling core only reads these values once the server starts.
"""

import os
import json
import logging


class ServerConfig:
    """
    Server configuration manager.

    Loads and provides access to server configuration settings from various sources,
    with the following precedence (highest to lowest):
    1. Keyword overrides (command-line arguments)
    2. Configuration file
    3. Default values
    """

    # Default configuration settings
    DEFAULT_CONFIG = {
        "host": "0.0.0.0",
        "port": 1111,
        "directory": "htdocs",
        "php_interpreter": "php-cgi",
        "php_enabled": False,
        "script_extension": ".php",
        "index_script": "index.php",
        "index_page": "index.html",
        "max_threads": 10,
        "max_queue": 0,  # 0 means unbounded
        "connection_queue": 10,
        "request_timeout": 30,
        "script_timeout": 0,  # 0 means no limit
        "max_request_size": 10485760,  # 10 MB
        "server_name": "localhost",
        "server_software": "MiniHTTPD/1.0",
        "log_level": "INFO",
        "log_file": None,
        "log_max_size": 10485760,  # 10 MB
        "log_backup_count": 5,
        "colored_logging": True
    }

    def __init__(self, config_file=None, **kwargs):
        """
        Initialize the configuration with values from file and kwargs.

        Args:
            config_file: Path to the configuration file
            **kwargs: Additional configuration parameters that override file values
        """
        self._config = self.DEFAULT_CONFIG.copy()
        self.logger = logging.getLogger('ServerConfig')

        if config_file:
            self.load_from_file(config_file)

        for key, value in kwargs.items():
            self._config[key] = value

    def load_from_file(self, config_path="server.conf"):
        """
        Load configuration from a file.

        ``.json`` files must hold a JSON object; anything else is read as
        properties lines (``key=value`` or ``key: value``, ``#``/``!`` comments).

        Args:
            config_path: Path to the configuration file (default: server.conf)

        Returns:
            bool: True if loaded successfully, False otherwise
        """
        if not os.path.exists(config_path):
            self.logger.warning(f"Configuration file {config_path} not found. Using defaults.")
            return False

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.lower().endswith('.json'):
                    file_config = json.load(f)
                    if not isinstance(file_config, dict):
                        raise ValueError("top-level JSON value must be an object")
                else:
                    file_config = {
                        key: self._coerce(key, value)
                        for key, value in parse_properties(f).items()
                    }
        except (OSError, ValueError) as e:
            self.logger.error(f"Error loading configuration from {config_path}: {e}")
            return False

        self._config.update(file_config)
        self.logger.info(f"Loaded configuration from {config_path}")
        return True

    def save_to_file(self, config_path="server.conf"):
        """
        Save current configuration to a file, in the format its extension implies.

        Args:
            config_path: Path to save the configuration file (default: server.conf)

        Returns:
            bool: True if saved successfully, False otherwise
        """
        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                if config_path.lower().endswith('.json'):
                    json.dump(self._config, f, indent=4)
                else:
                    for key, value in self._config.items():
                        if value is None:
                            continue
                        if isinstance(value, bool):
                            value = 'true' if value else 'false'
                        f.write(f"{key}={value}\n")
            self.logger.info(f"Configuration saved to {config_path}")
            return True
        except OSError as e:
            self.logger.error(f"Error saving configuration: {e}")
            return False

    def _coerce(self, key, value):
        """Convert a properties string to the type of the key's default."""
        default = self.DEFAULT_CONFIG.get(key)
        if isinstance(default, bool):
            return value.strip().lower() == 'true'
        if isinstance(default, int):
            try:
                return int(value)
            except ValueError:
                self.logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
                return default
        return value

    def get(self, key, default=None):
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key is not found

        Returns:
            Value for the key or default if not found
        """
        return self._config.get(key, default)

    def set(self, key, value):
        self._config[key] = value

    def get_all(self):
        """
        Get all configuration values.

        Returns:
            dict: All configuration values
        """
        return self._config.copy()

    # Property accessors for common configuration values
    @property
    def host(self):
        return self.get('host')

    @property
    def port(self):
        return int(self.get('port'))

    @property
    def document_root(self):
        return os.path.abspath(self.get('directory'))

    @property
    def script_interpreter(self):
        return self.get('php_interpreter')

    @property
    def script_execution_enabled(self):
        return bool(self.get('php_enabled'))

    @property
    def script_extension(self):
        return self.get('script_extension', '.php')

    @property
    def index_script(self):
        return self.get('index_script', 'index.php')

    @property
    def index_page(self):
        return self.get('index_page', 'index.html')

    @property
    def max_threads(self):
        return self.get('max_threads')

    @property
    def max_queue(self):
        return self.get('max_queue', 0)

    @property
    def connection_queue(self):
        return self.get('connection_queue')

    @property
    def request_timeout(self):
        # 0 or None disables the socket timeout
        return self.get('request_timeout') or None

    @property
    def script_timeout(self):
        return self.get('script_timeout') or None

    @property
    def max_request_size(self):
        return self.get('max_request_size', 10485760)

    @property
    def server_name(self):
        return self.get('server_name', 'localhost')

    @property
    def server_software(self):
        return self.get('server_software', 'MiniHTTPD/1.0')

    @property
    def log_level(self):
        return self.get('log_level')

    @property
    def log_file(self):
        return self.get('log_file')

    @property
    def log_max_size(self):
        return self.get('log_max_size')

    @property
    def log_backup_count(self):
        return self.get('log_backup_count')

    @property
    def colored_logging(self):
        return self.get('colored_logging')


def parse_properties(lines):
    """
    Parse ``key=value`` properties lines into a dict.

    Blank lines and lines starting with ``#`` or ``!`` are skipped. The first
    ``=`` or ``:`` separates key from value; surrounding whitespace is dropped.
    """
    result = {}
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line[0] in '#!':
            continue
        positions = [pos for pos in (line.find('='), line.find(':')) if pos != -1]
        if not positions:
            result[line] = ''
            continue
        sep = min(positions)
        result[line[:sep].strip()] = line[sep + 1:].strip()
    return result
