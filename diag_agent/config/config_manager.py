"""
Configuration Manager module for the diagnostic agent.
"""
import json
import os
from typing import Any, Optional, Dict

from diag_agent.core.errors import ConfigurationError
from diag_agent.utils import get_logger

logger = get_logger(__name__)


class ConfigManager:
    """
    Loads and manages agent configuration from a JSON file.

    Values are addressed with dot-separated key paths, e.g.
    ``config.get('reconnect.fail_threshold', 3)``.
    """
    REQUIRED_KEYS = ['collector.host', 'collector.port', 'collector.secret']

    def __init__(self, config_path: Optional[str] = None, config_data: Optional[Dict[str, Any]] = None):
        """
        Initializes the ConfigManager from a file or from an in-memory dictionary.

        :param config_path: The path to the agent configuration JSON file
        :type config_path: Optional[str]
        :param config_data: Configuration dictionary, used when no path is given
        :type config_data: Optional[Dict[str, Any]]
        :raises ConfigurationError: If the file is missing, is not a JSON object,
            or essential keys are missing
        """
        self._config_path = config_path
        self._config_data: Dict[str, Any] = {}

        if self._config_path is None:
            if config_data is not None and not isinstance(config_data, dict):
                raise ConfigurationError("Configuration data must be a dictionary.")
            self._config_data = dict(config_data or {})
            logger.debug("ConfigManager initialized from in-memory data.")
        else:
            self._load_config()
            logger.info(f"Configuration loaded successfully from: {self._config_path}")
        self._validate_config()

    def _load_config(self):
        """
        Loads the configuration data from the JSON file.

        :raises ConfigurationError: If the file doesn't exist or cannot be parsed
        """
        if not os.path.exists(self._config_path):
            logger.critical(f"Configuration file not found: {self._config_path}")
            raise ConfigurationError(f"Configuration file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.critical(f"Error decoding JSON from config file {self._config_path}: {e}")
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}") from e
        except (IOError, OSError) as e:
            logger.critical(f"Error reading config file {self._config_path}: {e}")
            raise ConfigurationError(f"Could not read configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file content is not a valid JSON object.")
        self._config_data = data

    def _validate_config(self):
        """
        Performs basic validation of essential configuration keys.

        :raises ConfigurationError: If required keys are missing
        """
        missing_keys = [key for key in self.REQUIRED_KEYS if self.get(key) is None]
        if missing_keys:
            msg = f"Missing essential configuration keys: {', '.join(missing_keys)}"
            logger.critical(msg)
            raise ConfigurationError(msg)

        logger.debug("Basic configuration validation passed.")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Retrieves a configuration value using a dot-separated key path.

        :param key_path: The dot-separated path to the configuration key
        :type key_path: str
        :param default: The default value to return if the key is not found
        :type default: Any
        :return: The configuration value or the default value
        :rtype: Any
        """
        value: Any = self._config_data
        for key in key_path.split('.'):
            if not isinstance(value, dict):
                logger.debug(f"Key path '{key_path}' leads to non-dictionary element at '{key}'.")
                return default
            if key not in value:
                logger.debug(f"Configuration key not found: '{key_path}'. Returning default: {default}")
                return default
            value = value[key]
        return value

    @property
    def config_path(self) -> Optional[str]:
        return self._config_path

    @property
    def all_config(self) -> Dict[str, Any]:
        """
        Returns a copy of the entire loaded configuration dictionary.

        :return: Copy of configuration dictionary
        :rtype: Dict[str, Any]
        """
        return dict(self._config_data)
