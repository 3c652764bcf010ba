"""
InvEX Configuration Management

Loads the packaged default configuration and overlays user files and
explicit overrides on top of it.
"""

import copy
import os
import logging
from typing import Dict, Any, Optional
from pathlib import Path

import yaml

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default_config.yaml'
USER_CONFIG_PATH = Path.home() / '.invex' / 'config.yaml'
CONFIG_ENV_VAR = 'INVEX_CONFIG'


class InvexConfig:
    """
    Manages system-wide configuration for InvEX

    Resolution order (later wins):
    1. ``default_config.yaml`` shipped with the package
    2. ``~/.invex/config.yaml`` if it exists
    3. the file named by the ``INVEX_CONFIG`` environment variable
    4. ``overrides`` passed to the constructor

    ``InvexConfig.default()`` returns a shared instance for callers that do
    not inject their own.
    """

    _default: Optional['InvexConfig'] = None

    def __init__(self, overrides: Optional[Dict[str, Any]] = None, load_user_config: bool = True):
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            self.config: Dict[str, Any] = yaml.safe_load(f)

        if load_user_config:
            for path in self._user_config_paths():
                self._load_config(path)

        if overrides:
            self._update_config_recursive(self.config, copy.deepcopy(overrides))

        self._validate_config()

    @classmethod
    def default(cls) -> 'InvexConfig':
        """Get the shared configuration instance"""
        if cls._default is None:
            cls._default = cls()
        return cls._default

    @classmethod
    def from_file(cls, config_path: str) -> 'InvexConfig':
        """Load configuration from a YAML file on top of the defaults

        Args:
            config_path: Path to configuration file

        Returns:
            InvexConfig instance
        """
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except Exception as e:
            logger.error(f"Failed to load configuration from {config_path}: {str(e)}")
            raise
        return cls(overrides=file_config, load_user_config=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value

        Args:
            key: Configuration key (dot notation)
            value: Configuration value
        """
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration"""
        return copy.deepcopy(self.config)

    def _user_config_paths(self):
        paths = []
        if USER_CONFIG_PATH.exists():
            paths.append(USER_CONFIG_PATH)
        env_path = os.getenv(CONFIG_ENV_VAR)
        if env_path:
            paths.append(Path(env_path))
        return paths

    def _load_config(self, config_file: Path) -> None:
        """Load configuration from file"""
        if not config_file.exists():
            raise RuntimeError(f"Configuration file not found: {config_file}")

        try:
            with open(config_file, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RuntimeError(f"Invalid YAML in configuration file: {str(e)}")

        if file_config is None:
            raise RuntimeError(f"Configuration file is empty: {config_file}")

        self._update_config_recursive(self.config, file_config)
        logger.info(f"Configuration loaded from {config_file}")

    def _validate_config(self) -> None:
        """Validate configuration structure and values"""
        if not isinstance(self.config, dict):
            raise RuntimeError("Configuration must be a dictionary")

        required_sections = ['database', 'storage', 'pipeline', 'logging']
        for section in required_sections:
            if section not in self.config:
                raise RuntimeError(f"Missing required configuration section: {section}")

        db_config = self.config['database']
        if not db_config.get('url'):
            db_type = db_config.get('type')
            if db_type != 'sqlite':
                raise RuntimeError(f"Unsupported database type without url: {db_type}")
            if not db_config.get('path'):
                raise RuntimeError("SQLite database path not specified")

    def _update_config_recursive(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Update configuration recursively"""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_config_recursive(base[key], value)
            else:
                base[key] = value
