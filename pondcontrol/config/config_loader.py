"""Configuration loader and validator for PondControl."""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pondcontrol.remote.remote_store import normalize_pond_id


logger = logging.getLogger(__name__)

ENV_PREFIX = 'PONDCONTROL_'
REMOTE_BACKENDS = ('firebase', 'memory')


class ConfigError(Exception):
    """Configuration error exception."""
    pass


def _to_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on')


def _to_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


# Environment variable (without prefix) to config key mapping
ENV_VAR_MAPPING = {
    # Location settings
    'TIMEZONE': ('location', 'timezone', str),

    # Remote store settings
    'REMOTE_BACKEND': ('remote', 'backend', str),
    'DATABASE_URL': ('remote', 'database_url', str),
    'AUTH_TOKEN': ('remote', 'auth_token', str),
    'REMOTE_TIMEOUT_SECONDS': ('remote', 'timeout_seconds', float),
    'REMOTE_POLL_INTERVAL_SECONDS': ('remote', 'poll_interval_seconds', float),

    # Ponds
    'PONDS': (None, 'ponds', _to_list),

    # Scheduler settings
    'CHECK_INTERVAL_SECONDS': ('scheduler', 'check_interval_seconds', float),

    # Connectivity settings
    'CONNECTIVITY_CHECK_INTERVAL_SECONDS': ('connectivity', 'check_interval_seconds', float),

    # Storage settings
    'STATE_FILE': ('storage', 'state_file', str),

    # Auto mode
    'AUTO_MODE_ENABLED': ('auto_mode', 'enabled', _to_bool),

    # Logging settings
    'LOG_LEVEL': ('logging', 'level', str),
}

DEFAULTS = {
    'location': {'timezone': 'UTC'},
    'remote': {
        'backend': 'memory',
        'timeout_seconds': 10,
        'poll_interval_seconds': 5,
    },
    'ponds': ['pond1'],
    'scheduler': {'check_interval_seconds': 30},
    'connectivity': {'check_interval_seconds': 15},
    'storage': {'state_file': 'state/pondcontrol.json'},
    'auto_mode': {'enabled': False},
    'logging': {
        'level': 'INFO',
        'max_file_size_mb': 10,
        'backup_count': 5,
    },
}


def get_env_var(env_var: str, convert_type) -> Optional[Any]:
    """
    Get a prefixed environment variable and convert it.

    Args:
        env_var: Variable name without the ``PONDCONTROL_`` prefix
        convert_type: Conversion callable (int, float, str, ...)

    Returns:
        Converted value or None if not set
    """
    name = f"{ENV_PREFIX}{env_var}"
    value = os.environ.get(name)
    if value is None:
        return None

    try:
        return convert_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to convert environment variable {name}={value}: {e}")
        return None


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Args:
        config: Configuration dictionary

    Returns:
        Configuration with environment variable overrides applied
    """
    logger.debug("Checking for environment variable overrides...")

    for env_var, (section, key, convert_type) in ENV_VAR_MAPPING.items():
        value = get_env_var(env_var, convert_type)
        if value is None:
            continue

        if section is None:
            config[key] = value
            logger.info(f"Environment variable override: {ENV_PREFIX}{env_var} -> {key}")
            continue

        if not isinstance(config.get(section), dict):
            config[section] = {}
        config[section][key] = value

        # Never echo secrets
        shown = '***' if key == 'auth_token' else value
        logger.info(f"Environment variable override: {ENV_PREFIX}{env_var} -> {section}.{key} = {shown}")

    return config


def _with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    merged = {}
    for section, default in DEFAULTS.items():
        value = config.get(section)
        if isinstance(default, dict) and isinstance(value, dict):
            merged[section] = {**default, **value}
        elif value is None:
            merged[section] = default.copy() if isinstance(default, (dict, list)) else default
        else:
            merged[section] = value
    for section, value in config.items():
        merged.setdefault(section, value)
    return merged


class Config:
    """Configuration manager for the application."""

    def __init__(self, config_path: str = None):
        """
        Initialize configuration from YAML file with environment variable overrides.

        Args:
            config_path: Path to the configuration file (defaults to
                PONDCONTROL_CONFIG_PATH env var or "config.yaml")
        """
        if config_path is None:
            config_path = os.environ.get(f'{ENV_PREFIX}CONFIG_PATH', 'config.yaml')

        logger.info(f"Loading configuration from: {config_path}")
        self.config_path = Path(config_path)
        self._config = self._load_config()
        self._config = apply_env_overrides(self._config)
        self._config = _with_defaults(self._config)

        self._validate_config()
        logger.info("Configuration loaded and validated successfully")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file, or start empty if the file doesn't exist."""
        if not self.config_path.exists():
            logger.warning(f"Configuration file not found: {self.config_path}")
            logger.info("Will use defaults and environment variables for configuration")
            return {}

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file: {e}")
            raise ConfigError(f"Error parsing configuration file: {e}")
        except OSError as e:
            logger.error(f"Error reading configuration file: {type(e).__name__}: {e}")
            raise ConfigError(f"Error loading configuration: {e}")

        if config is None:
            logger.warning("Configuration file is empty, using defaults")
            return {}

        if not isinstance(config, dict):
            logger.error(f"Configuration must be a dictionary, got: {type(config)}")
            raise ConfigError(f"Invalid configuration format: expected dictionary, got {type(config)}")

        logger.info(f"Successfully parsed configuration with {len(config)} top-level sections")
        logger.debug(f"Configuration sections: {list(config.keys())}")
        return config

    def _positive_number(self, section: str, key: str) -> float:
        raw = self._config[section].get(key)
        try:
            value = float(raw)
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {section}.{key}: {raw}")
            raise ConfigError(f"{section}.{key} must be a valid number, got: {raw}")
        if value <= 0:
            logger.error(f"Invalid {section}.{key}: {value} (must be positive)")
            raise ConfigError(f"{section}.{key} must be positive, got: {value}")
        return value

    def _validate_config(self):
        """Validate configuration values."""
        logger.info("Validating configuration...")

        for section in ('location', 'remote', 'scheduler', 'connectivity',
                        'storage', 'auto_mode', 'logging'):
            if not isinstance(self._config[section], dict):
                logger.error(f"{section} must be a dictionary, got: {type(self._config[section])}")
                raise ConfigError(f"{section} configuration must be a dictionary")

        # Location
        timezone = self._config['location'].get('timezone')
        try:
            ZoneInfo(str(timezone))
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.error(f"Unknown timezone: {timezone}")
            raise ConfigError(f"Invalid timezone '{timezone}': {e}")

        # Remote
        remote = self._config['remote']
        backend = remote.get('backend')
        if backend not in REMOTE_BACKENDS:
            logger.error(f"Unknown remote backend: {backend}")
            raise ConfigError(f"remote.backend must be one of {REMOTE_BACKENDS}, got: {backend}")
        if backend == 'firebase' and not remote.get('database_url'):
            raise ConfigError("remote.database_url is required for the firebase backend")
        self._positive_number('remote', 'timeout_seconds')
        self._positive_number('remote', 'poll_interval_seconds')

        # Ponds
        ponds = self._config['ponds']
        if isinstance(ponds, str):
            ponds = [ponds]
        if not isinstance(ponds, list) or not ponds:
            raise ConfigError("ponds must be a non-empty list of pond ids")
        normalized = [normalize_pond_id(str(pond)) for pond in ponds]
        if any(not pond for pond in normalized):
            raise ConfigError(f"ponds contains an empty pond id: {ponds}")
        if len(set(normalized)) != len(normalized):
            raise ConfigError(f"ponds contains duplicate ids: {normalized}")
        self._config['ponds'] = normalized

        # Intervals
        self._positive_number('scheduler', 'check_interval_seconds')
        self._positive_number('connectivity', 'check_interval_seconds')

        if not self._config['storage'].get('state_file'):
            raise ConfigError("storage.state_file cannot be empty")

        level = str(self._config['logging'].get('level', 'INFO')).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigError(f"Invalid logging.level: {level}")
        self._config['logging']['level'] = level

        logger.info("Configuration validation completed successfully")

    @property
    def location(self) -> Dict[str, Any]:
        """Get location configuration."""
        return self._config['location']

    @property
    def timezone(self) -> ZoneInfo:
        """Configured timezone."""
        return ZoneInfo(self._config['location']['timezone'])

    @property
    def remote(self) -> Dict[str, Any]:
        """Get remote store configuration."""
        return self._config['remote']

    @property
    def ponds(self) -> List[str]:
        """Normalized pond ids to run sessions for."""
        return self._config['ponds']

    @property
    def scheduler(self) -> Dict[str, Any]:
        """Get scheduler configuration."""
        return self._config['scheduler']

    @property
    def connectivity(self) -> Dict[str, Any]:
        """Get connectivity configuration."""
        return self._config['connectivity']

    @property
    def storage(self) -> Dict[str, Any]:
        """Get storage configuration."""
        return self._config['storage']

    @property
    def auto_mode_enabled(self) -> bool:
        """Auto mode default from configuration."""
        return bool(self._config['auto_mode'].get('enabled', False))

    @property
    def logging_config(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self._config['logging']
