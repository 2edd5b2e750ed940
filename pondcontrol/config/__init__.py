"""Configuration package."""

from .config_loader import Config, ConfigError, ENV_VAR_MAPPING

__all__ = ['Config', 'ConfigError', 'ENV_VAR_MAPPING']
