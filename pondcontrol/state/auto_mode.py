"""Global auto-mode setting with a persisted runtime override."""

import json
import logging
from typing import Optional

from .storage import KeyValueStorage


logger = logging.getLogger(__name__)

AUTO_MODE_KEY = 'settings:auto_mode_enabled'


class AutoModeSetting:
    """
    The single global AutoModeSetting flag.

    The base value comes from configuration (``auto_mode.enabled``). The
    hosting application may override it at runtime; the override is persisted
    so it survives restarts, and ``clear_override`` returns to the config value.
    """

    def __init__(self, default: bool = False, storage: Optional[KeyValueStorage] = None):
        """
        Initialize auto-mode setting.

        Args:
            default: Value from configuration
            storage: Optional storage for the runtime override
        """
        self.default = default
        self.storage = storage
        self._override: Optional[bool] = None
        self._load_override()

    def _load_override(self):
        if not self.storage:
            return

        raw = self.storage.get(AUTO_MODE_KEY)
        if raw is None:
            return

        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse stored auto-mode override: {e}")
            return

        if isinstance(value, bool):
            self._override = value
            logger.info(f"Loaded auto-mode override: {value}")
        else:
            logger.warning(f"Ignoring invalid auto-mode override: {raw!r}")

    @property
    def enabled(self) -> bool:
        """Effective auto-mode flag."""
        if self._override is not None:
            return self._override
        return self.default

    def set(self, enabled: bool):
        """Override the configured value."""
        self._override = bool(enabled)
        if self.storage:
            self.storage.set(AUTO_MODE_KEY, json.dumps(self._override))
        logger.info(f"Auto mode {'ENABLED' if self._override else 'DISABLED'}")

    def clear_override(self):
        """Drop the runtime override and use the configured value again."""
        self._override = None
        if self.storage:
            self.storage.delete(AUTO_MODE_KEY)
        logger.info(f"Auto mode override cleared (configured value: {self.default})")

    def __bool__(self) -> bool:
        return self.enabled
