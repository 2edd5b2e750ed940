"""Local persistent key-value storage backends."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional


logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """String-keyed, string-valued persistent storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""


class MemoryStorage(KeyValueStorage):
    """Non-persistent storage kept in a dictionary."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """
    Storage persisted as a single JSON object on disk.

    The whole file is rewritten on every change. An unreadable or malformed
    file is treated as empty so a corrupted state file never stops startup.
    """

    def __init__(self, state_file: str = "state/pondcontrol.json"):
        """
        Initialize JSON file storage.

        Args:
            state_file: Path to the JSON state file
        """
        self.state_file = Path(state_file)
        self.data: Dict[str, str] = {}
        self._ensure_state_dir()
        self._load_state()

    def _ensure_state_dir(self):
        """Ensure state directory exists."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

    def _load_state(self):
        """Load state from JSON file."""
        if not self.state_file.exists():
            logger.info(f"No state file found at {self.state_file}, starting fresh")
            self.data = {}
            return

        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                logger.warning(f"Invalid state file format (expected dict): {self.state_file}")
                self.data = {}
                return
            self.data = {str(k): v for k, v in data.items() if isinstance(v, str)}
            logger.info(f"Loaded {len(self.data)} key(s) from {self.state_file}")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load state file {self.state_file}: {e}. Starting with empty state.")
            self.data = {}

    def _save_state(self):
        """Save state to JSON file."""
        self._ensure_state_dir()
        tmp_file = self.state_file.with_suffix(self.state_file.suffix + '.tmp')
        with open(tmp_file, 'w') as f:
            json.dump(self.data, f, indent=2)
        tmp_file.replace(self.state_file)
        logger.debug(f"Saved state to {self.state_file}")

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
        self._save_state()

    def delete(self, key: str) -> None:
        if key in self.data:
            del self.data[key]
            self._save_state()
