"""Abstract interface for the path-addressed remote state store."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Remote state store read/write failure."""
    pass


def join_path(*parts: str) -> str:
    """
    Join path segments into a normalized store path.

    Empty segments and stray slashes are dropped so that
    ``join_path('ponds/', '/pond1', 'devices')`` yields ``ponds/pond1/devices``.
    """
    segments = []
    for part in parts:
        if part is None:
            continue
        segments.extend(s for s in str(part).split('/') if s)
    return '/'.join(segments)


def normalize_pond_id(pond_id: str) -> str:
    """
    Normalize a pond identifier to its store key.

    Identifiers already starting with ``pond`` are returned unchanged; anything
    else is reduced to its digits and prefixed (``"3"`` -> ``"pond3"``),
    defaulting to ``pond1`` when no digits are present.
    """
    if pond_id.startswith('pond'):
        return pond_id
    digits = ''.join(ch for ch in pond_id if ch.isdigit())
    return f"pond{digits or '1'}"


class RemoteStore(ABC):
    """
    Hierarchical key/value store addressed by slash-separated paths.

    Implementations raise RemoteStoreError for any transport or server
    failure; callers never see library-specific exceptions.
    """

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Read the value at path (None when absent)."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at path."""

    @abstractmethod
    async def update(self, path: str, patch: Dict[str, Any]) -> None:
        """Merge the children in patch into the object at path."""

    @abstractmethod
    def subscribe(self, path: str, on_change: Callable[[Any], None]) -> Callable[[], None]:
        """
        Subscribe to changes at path.

        Args:
            path: Store path to watch
            on_change: Called with the new value whenever it changes

        Returns:
            Callable that cancels the subscription
        """

    async def ping(self) -> bool:
        """
        Check whether the store is reachable.

        Returns:
            True if a lightweight read succeeds
        """
        try:
            await self.get('')
            return True
        except RemoteStoreError as e:
            logger.debug(f"Remote store ping failed: {e}")
            return False

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None
