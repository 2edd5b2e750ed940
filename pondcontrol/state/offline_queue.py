"""Persisted, per-device coalesced queue of undelivered device commands."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .storage import KeyValueStorage


logger = logging.getLogger(__name__)


@dataclass
class PendingAction:
    """A device patch waiting for connectivity."""
    id: str
    device_id: str
    patch: Dict[str, Any]
    created_at: int  # epoch milliseconds

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingAction':
        """
        Create from dictionary.

        Raises:
            ValueError: If required fields are missing or have the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"Pending action must be a dict, got {type(data).__name__}")
        try:
            action = cls(
                id=str(data['id']),
                device_id=str(data['device_id']),
                patch=data['patch'],
                created_at=int(data['created_at'])
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed pending action: {e}")
        if not isinstance(action.patch, dict):
            raise ValueError("Pending action patch must be a dict")
        return action


DeliverFn = Callable[[PendingAction], Awaitable[None]]


class OfflineQueueError(Exception):
    """Raised when the offline queue cannot be persisted."""
    pass


class OfflineQueue:
    """
    Queue of device commands that could not be delivered.

    Holds at most one action per device: enqueuing for a device that already
    has a pending action discards the older one (last write wins). The queue
    is persisted after every change and reloaded on construction.
    """

    def __init__(self, storage: KeyValueStorage, pond_id: str,
                 clock_ms: Optional[Callable[[], int]] = None):
        """
        Initialize offline queue.

        Args:
            storage: Persistent key-value storage
            pond_id: Pond whose commands this queue holds
            clock_ms: Optional epoch-millisecond clock (defaults to time.time)
        """
        self.storage = storage
        self.pond_id = pond_id
        self.storage_key = f"{pond_id}:pending_device_actions"
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._drain_lock = asyncio.Lock()

    def _load(self) -> List[PendingAction]:
        raw = self.storage.get(self.storage_key)
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Offline queue for '{self.pond_id}' is unreadable ({e}); treating as empty")
            return []

        if not isinstance(data, list):
            logger.warning(f"Offline queue for '{self.pond_id}' has invalid format; treating as empty")
            return []

        actions = []
        for entry in data:
            try:
                actions.append(PendingAction.from_dict(entry))
            except ValueError as e:
                logger.warning(f"Dropping malformed pending action: {e}")
        return actions

    def _save(self, actions: List[PendingAction]):
        try:
            self.storage.set(self.storage_key, json.dumps([a.to_dict() for a in actions]))
        except OSError as e:
            raise OfflineQueueError(f"Failed to persist offline queue for '{self.pond_id}': {e}") from e

    def _restore(self, actions: List[PendingAction]):
        # Storage backends may keep the rejected value in memory
        try:
            self._save(actions)
        except OfflineQueueError as e:
            logger.error(f"Could not restore offline queue for '{self.pond_id}': {e}")

    def pending(self) -> List[PendingAction]:
        """Pending actions in creation order."""
        return sorted(self._load(), key=lambda a: a.created_at)

    def get(self, device_id: str) -> Optional[PendingAction]:
        """Pending action for device_id, if any."""
        for action in self._load():
            if action.device_id == device_id:
                return action
        return None

    def __len__(self) -> int:
        return len(self._load())

    def enqueue(self, device_id: str, patch: Dict[str, Any]) -> PendingAction:
        """
        Queue a patch for device_id, replacing any earlier pending action.

        Args:
            device_id: Target device
            patch: Partial device state

        Returns:
            The new pending action

        Raises:
            OfflineQueueError: If the queue could not be persisted
        """
        now_ms = self._clock_ms()
        action = PendingAction(
            id=f"{now_ms}_{device_id}",
            device_id=device_id,
            patch=dict(patch),
            created_at=now_ms
        )

        existing = self._load()
        actions = [a for a in existing if a.device_id != device_id]
        replaced = len(actions) != len(existing)
        actions.append(action)
        try:
            self._save(actions)
        except OfflineQueueError:
            self._restore(existing)
            raise

        if replaced:
            logger.info(f"Replaced pending action for device '{device_id}': {patch}")
        else:
            logger.info(f"Queued offline action for device '{device_id}': {patch}")
        return action

    def remove(self, action_id: str) -> bool:
        """
        Remove a pending action by id.

        Returns:
            True if an action was removed

        Raises:
            OfflineQueueError: If the queue could not be persisted
        """
        actions = self._load()
        remaining = [a for a in actions if a.id != action_id]
        if len(remaining) == len(actions):
            return False
        try:
            self._save(remaining)
        except OfflineQueueError:
            self._restore(actions)
            raise
        return True

    def clear(self):
        """Drop every pending action."""
        self.storage.delete(self.storage_key)
        logger.info(f"Cleared offline queue for '{self.pond_id}'")

    async def drain(self, deliver: DeliverFn) -> Tuple[List[PendingAction], List[PendingAction]]:
        """
        Attempt delivery of every pending action in creation order.

        Delivered actions are removed one at a time; failed ones stay queued
        for the next drain. A drain requested while another is running is
        skipped.

        Args:
            deliver: Coroutine that delivers one action and raises on failure

        Returns:
            Tuple of (succeeded, remaining)
        """
        if self._drain_lock.locked():
            logger.debug(f"Drain already in progress for '{self.pond_id}', skipping")
            return [], self.pending()

        async with self._drain_lock:
            pending = self.pending()
            if not pending:
                return [], []

            logger.info(f"Draining {len(pending)} pending action(s) for '{self.pond_id}'")
            succeeded = []

            for action in pending:
                try:
                    await deliver(action)
                except Exception as e:
                    logger.warning(
                        f"Failed to sync pending action for device '{action.device_id}': "
                        f"{type(e).__name__}: {e}"
                    )
                    continue

                # Remove by id so an action enqueued for this device mid-drain survives
                try:
                    self.remove(action.id)
                except OfflineQueueError as e:
                    logger.error(f"Delivered action for device '{action.device_id}' stays queued: {e}")
                    continue
                succeeded.append(action)
                logger.info(f"Synced pending action for device '{action.device_id}'")

            remaining = self.pending()
            if remaining:
                logger.warning(f"{len(remaining)} pending action(s) failed to sync for '{self.pond_id}'")
            return succeeded, remaining
