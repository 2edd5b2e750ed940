"""Local persisted state package."""

from .storage import KeyValueStorage, MemoryStorage, JsonFileStorage
from .offline_queue import OfflineQueue, OfflineQueueError, PendingAction
from .auto_mode import AutoModeSetting

__all__ = [
    'KeyValueStorage',
    'MemoryStorage',
    'JsonFileStorage',
    'OfflineQueue',
    'OfflineQueueError',
    'PendingAction',
    'AutoModeSetting',
]
