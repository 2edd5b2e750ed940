"""Remote state store package."""

from .remote_store import RemoteStore, RemoteStoreError, join_path, normalize_pond_id
from .memory_store import InMemoryRemoteStore
from .firebase_store import FirebaseRestStore
from .connectivity import ConnectivityMonitor, ConnectivityEvent

__all__ = [
    'RemoteStore',
    'RemoteStoreError',
    'join_path',
    'normalize_pond_id',
    'InMemoryRemoteStore',
    'FirebaseRestStore',
    'ConnectivityMonitor',
    'ConnectivityEvent',
]
