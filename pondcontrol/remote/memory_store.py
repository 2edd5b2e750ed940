"""In-memory remote store for local runs and tests."""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .remote_store import RemoteStore, RemoteStoreError, join_path


logger = logging.getLogger(__name__)


class InMemoryRemoteStore(RemoteStore):
    """
    Remote store backed by a nested dictionary.

    Subscribers are notified synchronously after every write that touches
    their path (a write to an ancestor, the path itself, or a descendant).
    Reads and writes can be made to fail to simulate an unreachable backend.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        """
        Initialize in-memory store.

        Args:
            initial: Optional initial tree (deep-copied)
        """
        self.data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes: List[Tuple[str, str, Any]] = []
        self._subscribers: Dict[int, Tuple[str, Callable[[Any], None]]] = {}
        self._next_subscriber_id = 0

    def _segments(self, path: str) -> List[str]:
        return [s for s in join_path(path).split('/') if s]

    def _read(self, path: str) -> Any:
        node = self.data
        for segment in self._segments(path):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node)

    def _write(self, path: str, value: Any):
        segments = self._segments(path)
        if not segments:
            self.data = copy.deepcopy(value) if isinstance(value, dict) else {}
            return

        node = self.data
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child

        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = copy.deepcopy(value)

    def _notify(self, written_path: str):
        written = join_path(written_path)
        for sub_path, callback in list(self._subscribers.values()):
            related = (
                not written
                or not sub_path
                or written == sub_path
                or written.startswith(sub_path + '/')
                or sub_path.startswith(written + '/')
            )
            if not related:
                continue
            try:
                callback(self._read(sub_path))
            except Exception as e:
                logger.error(f"Subscriber for '{sub_path}' raised {type(e).__name__}: {e}")

    async def get(self, path: str) -> Any:
        if self.fail_reads:
            raise RemoteStoreError(f"Read failed for '{path}' (store unreachable)")
        return self._read(path)

    async def set(self, path: str, value: Any) -> None:
        if self.fail_writes:
            raise RemoteStoreError(f"Write failed for '{path}' (store unreachable)")
        self._write(path, value)
        self.writes.append(('set', join_path(path), copy.deepcopy(value)))
        self._notify(path)

    async def update(self, path: str, patch: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise RemoteStoreError(f"Update failed for '{path}' (store unreachable)")
        for key, value in patch.items():
            self._write(join_path(path, key), value)
        self.writes.append(('update', join_path(path), copy.deepcopy(patch)))
        self._notify(path)

    def subscribe(self, path: str, on_change: Callable[[Any], None]) -> Callable[[], None]:
        subscriber_id = self._next_subscriber_id
        self._next_subscriber_id += 1
        self._subscribers[subscriber_id] = (join_path(path), on_change)

        # Deliver the current snapshot immediately, like a realtime listener
        on_change(self._read(path))

        def unsubscribe():
            self._subscribers.pop(subscriber_id, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscribers)
