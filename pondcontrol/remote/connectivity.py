"""Connectivity signal for the remote state store."""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .remote_store import RemoteStore
from pondcontrol.state.storage import KeyValueStorage


logger = logging.getLogger(__name__)

LAST_ONLINE_KEY = 'connectivity:last_online'


class ConnectivityEvent(Enum):
    """Connectivity transition events."""
    BECAME_ONLINE = "became-online"
    BECAME_OFFLINE = "became-offline"


ConnectivityListener = Callable[[ConnectivityEvent], Awaitable[None]]


class ConnectivityMonitor:
    """
    Tracks whether the remote store is reachable and notifies listeners.

    State changes come either from the hosting application (``set_online``)
    or from the optional probe loop, which pings the store on a fixed interval.
    Listeners are only called on transitions, never on repeated reports of
    the same state.
    """

    def __init__(self, store: Optional[RemoteStore] = None, check_interval_seconds: float = 15,
                 initial_online: bool = True, storage: Optional[KeyValueStorage] = None):
        """
        Initialize connectivity monitor.

        Args:
            store: Remote store to probe (probe loop disabled when None)
            check_interval_seconds: Seconds between probes
            initial_online: Assumed state before the first probe
            storage: Optional storage used to remember the last time we were online
        """
        self.store = store
        self.check_interval_seconds = check_interval_seconds
        self.storage = storage
        self._online = initial_online
        self._listeners: List[ConnectivityListener] = []
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_online(self) -> bool:
        """Whether the remote store is currently believed reachable."""
        return self._online

    @property
    def last_online(self) -> Optional[datetime]:
        """Last time the store was seen online (persisted across restarts)."""
        if not self.storage:
            return None
        value = self.storage.get(LAST_ONLINE_KEY)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring invalid last-online timestamp: {value!r}")
            return None

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a transition listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_online(self, online: bool):
        """
        Report the current connectivity state.

        Args:
            online: True if the store is reachable
        """
        if online:
            self._remember_online()

        if online == self._online:
            return

        self._online = online
        event = ConnectivityEvent.BECAME_ONLINE if online else ConnectivityEvent.BECAME_OFFLINE
        logger.info(f"Connectivity changed: {event.value}")

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {type(e).__name__}: {e}")
                logger.exception("Full traceback:")

    def _remember_online(self):
        if not self.storage:
            return
        try:
            self.storage.set(LAST_ONLINE_KEY, datetime.now().astimezone().isoformat())
        except OSError as e:
            logger.warning(f"Failed to persist last-online time: {e}")

    async def check_now(self) -> bool:
        """
        Probe the store once and report the result.

        Returns:
            True if the store answered
        """
        if not self.store:
            return self._online
        online = await self.store.ping()
        await self.set_online(online)
        return online

    async def start(self):
        """Start the background probe loop."""
        if self._running:
            logger.warning("Connectivity monitor already running")
            return
        if not self.store:
            logger.info("No store to probe; connectivity is driven externally")
            return

        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        logger.info(f"Connectivity monitor started (interval: {self.check_interval_seconds}s)")

    async def stop(self):
        """Stop the background probe loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Connectivity monitor stopped")

    async def _probe_loop(self):
        while self._running:
            try:
                await self.check_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Connectivity probe failed with exception: {type(e).__name__}: {e}")

            try:
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                break
