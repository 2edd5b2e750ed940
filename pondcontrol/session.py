"""Per-pond session that owns the scheduler loop and device synchronization."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from pondcontrol.devices import CommandDispatcher, DeviceCache, parse_remote_devices
from pondcontrol.remote import ConnectivityEvent, ConnectivityMonitor, RemoteStore, RemoteStoreError
from pondcontrol.scheduler import (
    ExecutionTracker,
    ModeArbiter,
    NextTransition,
    Schedule,
    ScheduleEvaluator,
    ScheduleExecutor,
    ScheduleRepository,
    ScheduleStatus,
)
from pondcontrol.state import AutoModeSetting, KeyValueStorage, OfflineQueue


logger = logging.getLogger(__name__)


class PondSession:
    """
    Session-scoped controller for one pond.

    Builds the pond's cache, offline queue, dispatcher, tracker and executor,
    and owns every background activity that drives them: the evaluation
    ticker, the midnight reset, the connectivity listener and the device
    subscription. Nothing is shared with other sessions except the remote
    store, the local storage, the connectivity monitor and the auto-mode flag.
    """

    def __init__(self, pond_id: str, store: RemoteStore, storage: KeyValueStorage,
                 connectivity: ConnectivityMonitor, auto_mode: AutoModeSetting,
                 timezone: ZoneInfo, check_interval_seconds: float = 30,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize pond session.

        Args:
            pond_id: Normalized pond id
            store: Remote state store
            storage: Local key-value storage
            connectivity: Connectivity monitor
            auto_mode: Global auto-mode setting
            timezone: Timezone used for schedule evaluation
            check_interval_seconds: Seconds between evaluation ticks
            clock: Optional clock returning an aware datetime
        """
        self.pond_id = pond_id
        self.store = store
        self.connectivity = connectivity
        self.auto_mode = auto_mode
        self.timezone = timezone
        self.check_interval_seconds = check_interval_seconds
        self.clock = clock or (lambda: datetime.now(self.timezone))

        self.cache = DeviceCache(storage, pond_id)
        self.queue = OfflineQueue(storage, pond_id)
        self.dispatcher = CommandDispatcher(pond_id, store, self.cache, self.queue, connectivity)
        self.repository = ScheduleRepository(pond_id, store, auto_mode)
        self.evaluator = ScheduleEvaluator(timezone)
        self.tracker = ExecutionTracker()
        self.arbiter = ModeArbiter(auto_mode)
        self.executor = ScheduleExecutor(
            repository=self.repository,
            evaluator=self.evaluator,
            tracker=self.tracker,
            arbiter=self.arbiter,
            dispatcher=self.dispatcher,
            auto_mode=auto_mode,
            clock=self.clock
        )

        self.running = False
        self._ticker_task: Optional[asyncio.Task] = None
        self._midnight_task: Optional[asyncio.Task] = None
        self._cycle_tasks: Set[asyncio.Task] = set()
        self._remove_listener: Optional[Callable[[], None]] = None
        self._unsubscribe_devices: Optional[Callable[[], None]] = None

    async def start(self):
        """Prime the device cache and start all background activities."""
        if self.running:
            logger.warning(f"Session for '{self.pond_id}' already running")
            return

        logger.info(f"Starting session for pond '{self.pond_id}'")
        self.running = True

        await self._prime_cache()
        self.dispatcher.overlay_pending()

        if self.connectivity.is_online and len(self.queue):
            await self.dispatcher.drain_offline_queue()

        self._remove_listener = self.connectivity.add_listener(self._on_connectivity)
        self._unsubscribe_devices = self.store.subscribe(
            self.dispatcher.device_path(), self._on_devices_changed
        )
        self._ticker_task = asyncio.create_task(self._ticker_loop())
        self._midnight_task = asyncio.create_task(self._midnight_loop())

        logger.info(
            f"Session for '{self.pond_id}' started "
            f"(check interval: {self.check_interval_seconds}s, timezone: {self.timezone})"
        )

    async def stop(self):
        """
        Stop all background activities.

        A cycle already in flight is allowed to finish; nothing is retried
        afterwards.
        """
        if not self.running:
            return

        logger.info(f"Stopping session for pond '{self.pond_id}'")
        self.running = False

        if self._remove_listener:
            self._remove_listener()
            self._remove_listener = None
        if self._unsubscribe_devices:
            self._unsubscribe_devices()
            self._unsubscribe_devices = None

        for task in (self._ticker_task, self._midnight_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ticker_task = None
        self._midnight_task = None

        if self._cycle_tasks:
            await asyncio.gather(*self._cycle_tasks, return_exceptions=True)

        logger.info(f"Session for '{self.pond_id}' stopped")

    async def _prime_cache(self):
        try:
            data = await self.store.get(self.dispatcher.device_path())
        except RemoteStoreError as e:
            logger.warning(f"Could not load devices for '{self.pond_id}', using cached state: {e}")
            return

        if data is None:
            logger.info(f"No devices stored for '{self.pond_id}' yet; keeping cached state")
            return

        devices = parse_remote_devices(data)
        self.cache.replace_all(devices)
        logger.info(f"Loaded {len(devices)} device(s) for '{self.pond_id}'")

    def _on_devices_changed(self, data):
        if not self.running or data is None:
            return
        self.dispatcher.refresh_from_remote(parse_remote_devices(data))

    async def _on_connectivity(self, event: ConnectivityEvent):
        if event is not ConnectivityEvent.BECAME_ONLINE or not self.running:
            return

        if not len(self.queue):
            return

        logger.info(f"Back online: replaying {len(self.queue)} queued action(s) for '{self.pond_id}'")
        succeeded, remaining = await self.dispatcher.drain_offline_queue()
        logger.info(
            f"Replayed {len(succeeded)} action(s) for '{self.pond_id}', {len(remaining)} still pending"
        )

    def tick(self) -> asyncio.Task:
        """
        Spawn one evaluation cycle.

        Returns:
            The spawned task (the cycle itself skips if another is in flight)
        """
        task = asyncio.create_task(self.executor.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_done)
        return task

    def _cycle_done(self, task: asyncio.Task):
        self._cycle_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Evaluation cycle for '{self.pond_id}' failed: {type(error).__name__}: {error}")

    async def _ticker_loop(self):
        while self.running:
            self.tick()
            await asyncio.sleep(self.check_interval_seconds)

    def seconds_until_midnight(self) -> float:
        """Seconds from now until the next local midnight."""
        now = self.clock()
        midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        # Timestamps, so DST days are measured in real seconds
        return max(midnight.timestamp() - now.timestamp(), 1.0)

    async def _midnight_loop(self):
        while self.running:
            await asyncio.sleep(self.seconds_until_midnight())
            logger.info(f"Midnight reset for '{self.pond_id}'")
            self.tracker.clear()

    async def next_transition(self) -> Optional[NextTransition]:
        """
        Nearest upcoming schedule transition for this pond.

        Returns:
            NextTransition, or None if nothing is scheduled or schedules
            could not be read
        """
        try:
            schedules = await self.repository.fetch_schedules()
        except RemoteStoreError as e:
            logger.warning(f"Could not fetch schedules for '{self.pond_id}': {e}")
            return None
        return self.evaluator.next_transition(schedules, self.clock())

    async def schedule_statuses(self) -> List[Tuple[Schedule, ScheduleStatus]]:
        """
        Status of every schedule of this pond at the current time.

        Returns:
            List of (schedule, ScheduleStatus) tuples (empty if schedules
            could not be read)
        """
        try:
            schedules = await self.repository.fetch_schedules()
        except RemoteStoreError as e:
            logger.warning(f"Could not fetch schedules for '{self.pond_id}': {e}")
            return []
        now = self.clock()
        return [(schedule, self.evaluator.schedule_status(schedule, now)) for schedule in schedules]
