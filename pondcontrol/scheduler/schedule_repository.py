"""Access to a pond's schedules in the remote store."""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from pondcontrol.remote.remote_store import RemoteStore, RemoteStoreError, join_path
from pondcontrol.state.auto_mode import AutoModeSetting
from .schedule_types import Schedule, parse_remote_schedules, validate_schedule_record


logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ScheduleRepository:
    """
    Reads and writes schedules under ``ponds/{pond}/schedules``.

    The executor only reads schedules and performs two best-effort follow-up
    writes (``lastExecuted`` and disabling ``once`` schedules). The CRUD
    methods serve the hosting application's schedule editor.
    """

    def __init__(self, pond_id: str, store: RemoteStore,
                 auto_mode: Optional[AutoModeSetting] = None,
                 clock_ms: Optional[Callable[[], int]] = None):
        """
        Initialize schedule repository.

        Args:
            pond_id: Pond whose schedules are managed
            store: Remote state store
            auto_mode: Optional auto-mode setting (blocks enabling schedules while on)
            clock_ms: Optional epoch-millisecond clock
        """
        self.pond_id = pond_id
        self.store = store
        self.auto_mode = auto_mode
        self._clock_ms = clock_ms or _now_ms

    def path(self, device_type: str = '', schedule_id: str = '', field: str = '') -> str:
        """Store path of the schedules subtree, a device's schedules, a schedule or a field."""
        return join_path('ponds', self.pond_id, 'schedules', device_type, schedule_id, field)

    async def fetch_schedules(self) -> List[Schedule]:
        """
        Read and parse every schedule of the pond.

        Raises:
            RemoteStoreError: If the read fails
        """
        data = await self.store.get(self.path())
        schedules = parse_remote_schedules(data)
        logger.debug(f"Fetched {len(schedules)} schedule(s) for '{self.pond_id}'")
        return schedules

    def subscribe(self, on_change: Callable[[List[Schedule]], None]) -> Callable[[], None]:
        """
        Watch the pond's schedules.

        Returns:
            Callable that cancels the subscription
        """
        return self.store.subscribe(self.path(), lambda data: on_change(parse_remote_schedules(data)))

    async def mark_executed(self, schedule: Schedule, executed_at_ms: Optional[int] = None) -> bool:
        """
        Best-effort write of ``lastExecuted``.

        Returns:
            True if the write succeeded (failures are logged only)
        """
        value = executed_at_ms if executed_at_ms is not None else self._clock_ms()
        try:
            await self.store.set(self.path(schedule.device_type, schedule.id, 'lastExecuted'), value)
            return True
        except RemoteStoreError as e:
            logger.warning(f"Failed to record lastExecuted for schedule '{schedule.id}': {e}")
            return False

    async def disable_schedule(self, schedule: Schedule) -> bool:
        """
        Best-effort disable of a schedule (used after a ``once`` schedule completes).

        Returns:
            True if the write succeeded (failures are logged only)
        """
        try:
            await self.store.update(
                self.path(schedule.device_type, schedule.id),
                {'enabled': False, 'isActive': False}
            )
            logger.info(f"Disabled one-time schedule '{schedule.id}' after completion")
            return True
        except RemoteStoreError as e:
            logger.warning(
                f"Failed to disable one-time schedule '{schedule.id}': {e} "
                f"(it will keep running as a recurring schedule)"
            )
            return False

    async def add_schedule(self, device_type: str, record: Dict[str, Any]) -> Optional[str]:
        """
        Create a schedule for device_type.

        Args:
            device_type: Device type the schedule belongs to
            record: Schedule fields (``startTime``, ``endTime``, ``daysOfWeek``, ...)

        Returns:
            New schedule id, or None if the record is invalid or the write failed
        """
        is_valid, error = validate_schedule_record({**record, 'deviceType': device_type})
        if not is_valid:
            logger.error(f"Refusing to add invalid schedule for '{device_type}': {error}")
            return None

        now_ms = self._clock_ms()
        enabled = record.get('enabled', True) is not False
        schedule_id = f"-{uuid.uuid4().hex[:19]}"
        new_record = {
            **record,
            'enabled': enabled,
            'isActive': enabled,
            'createdAt': now_ms,
            'updatedAt': now_ms,
        }

        try:
            await self.store.set(self.path(device_type, schedule_id), new_record)
        except RemoteStoreError as e:
            logger.error(f"Error adding schedule for '{device_type}': {e}")
            return None

        logger.info(f"Schedule '{schedule_id}' added for '{device_type}'")
        return schedule_id

    async def update_schedule(self, schedule: Schedule, updates: Dict[str, Any]) -> bool:
        """
        Merge updates into a schedule.

        Returns:
            True if the write succeeded
        """
        merged = {**schedule.to_dict(), **updates}
        is_valid, error = validate_schedule_record({**merged, 'deviceType': schedule.device_type})
        if not is_valid:
            logger.error(f"Refusing invalid update for schedule '{schedule.id}': {error}")
            return False

        patch = dict(updates)
        patch['updatedAt'] = self._clock_ms()
        patch['isActive'] = updates.get('enabled', schedule.enabled)

        try:
            await self.store.update(self.path(schedule.device_type, schedule.id), patch)
        except RemoteStoreError as e:
            logger.error(f"Error updating schedule '{schedule.id}': {e}")
            return False

        logger.info(f"Schedule '{schedule.id}' updated")
        return True

    async def delete_schedule(self, schedule: Schedule) -> bool:
        """
        Remove a schedule.

        Returns:
            True if the write succeeded
        """
        try:
            await self.store.set(self.path(schedule.device_type, schedule.id), None)
        except RemoteStoreError as e:
            logger.error(f"Error deleting schedule '{schedule.id}': {e}")
            return False

        logger.info(f"Schedule '{schedule.id}' removed")
        return True

    async def toggle_schedule(self, schedule: Schedule, enabled: bool) -> bool:
        """
        Enable or disable a schedule.

        Enabling is refused while auto mode is on, since schedules would not
        run anyway.

        Returns:
            True if the write succeeded
        """
        if enabled and self.auto_mode is not None and self.auto_mode.enabled:
            logger.warning(f"Schedules are disabled during Auto Mode; not enabling '{schedule.id}'")
            return False

        return await self.update_schedule(schedule, {'enabled': enabled})
