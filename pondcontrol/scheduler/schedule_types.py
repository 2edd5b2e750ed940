"""Schedule data structures and validation for time-window device schedules."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple
from enum import Enum


logger = logging.getLogger(__name__)

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]  # 0=Sunday, 6=Saturday
MINUTES_PER_DAY = 24 * 60


class TransitionKind(Enum):
    """Commanded on/off change of a device."""
    ON = "ON"
    OFF = "OFF"

    @property
    def state(self) -> int:
        """Remote ``state`` value this transition drives the device to."""
        return 1 if self is TransitionKind.ON else 0


class RepeatPolicy(Enum):
    """How often a schedule repeats."""
    ONCE = "once"
    DAILY = "daily"
    CUSTOM = "custom"


class ScheduleStatus(Enum):
    """Status of a schedule at a given instant."""
    UPCOMING = "upcoming"
    RUNNING = "running"
    COMPLETED = "completed"
    DISABLED = "disabled"


def parse_time_to_minutes(value: str) -> int:
    """
    Convert an ``HH:MM`` string to minutes since midnight.

    Raises:
        ValueError: If value is not a valid 24-hour time
    """
    if not isinstance(value, str):
        raise ValueError(f"Time must be a string in HH:MM format, got {value!r}")
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M")
    except ValueError:
        raise ValueError(f"Invalid time format '{value}'. Must be HH:MM (24-hour)")
    return parsed.hour * 60 + parsed.minute


class Schedule:
    """
    A time-window schedule for one device type.

    The device is driven ON at ``start_time`` and OFF at ``end_time`` on each
    weekday in ``days_of_week``.
    """

    def __init__(self, schedule_dict: Dict[str, Any]):
        """
        Initialize schedule from a remote schedule record.

        Args:
            schedule_dict: Record with ``id`` and ``deviceType`` added by the
                caller plus the stored fields (``startTime``, ``endTime``,
                ``daysOfWeek``, ``enabled``/``isActive``, ``repeat``, ...)

        Raises:
            ValueError: If the record is malformed
        """
        if not isinstance(schedule_dict, dict):
            raise ValueError("Schedule must be a dictionary")

        self.id = str(schedule_dict.get('id') or '')
        if not self.id:
            raise ValueError("Schedule must have an 'id'")

        self.device_type = str(schedule_dict.get('deviceType') or '')
        if not self.device_type:
            raise ValueError("Schedule must have a 'deviceType'")

        # Informational only; schedule writes address the device-type node
        self.device_id = str(schedule_dict.get('deviceId') or self.device_type)
        self.device_name = str(schedule_dict.get('deviceName') or self.device_type)

        # Enabled unless either flag is explicitly false
        self.enabled = (
            schedule_dict.get('enabled') is not False
            and schedule_dict.get('isActive') is not False
        )

        if 'startTime' not in schedule_dict or 'endTime' not in schedule_dict:
            raise ValueError("Schedule must have 'startTime' and 'endTime'")
        self.start_time = str(schedule_dict['startTime']).strip()
        self.end_time = str(schedule_dict['endTime']).strip()
        self.start_minute = parse_time_to_minutes(schedule_dict['startTime'])
        self.end_minute = parse_time_to_minutes(schedule_dict['endTime'])

        days = schedule_dict.get('daysOfWeek')
        if days is None:
            days = list(ALL_DAYS)
        elif isinstance(days, dict):
            # Sparse arrays come back from the store as index-keyed objects
            days = list(days.values())
        if not isinstance(days, list) or not all(
            isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6 for d in days
        ):
            raise ValueError(f"Invalid daysOfWeek specification: {days}")
        self.days_of_week = sorted(set(days))

        repeat_str = str(schedule_dict.get('repeat') or RepeatPolicy.DAILY.value).lower()
        try:
            self.repeat = RepeatPolicy(repeat_str)
        except ValueError:
            logger.warning(
                f"Invalid repeat '{repeat_str}' for schedule '{self.id}', using 'daily'"
            )
            self.repeat = RepeatPolicy.DAILY

        self.created_at = schedule_dict.get('createdAt')
        self.updated_at = schedule_dict.get('updatedAt')
        self.last_executed: Optional[int] = schedule_dict.get('lastExecuted')

    def is_active_on(self, weekday: int) -> bool:
        """Check if the schedule runs on a weekday (0=Sunday)."""
        return weekday in self.days_of_week

    def is_once(self) -> bool:
        return self.repeat is RepeatPolicy.ONCE

    def target_minute(self, kind: TransitionKind) -> int:
        """Minute of day at which a transition of this kind fires."""
        return self.start_minute if kind is TransitionKind.ON else self.end_minute

    def target_time(self, kind: TransitionKind) -> str:
        """``HH:MM`` string at which a transition of this kind fires."""
        return self.start_time if kind is TransitionKind.ON else self.end_time

    def to_dict(self) -> Dict[str, Any]:
        """Convert schedule to its remote record representation."""
        result = {
            'deviceId': self.device_id,
            'deviceName': self.device_name,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'daysOfWeek': list(self.days_of_week),
            'repeat': self.repeat.value,
            'enabled': self.enabled,
            'isActive': self.enabled,
        }
        if self.created_at is not None:
            result['createdAt'] = self.created_at
        if self.updated_at is not None:
            result['updatedAt'] = self.updated_at
        if self.last_executed is not None:
            result['lastExecuted'] = self.last_executed
        return result

    def __repr__(self) -> str:
        return (
            f"Schedule(id='{self.id}', device_type='{self.device_type}', "
            f"{self.start_time}-{self.end_time}, days={self.days_of_week}, "
            f"enabled={self.enabled}, repeat={self.repeat.value})"
        )


@dataclass(frozen=True)
class DueTransition:
    """A transition whose firing window contains the evaluation instant."""
    schedule: Schedule
    kind: TransitionKind
    target_minute: int


@dataclass(frozen=True)
class NextTransition:
    """The nearest upcoming transition across a schedule set."""
    schedule: Schedule
    kind: TransitionKind
    time: str
    minutes_until: int
    at: datetime


def parse_remote_schedules(data: Any) -> List[Schedule]:
    """
    Flatten a pond's schedules subtree into Schedule objects.

    The subtree is keyed by device type, then by schedule id. Malformed
    records are skipped with a warning; they never abort parsing.

    Args:
        data: ``{deviceType: {scheduleId: record}}`` (None when absent)

    Returns:
        List of valid schedules, sorted by device type then start time
    """
    if not data:
        return []
    if not isinstance(data, dict):
        logger.warning(f"Schedules data must be a dict, got {type(data).__name__}")
        return []

    schedules = []
    for device_type, device_schedules in data.items():
        if not isinstance(device_schedules, dict):
            logger.warning(f"Skipping schedules for '{device_type}': expected a dict")
            continue

        for schedule_id, record in device_schedules.items():
            if not isinstance(record, dict):
                logger.warning(f"Skipping schedule '{schedule_id}': record is not a dict")
                continue
            try:
                schedules.append(Schedule({**record, 'id': schedule_id, 'deviceType': device_type}))
            except ValueError as e:
                logger.warning(f"Skipping malformed schedule '{device_type}/{schedule_id}': {e}")

    schedules.sort(key=lambda s: (s.device_type, s.start_time))
    return schedules


def validate_schedule_record(record: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate a schedule record before it is written.

    Returns:
        Tuple of (is_valid, error message or None)
    """
    try:
        Schedule({'id': 'new', 'deviceType': 'unknown', **record})
    except ValueError as e:
        return False, str(e)
    return True, None
