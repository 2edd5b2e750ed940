"""Device data structures and remote-record parsing."""

import logging
from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Any, Dict, List


logger = logging.getLogger(__name__)


class DeviceType(Enum):
    """Kinds of actuator managed per pond."""
    MOTOR = "motor"
    AERATOR = "aerator"
    LIGHT = "light"
    LIGHTS = "lights"
    PUMP = "pump"
    HEATER = "heater"
    FEEDER = "feeder"
    BUZZER = "buzzer"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> 'DeviceType':
        """Map a type string to a DeviceType, falling back to OTHER."""
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.debug(f"Unknown device type '{value}', using 'other'")
            return cls.OTHER


class DeviceMode(Enum):
    """Control mode of a device."""
    MANUAL = "manual"
    AUTO = "auto"


@dataclass
class Device:
    """Mirror of one device record in the remote store."""
    id: str
    type: DeviceType
    is_on: bool
    mode: DeviceMode
    name: str

    @property
    def is_auto(self) -> bool:
        return self.mode == DeviceMode.AUTO

    def with_patch(self, patch: Dict[str, Any]) -> 'Device':
        """
        Return a copy with a remote-shaped patch applied.

        Only ``state``, ``mode`` and ``name`` are understood; other keys are ignored.
        """
        changes: Dict[str, Any] = {}
        if 'state' in patch:
            changes['is_on'] = patch['state'] == 1
        if 'mode' in patch:
            try:
                changes['mode'] = DeviceMode(patch['mode'])
            except ValueError:
                logger.warning(f"Ignoring invalid mode '{patch['mode']}' for device '{self.id}'")
        if 'name' in patch and patch['name']:
            changes['name'] = str(patch['name'])
        return replace(self, **changes)

    def to_remote(self) -> Dict[str, Any]:
        """Convert to the remote store shape."""
        return {
            'state': 1 if self.is_on else 0,
            'mode': self.mode.value,
            'name': self.name,
            'type': self.type.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for local persistence."""
        data = asdict(self)
        data['type'] = self.type.value
        data['mode'] = self.mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Device':
        """Create from a locally persisted dictionary."""
        return cls(
            id=str(data['id']),
            type=DeviceType.parse(data['type']),
            is_on=bool(data['is_on']),
            mode=DeviceMode(data['mode']),
            name=str(data['name'])
        )

    @classmethod
    def from_remote(cls, device_id: str, value: Dict[str, Any]) -> 'Device':
        """
        Create from a remote device record.

        Args:
            device_id: Key of the record under the pond's devices path
            value: Record with ``state``, ``mode`` and optional ``name``/``type``

        Raises:
            ValueError: If the record is not a dict or has an invalid state/mode
        """
        if not isinstance(value, dict):
            raise ValueError(f"Device '{device_id}' record must be a dict")

        state = value.get('state', 0)
        if state not in (0, 1, True, False):
            raise ValueError(f"Device '{device_id}' has invalid state: {state!r}")

        mode_str = value.get('mode', DeviceMode.MANUAL.value)
        try:
            mode = DeviceMode(mode_str)
        except ValueError:
            raise ValueError(f"Device '{device_id}' has invalid mode: {mode_str!r}")

        return cls(
            id=device_id,
            type=DeviceType.parse(value.get('type') or device_id),
            is_on=state == 1,
            mode=mode,
            name=str(value.get('name') or device_id[:1].upper() + device_id[1:])
        )


def parse_remote_devices(data: Any) -> List[Device]:
    """
    Parse a pond's devices subtree, skipping malformed records.

    Args:
        data: Mapping of device id to device record (None when absent)

    Returns:
        List of valid devices
    """
    if not data:
        return []
    if not isinstance(data, dict):
        logger.warning(f"Devices data must be a dict, got {type(data).__name__}")
        return []

    devices = []
    for device_id, value in data.items():
        try:
            devices.append(Device.from_remote(str(device_id), value))
        except ValueError as e:
            logger.warning(f"Skipping malformed device record: {e}")
    return devices
