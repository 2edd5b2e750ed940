"""Device state and command delivery package."""

from .device_types import Device, DeviceMode, DeviceType, parse_remote_devices
from .device_cache import DeviceCache
from .command_dispatcher import CommandDispatcher, DispatchResult

__all__ = [
    'Device',
    'DeviceMode',
    'DeviceType',
    'parse_remote_devices',
    'DeviceCache',
    'CommandDispatcher',
    'DispatchResult',
]
