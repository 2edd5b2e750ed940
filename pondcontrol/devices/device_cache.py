"""Last-known-good device snapshot with optimistic overlays."""

import json
import logging
from typing import Any, Dict, List, Optional

from pondcontrol.state.storage import KeyValueStorage
from .device_types import Device, DeviceMode


logger = logging.getLogger(__name__)


class DeviceCache:
    """
    Local cache of device state for one pond.

    Keeps two layers: the *confirmed* snapshot (last state the remote store
    accepted or reported, persisted) and the *view* served to callers, which
    may carry optimistic changes not yet confirmed. Reverting a device copies
    its confirmed record back into the view.
    """

    def __init__(self, storage: KeyValueStorage, pond_id: str):
        """
        Initialize device cache.

        Args:
            storage: Persistent key-value storage
            pond_id: Pond whose devices are cached
        """
        self.storage = storage
        self.pond_id = pond_id
        self.storage_key = f"{pond_id}:devices"
        self._confirmed: Dict[str, Device] = self._load()
        self._view: Dict[str, Device] = dict(self._confirmed)

    def _load(self) -> Dict[str, Device]:
        raw = self.storage.get(self.storage_key)
        if not raw:
            return {}

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected dict, got {type(data).__name__}")
            devices = {key: Device.from_dict(value) for key, value in data.items()}
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Device cache for '{self.pond_id}' is unreadable ({e}); starting empty")
            return {}

        logger.info(f"Loaded {len(devices)} cached device(s) for '{self.pond_id}'")
        return devices

    def _save(self):
        data = {key: device.to_dict() for key, device in self._confirmed.items()}
        try:
            self.storage.set(self.storage_key, json.dumps(data))
        except OSError as e:
            logger.error(f"Failed to persist device cache for '{self.pond_id}': {e}")

    def get(self, device_id: str) -> Optional[Device]:
        """Current view of a device (may include optimistic changes)."""
        return self._view.get(device_id)

    def get_confirmed(self, device_id: str) -> Optional[Device]:
        """Last confirmed state of a device."""
        return self._confirmed.get(device_id)

    def all(self) -> List[Device]:
        """Current view of every cached device."""
        return list(self._view.values())

    def _base(self, device_id: str, layer: Dict[str, Device]) -> Device:
        device = layer.get(device_id)
        if device is None:
            # Unknown device: start from a neutral record so the patch can apply
            device = Device.from_remote(device_id, {'state': 0, 'mode': DeviceMode.MANUAL.value})
        return device

    def apply_optimistic(self, device_id: str, patch: Dict[str, Any]) -> Device:
        """
        Apply patch to the view only.

        Returns:
            The updated view of the device
        """
        device = self._base(device_id, self._view).with_patch(patch)
        self._view[device_id] = device
        return device

    def confirm(self, device_id: str, patch: Dict[str, Any]) -> Device:
        """
        Record that the remote store accepted patch.

        Returns:
            The new confirmed device
        """
        device = self._base(device_id, self._confirmed).with_patch(patch)
        self._confirmed[device_id] = device
        self._view[device_id] = device
        self._save()
        return device

    def revert(self, device_id: str) -> Optional[Device]:
        """
        Discard optimistic changes for a device.

        Returns:
            The restored device, or None if it was never confirmed
        """
        confirmed = self._confirmed.get(device_id)
        if confirmed is None:
            self._view.pop(device_id, None)
        else:
            self._view[device_id] = confirmed
        logger.debug(f"Reverted device '{device_id}' to last confirmed state")
        return confirmed

    def replace_all(self, devices: List[Device]):
        """Replace both layers with a fresh remote snapshot."""
        self._confirmed = {device.id: device for device in devices}
        self._view = dict(self._confirmed)
        self._save()
        logger.debug(f"Device cache for '{self.pond_id}' refreshed with {len(devices)} device(s)")
