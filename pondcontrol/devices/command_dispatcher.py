"""Delivery of desired device state to the remote store."""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pondcontrol.remote.connectivity import ConnectivityMonitor
from pondcontrol.remote.remote_store import RemoteStore, RemoteStoreError, join_path
from pondcontrol.state.offline_queue import OfflineQueue, OfflineQueueError, PendingAction
from .device_cache import DeviceCache
from .device_types import Device, DeviceMode


logger = logging.getLogger(__name__)


class DispatchResult(Enum):
    """Coarse outcome of a dispatch."""
    DELIVERED = "delivered"
    QUEUED = "queued"
    FAILED = "failed"


class CommandDispatcher:
    """
    Applies device patches for one pond.

    Every dispatch first updates the cached view optimistically. While the
    store is known to be offline the patch goes to the offline queue;
    otherwise it is written to ``ponds/{pond}/devices/{device}``. A failed
    write restores the cached view from the last confirmed snapshot.
    Transport errors never escape: callers only see a DispatchResult.
    """

    def __init__(self, pond_id: str, store: RemoteStore, cache: DeviceCache,
                 queue: OfflineQueue, connectivity: ConnectivityMonitor):
        """
        Initialize command dispatcher.

        Args:
            pond_id: Pond whose devices are controlled
            store: Remote state store
            cache: Local device cache for this pond
            queue: Offline queue for this pond
            connectivity: Connectivity signal
        """
        self.pond_id = pond_id
        self.store = store
        self.cache = cache
        self.queue = queue
        self.connectivity = connectivity

    def device_path(self, device_id: str = '') -> str:
        """Store path of a device record (or of the devices subtree)."""
        return join_path('ponds', self.pond_id, 'devices', device_id)

    async def _write(self, device_id: str, patch: Dict[str, Any]):
        await self.store.update(self.device_path(device_id), patch)

    async def dispatch(self, device_id: str, patch: Dict[str, Any]) -> DispatchResult:
        """
        Apply a desired state patch to a device.

        Args:
            device_id: Target device
            patch: Partial device record (``state``, ``mode``)

        Returns:
            DELIVERED, QUEUED or FAILED
        """
        self.cache.apply_optimistic(device_id, patch)

        if not self.connectivity.is_online:
            try:
                self.queue.enqueue(device_id, patch)
            except OfflineQueueError as e:
                logger.error(f"Could not queue {patch} for device '{device_id}': {e}")
                self.cache.revert(device_id)
                return DispatchResult.FAILED
            logger.info(f"Offline: queued {patch} for device '{device_id}'")
            return DispatchResult.QUEUED

        try:
            await self._write(device_id, patch)
        except RemoteStoreError as e:
            logger.error(f"Error updating device '{device_id}': {e}")
            self.cache.revert(device_id)
            return DispatchResult.FAILED

        self.cache.confirm(device_id, patch)
        self._discard_superseded(device_id)
        logger.info(f"Device '{device_id}' updated: {patch}")
        return DispatchResult.DELIVERED

    def _discard_superseded(self, device_id: str):
        # Any queued patch for this device predates the one just delivered
        stale = self.queue.get(device_id)
        if stale is None:
            return
        try:
            self.queue.remove(stale.id)
        except OfflineQueueError as e:
            logger.error(f"Could not drop superseded action for device '{device_id}': {e}")
            return
        logger.info(f"Dropped superseded pending action for device '{device_id}': {stale.patch}")

    async def toggle(self, device_id: str) -> Optional[DispatchResult]:
        """
        Flip a device's on/off state and switch it to manual mode.

        Returns:
            Dispatch result, or None if the device is unknown
        """
        device = self.cache.get(device_id)
        if device is None:
            logger.error(f"Device not found: {device_id}")
            return None

        return await self.dispatch(device_id, {
            'state': 0 if device.is_on else 1,
            'mode': DeviceMode.MANUAL.value,
        })

    async def set_auto(self, device_id: str, is_auto: bool) -> DispatchResult:
        """Switch a device between auto and manual mode."""
        mode = DeviceMode.AUTO if is_auto else DeviceMode.MANUAL
        return await self.dispatch(device_id, {'mode': mode.value})

    async def set_state(self, device_id: str, is_on: bool) -> DispatchResult:
        """Set a device's on/off state without touching its mode."""
        return await self.dispatch(device_id, {'state': 1 if is_on else 0})

    async def _deliver_pending(self, action: PendingAction):
        await self._write(action.device_id, action.patch)
        self.cache.confirm(action.device_id, action.patch)
        newer = self.queue.get(action.device_id)
        if newer is not None and newer.id != action.id:
            self.cache.apply_optimistic(newer.device_id, newer.patch)

    async def drain_offline_queue(self) -> Tuple[List[PendingAction], List[PendingAction]]:
        """
        Replay every queued action against the remote store.

        Returns:
            Tuple of (succeeded, remaining) pending actions
        """
        return await self.queue.drain(self._deliver_pending)

    def overlay_pending(self):
        """Re-apply queued patches to the cached view."""
        for action in self.queue.pending():
            self.cache.apply_optimistic(action.device_id, action.patch)

    def refresh_from_remote(self, devices: List[Device]):
        """
        Adopt a remote device snapshot as the confirmed state.

        Queued patches are overlaid again so the view keeps showing
        commands that have not been delivered yet.
        """
        self.cache.replace_all(devices)
        self.overlay_pending()
