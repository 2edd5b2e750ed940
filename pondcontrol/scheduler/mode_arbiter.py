"""Resolves which authority owns a device's state for a cycle."""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from pondcontrol.devices.device_types import Device, DeviceMode
from pondcontrol.state.auto_mode import AutoModeSetting
from .schedule_types import TransitionKind


logger = logging.getLogger(__name__)


class ArbiterDecision(Enum):
    """Outcome of arbitration for a device."""
    SKIP = "skip"
    APPLY_AS_MANUAL = "apply_as_manual"


class ModeArbiter:
    """
    Gates schedule-driven writes.

    While auto mode is on every schedule- or loop-driven write is skipped.
    Otherwise a due schedule transition is applied *as manual*: the write
    also sets the device mode to ``manual``, so after a schedule fires the
    device stays in manual mode until something outside this core turns auto
    back on. Manual user commands never pass through the arbiter.
    """

    def __init__(self, auto_mode: AutoModeSetting):
        """
        Initialize mode arbiter.

        Args:
            auto_mode: Global auto-mode setting, read on every call
        """
        self.auto_mode = auto_mode

    def resolve(self, device: Optional[Device], schedule_fired: bool) -> ArbiterDecision:
        """
        Decide whether a write may be applied to device.

        Args:
            device: Cached device (None if not cached yet)
            schedule_fired: True if a schedule transition is due for it

        Returns:
            ArbiterDecision
        """
        device_id = device.id if device else 'unknown'

        if self.auto_mode.enabled:
            logger.info(f"Auto mode active - skipping write for device '{device_id}'")
            return ArbiterDecision.SKIP

        if not schedule_fired:
            return ArbiterDecision.SKIP

        if device is not None and device.mode == DeviceMode.AUTO:
            logger.info(f"Device '{device_id}' is in auto mode; schedule will switch it to manual")

        return ArbiterDecision.APPLY_AS_MANUAL

    @staticmethod
    def patch_for(kind: TransitionKind) -> Dict[str, Any]:
        """Remote patch that applies a transition as a manual write."""
        return {'mode': DeviceMode.MANUAL.value, 'state': kind.state}
