"""Per-day record of schedule transitions that have already fired."""

import logging
from datetime import date
from typing import Dict, Tuple

from .schedule_types import TransitionKind


logger = logging.getLogger(__name__)

ExecutionKey = Tuple[str, TransitionKind, date]


class ExecutionTracker:
    """
    Remembers which (schedule, transition, date) triples have fired.

    The polling loop sees each transition on several ticks inside its firing
    window; checking here before dispatching keeps it to one firing per day.
    Records live in memory only and are purged once their date is past.
    """

    def __init__(self):
        self._records: Dict[ExecutionKey, int] = {}

    def has_fired(self, schedule_id: str, kind: TransitionKind, day: date) -> bool:
        """Check whether a transition already fired on day."""
        return (schedule_id, kind, day) in self._records

    def record_fired(self, schedule_id: str, kind: TransitionKind, day: date, minute: int):
        """
        Record a firing.

        Callers check ``has_fired`` first; recording an existing key keeps
        the original record and logs a warning.

        Args:
            schedule_id: Schedule that fired
            kind: ON or OFF
            day: Local calendar date of the firing
            minute: Minute of day it fired
        """
        key = (schedule_id, kind, day)
        if key in self._records:
            logger.warning(
                f"Schedule '{schedule_id}' {kind.value} already recorded for {day.isoformat()} "
                f"at minute {self._records[key]}; ignoring duplicate"
            )
            return

        self._records[key] = minute
        logger.debug(f"Recorded {kind.value} for schedule '{schedule_id}' on {day.isoformat()} at minute {minute}")

    def fired_minute(self, schedule_id: str, kind: TransitionKind, day: date):
        """Minute a transition fired on day, or None."""
        return self._records.get((schedule_id, kind, day))

    def purge_older_than(self, day: date) -> int:
        """
        Drop every record whose date is not day.

        Returns:
            Number of records removed
        """
        stale = [key for key in self._records if key[2] != day]
        for key in stale:
            del self._records[key]
        if stale:
            logger.info(f"Purged {len(stale)} execution record(s) not dated {day.isoformat()}")
        return len(stale)

    def clear(self):
        """Drop all records."""
        count = len(self._records)
        self._records.clear()
        logger.info(f"Cleared {count} execution record(s)")

    def __len__(self) -> int:
        return len(self._records)
