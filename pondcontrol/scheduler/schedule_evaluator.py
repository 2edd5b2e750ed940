"""Schedule evaluation: due transitions and next upcoming transition."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from .schedule_types import (
    Schedule,
    ScheduleStatus,
    TransitionKind,
    DueTransition,
    NextTransition,
    MINUTES_PER_DAY,
)


logger = logging.getLogger(__name__)

# A transition is due from its target minute through the following minute
FIRING_WINDOW_MINUTES = 1
LOOKAHEAD_DAYS = 7


def weekday_of(moment: datetime) -> int:
    """Weekday with 0=Sunday, 6=Saturday."""
    return moment.isoweekday() % 7


def minute_of_day(moment: datetime) -> int:
    """Minutes elapsed since local midnight."""
    return moment.hour * 60 + moment.minute


class ScheduleEvaluator:
    """
    Evaluates schedules against an instant.

    Pure: holds only the timezone used to decompose instants into local
    weekday and minute of day, and never mutates the schedules it is given.
    """

    def __init__(self, timezone: ZoneInfo):
        """
        Initialize schedule evaluator.

        Args:
            timezone: Timezone for local time calculations
        """
        self.timezone = timezone

    def localize(self, moment: datetime) -> datetime:
        """Express moment in the configured timezone (naive values are taken as local)."""
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.timezone)
        return moment.astimezone(self.timezone)

    def due_transitions(self, schedules: List[Schedule], current_time: datetime) -> List[DueTransition]:
        """
        Find transitions whose firing window contains current_time.

        A transition targeting minute T is due when ``T <= now <= T + 1``.

        Args:
            schedules: Schedules to evaluate
            current_time: Evaluation instant

        Returns:
            Due transitions (ON before OFF within a schedule)
        """
        now = self.localize(current_time)
        today = weekday_of(now)
        now_minute = minute_of_day(now)

        due = []
        for schedule in schedules:
            if not schedule.enabled:
                logger.debug(f"Schedule '{schedule.id}' is disabled")
                continue

            if not schedule.is_active_on(today):
                logger.debug(f"Schedule '{schedule.id}' not active on day {today}")
                continue

            for kind in (TransitionKind.ON, TransitionKind.OFF):
                target = schedule.target_minute(kind)
                if target <= now_minute <= target + FIRING_WINDOW_MINUTES:
                    logger.debug(
                        f"Schedule '{schedule.id}' {kind.value} due "
                        f"(target={schedule.target_time(kind)}, now={now.strftime('%H:%M:%S')})"
                    )
                    due.append(DueTransition(schedule=schedule, kind=kind, target_minute=target))

        return due

    def next_transition(self, schedules: List[Schedule], current_time: datetime) -> Optional[NextTransition]:
        """
        Find the nearest future transition within the coming week.

        Scans today and the following six days. A target at or before the
        current minute today counts as next week's occurrence. Ties keep the
        first transition computed.

        Args:
            schedules: Schedules to evaluate
            current_time: Evaluation instant

        Returns:
            NextTransition, or None if no enabled schedule has an active day
        """
        now = self.localize(current_time)
        today = weekday_of(now)
        now_minute = minute_of_day(now)

        best: Optional[NextTransition] = None

        for schedule in schedules:
            if not schedule.enabled:
                continue

            for day_offset in range(LOOKAHEAD_DAYS):
                check_day = (today + day_offset) % 7
                if not schedule.is_active_on(check_day):
                    continue

                for kind in (TransitionKind.ON, TransitionKind.OFF):
                    target = schedule.target_minute(kind)
                    minutes_until = target - now_minute + day_offset * MINUTES_PER_DAY
                    if day_offset == 0 and target <= now_minute:
                        minutes_until += LOOKAHEAD_DAYS * MINUTES_PER_DAY

                    if best is None or minutes_until < best.minutes_until:
                        at = now.replace(second=0, microsecond=0) + timedelta(minutes=minutes_until)
                        best = NextTransition(
                            schedule=schedule,
                            kind=kind,
                            time=schedule.target_time(kind),
                            minutes_until=minutes_until,
                            at=at
                        )

        return best

    def schedule_status(self, schedule: Schedule, current_time: datetime) -> ScheduleStatus:
        """
        Classify a schedule at current_time.

        Returns:
            DISABLED if not enabled, RUNNING inside today's window, COMPLETED
            after today's end, UPCOMING otherwise
        """
        if not schedule.enabled:
            return ScheduleStatus.DISABLED

        now = self.localize(current_time)
        if not schedule.is_active_on(weekday_of(now)):
            return ScheduleStatus.UPCOMING

        now_minute = minute_of_day(now)
        if schedule.start_minute <= now_minute < schedule.end_minute:
            return ScheduleStatus.RUNNING
        if now_minute >= schedule.end_minute:
            return ScheduleStatus.COMPLETED
        return ScheduleStatus.UPCOMING
