"""Evaluation cycle that fires due schedule transitions."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Optional, Set

from pondcontrol.devices.command_dispatcher import CommandDispatcher, DispatchResult
from pondcontrol.remote.remote_store import RemoteStoreError
from pondcontrol.state.auto_mode import AutoModeSetting
from .execution_tracker import ExecutionTracker
from .mode_arbiter import ArbiterDecision, ModeArbiter
from .schedule_evaluator import ScheduleEvaluator, minute_of_day
from .schedule_repository import ScheduleRepository
from .schedule_types import DueTransition, Schedule, TransitionKind


logger = logging.getLogger(__name__)

HISTORY_SIZE = 100


@dataclass
class ExecutionLogEntry:
    """Outcome of one schedule transition attempt."""
    schedule_id: str
    device_id: str
    action: TransitionKind
    executed_at: datetime
    success: bool
    result: Optional[DispatchResult]
    source: str = 'schedule'
    message: str = ''


@dataclass
class FollowUp:
    """Schedule bookkeeping owed after a firing (lastExecuted, once-disable)."""
    schedule: Schedule
    kind: TransitionKind
    executed_at_ms: int

    @property
    def disables_schedule(self) -> bool:
        return self.kind is TransitionKind.OFF and self.schedule.is_once()


class ScheduleExecutor:
    """
    Runs evaluation cycles for one pond.

    A cycle fetches the pond's schedules, finds transitions due now, filters
    those already fired today, asks the arbiter whether to write, and
    dispatches. At most one cycle runs at a time: a cycle requested while
    another is in flight returns immediately without doing anything.
    """

    def __init__(self, repository: ScheduleRepository, evaluator: ScheduleEvaluator,
                 tracker: ExecutionTracker, arbiter: ModeArbiter,
                 dispatcher: CommandDispatcher, auto_mode: AutoModeSetting,
                 clock: Callable[[], datetime]):
        """
        Initialize schedule executor.

        Args:
            repository: Source of the pond's schedules
            evaluator: Schedule evaluator
            tracker: Execution deduplicator
            arbiter: Mode arbiter
            dispatcher: Command dispatcher for the pond's devices
            auto_mode: Global auto-mode setting
            clock: Returns the current local time (timezone-aware)
        """
        self.repository = repository
        self.evaluator = evaluator
        self.tracker = tracker
        self.arbiter = arbiter
        self.dispatcher = dispatcher
        self.auto_mode = auto_mode
        self.clock = clock

        self.history: Deque[ExecutionLogEntry] = deque(maxlen=HISTORY_SIZE)
        self.cycles_run = 0
        self.skipped_cycles = 0
        self._deferred: List[FollowUp] = []
        self._cycle_lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        """Whether a cycle is currently executing."""
        return self._cycle_lock.locked()

    @property
    def deferred_follow_ups(self) -> List[FollowUp]:
        """Follow-up writes waiting for a queued command to be delivered."""
        return list(self._deferred)

    async def run_cycle(self) -> Optional[List[ExecutionLogEntry]]:
        """
        Run one evaluation cycle.

        Returns:
            Log entries for transitions attempted this cycle, or None if the
            cycle was skipped because another one is in flight
        """
        now = self.evaluator.localize(self.clock())
        self.tracker.purge_older_than(now.date())

        if self.auto_mode.enabled:
            logger.debug("Auto mode active - schedules not evaluated this cycle")
            return []

        # No await between the check and the acquire, so this cannot race
        if self._cycle_lock.locked():
            self.skipped_cycles += 1
            logger.info("Previous evaluation cycle still running - skipping tick")
            return None

        async with self._cycle_lock:
            self.cycles_run += 1
            return await self._evaluate(now)

    async def _evaluate(self, now: datetime) -> List[ExecutionLogEntry]:
        await self._run_deferred_follow_ups()

        try:
            schedules = await self.repository.fetch_schedules()
        except RemoteStoreError as e:
            logger.warning(f"Could not fetch schedules, skipping cycle: {e}")
            return []

        due = self.evaluator.due_transitions(schedules, now)
        if not due:
            return []

        logger.info(f"{len(due)} transition(s) due at {now.strftime('%H:%M:%S')}")
        entries = []

        for transition in due:
            try:
                entry = await self._execute(transition, now)
            except Exception as e:
                logger.error(
                    f"Error executing schedule '{transition.schedule.id}' "
                    f"{transition.kind.value}: {e}"
                )
                logger.exception("Full traceback:")
                continue

            if entry is not None:
                entries.append(entry)
                self.history.append(entry)

        return entries

    async def _execute(self, transition: DueTransition, now: datetime) -> Optional[ExecutionLogEntry]:
        schedule = transition.schedule
        kind = transition.kind
        device_key = schedule.device_type
        today = now.date()

        if self.tracker.has_fired(schedule.id, kind, today):
            logger.debug(f"Schedule '{schedule.id}' {kind.value} already fired today")
            return None

        if schedule.id in self._awaiting_disable():
            logger.debug(f"One-time schedule '{schedule.id}' already completed; waiting to disable it")
            return None

        device = self.dispatcher.cache.get(device_key)
        decision = self.arbiter.resolve(device, schedule_fired=True)
        if decision is ArbiterDecision.SKIP:
            return None

        patch = self.arbiter.patch_for(kind)
        result = await self.dispatcher.dispatch(device_key, patch)

        if result is DispatchResult.FAILED:
            logger.error(
                f"Schedule '{schedule.id}': {schedule.device_name} {kind.value} failed; "
                f"will re-evaluate on the next tick"
            )
            return ExecutionLogEntry(
                schedule_id=schedule.id,
                device_id=device_key,
                action=kind,
                executed_at=now,
                success=False,
                result=result,
                message='Remote write failed'
            )

        self.tracker.record_fired(schedule.id, kind, today, minute_of_day(now))
        logger.info(
            f"Schedule '{schedule.id}': {schedule.device_name} turned {kind.value} "
            f"(scheduled at {schedule.target_time(kind)}, {result.value})"
        )

        follow_up = FollowUp(schedule=schedule, kind=kind, executed_at_ms=int(now.timestamp() * 1000))
        if result is DispatchResult.DELIVERED:
            await self._follow_up(follow_up)
        else:
            self._deferred.append(follow_up)
            logger.info(f"Offline: follow-up writes for schedule '{schedule.id}' deferred until delivery")

        return ExecutionLogEntry(
            schedule_id=schedule.id,
            device_id=device_key,
            action=kind,
            executed_at=now,
            success=True,
            result=result,
            message=f"Scheduled at {schedule.target_time(kind)}"
        )

    async def _follow_up(self, follow_up: FollowUp):
        schedule = follow_up.schedule
        await self.repository.mark_executed(schedule, follow_up.executed_at_ms)
        if follow_up.disables_schedule:
            await self.repository.disable_schedule(schedule)

    def _awaiting_disable(self) -> Set[str]:
        return {f.schedule.id for f in self._deferred if f.disables_schedule}

    async def _run_deferred_follow_ups(self):
        """
        Write follow-ups for firings that were queued while offline.

        A follow-up runs once the device's queued command has been delivered;
        while the device still has a pending action it stays deferred.
        """
        if not self._deferred or not self.dispatcher.connectivity.is_online:
            return

        waiting = []
        for follow_up in self._deferred:
            if self.dispatcher.queue.get(follow_up.schedule.device_type) is not None:
                waiting.append(follow_up)
                continue
            await self._follow_up(follow_up)

        self._deferred = waiting
