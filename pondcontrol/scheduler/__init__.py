"""Schedule evaluation and execution package."""

from .schedule_types import (
    Schedule,
    ScheduleStatus,
    TransitionKind,
    RepeatPolicy,
    DueTransition,
    NextTransition,
    parse_remote_schedules,
    validate_schedule_record,
)
from .schedule_evaluator import ScheduleEvaluator
from .execution_tracker import ExecutionTracker
from .mode_arbiter import ArbiterDecision, ModeArbiter
from .schedule_repository import ScheduleRepository
from .schedule_executor import ExecutionLogEntry, ScheduleExecutor

__all__ = [
    'Schedule',
    'ScheduleStatus',
    'TransitionKind',
    'RepeatPolicy',
    'DueTransition',
    'NextTransition',
    'parse_remote_schedules',
    'validate_schedule_record',
    'ScheduleEvaluator',
    'ExecutionTracker',
    'ArbiterDecision',
    'ModeArbiter',
    'ScheduleRepository',
    'ExecutionLogEntry',
    'ScheduleExecutor',
]
