"""Pytest fixtures and configuration for testing the pond control system."""

import pytest
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
from typing import Dict, Any

from pondcontrol.devices import CommandDispatcher, DeviceCache
from pondcontrol.remote import ConnectivityMonitor, InMemoryRemoteStore
from pondcontrol.scheduler import (
    ExecutionTracker,
    ModeArbiter,
    Schedule,
    ScheduleEvaluator,
    ScheduleExecutor,
    ScheduleRepository,
)
from pondcontrol.state import AutoModeSetting, MemoryStorage, OfflineQueue


POND_ID = 'pond1'


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def ms(self) -> int:
        return int(self.now.timestamp() * 1000)


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def timezone_ny():
    """New York timezone."""
    return ZoneInfo("America/New_York")


@pytest.fixture
def timezone_utc():
    """UTC timezone."""
    return ZoneInfo("UTC")


@pytest.fixture
def monday_8am(timezone_ny):
    """Monday 2024-06-17 08:00 in New York."""
    return datetime(2024, 6, 17, 8, 0, tzinfo=timezone_ny)


@pytest.fixture
def clock(monday_8am):
    """Settable clock starting at Monday 08:00."""
    return FakeClock(monday_8am)


# ============================================================================
# Schedule Fixtures
# ============================================================================

@pytest.fixture
def schedule_record_basic() -> Dict[str, Any]:
    """Stored record of a daily 08:00-08:05 aerator schedule."""
    return {
        'deviceName': 'Aerator',
        'startTime': '08:00',
        'endTime': '08:05',
        'daysOfWeek': [0, 1, 2, 3, 4, 5, 6],
        'enabled': True,
        'isActive': True,
        'repeat': 'daily',
        'createdAt': 1718600000000,
    }


@pytest.fixture
def schedule_basic(schedule_record_basic):
    """Daily 08:00-08:05 aerator schedule."""
    return Schedule({**schedule_record_basic, 'id': 'sched1', 'deviceType': 'aerator'})


@pytest.fixture
def schedule_evaluator(timezone_ny):
    """Schedule evaluator in New York time."""
    return ScheduleEvaluator(timezone_ny)


# ============================================================================
# Remote Store and Storage Fixtures
# ============================================================================

@pytest.fixture
def pond_tree(schedule_record_basic) -> Dict[str, Any]:
    """Remote tree with one aerator device and one schedule."""
    return {
        'ponds': {
            POND_ID: {
                'devices': {
                    'aerator': {'state': 0, 'mode': 'manual', 'name': 'Aerator', 'type': 'aerator'},
                    'pump': {'state': 1, 'mode': 'auto', 'type': 'pump'},
                },
                'schedules': {
                    'aerator': {'sched1': dict(schedule_record_basic)},
                },
            }
        }
    }


@pytest.fixture
def remote_store(pond_tree):
    """In-memory remote store seeded with pond_tree."""
    return InMemoryRemoteStore(pond_tree)


@pytest.fixture
def storage():
    """In-memory key-value storage."""
    return MemoryStorage()


@pytest.fixture
def connectivity():
    """Connectivity monitor driven by the test (no probe loop)."""
    return ConnectivityMonitor(initial_online=True)


@pytest.fixture
def auto_mode():
    """Auto mode, initially off."""
    return AutoModeSetting(default=False)


# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture
def device_cache(storage):
    """Empty device cache for pond1."""
    return DeviceCache(storage, POND_ID)


@pytest.fixture
def offline_queue(storage, clock):
    """Offline queue for pond1 on the fake clock."""
    return OfflineQueue(storage, POND_ID, clock_ms=clock.ms)


@pytest.fixture
def dispatcher(remote_store, device_cache, offline_queue, connectivity, pond_tree):
    """Command dispatcher with the cache primed from pond_tree."""
    from pondcontrol.devices import parse_remote_devices

    device_cache.replace_all(parse_remote_devices(pond_tree['ponds'][POND_ID]['devices']))
    return CommandDispatcher(POND_ID, remote_store, device_cache, offline_queue, connectivity)


@pytest.fixture
def repository(remote_store, auto_mode, clock):
    """Schedule repository for pond1."""
    return ScheduleRepository(POND_ID, remote_store, auto_mode, clock_ms=clock.ms)


@pytest.fixture
def executor(repository, schedule_evaluator, dispatcher, auto_mode, clock):
    """Schedule executor wired to the in-memory store."""
    return ScheduleExecutor(
        repository=repository,
        evaluator=schedule_evaluator,
        tracker=ExecutionTracker(),
        arbiter=ModeArbiter(auto_mode),
        dispatcher=dispatcher,
        auto_mode=auto_mode,
        clock=clock
    )
