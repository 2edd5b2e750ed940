"""Integration tests for end-to-end schedule execution."""

import asyncio
from datetime import datetime

import pytest

from pondcontrol.devices.command_dispatcher import DispatchResult
from pondcontrol.remote.memory_store import InMemoryRemoteStore
from pondcontrol.scheduler.schedule_types import TransitionKind


AERATOR_PATH = 'ponds/pond1/devices/aerator'
PUMP_PATH = 'ponds/pond1/devices/pump'


def device_writes(remote_store, path=AERATOR_PATH):
    return [w for w in remote_store.writes if w[0] == 'update' and w[1] == path]


def schedule_record(remote_store, device_type='aerator', schedule_id='sched1'):
    return remote_store.data['ponds']['pond1']['schedules'][device_type][schedule_id]


def add_schedule(remote_store, device_type, schedule_id, **fields):
    record = {'startTime': '08:00', 'endTime': '08:05'}
    record.update(fields)
    remote_store.data['ponds']['pond1']['schedules'].setdefault(device_type, {})[schedule_id] = record


def at(timezone, day, hour, minute, second=0):
    return datetime(2024, 6, day, hour, minute, second, tzinfo=timezone)


class TestOncePerWindow:
    """A transition fires once however many ticks land in its window."""

    @pytest.mark.asyncio
    async def test_repeated_ticks_fire_once(self, executor, remote_store, clock, timezone_ny):
        entries = await executor.run_cycle()
        assert [(e.action, e.success) for e in entries] == [(TransitionKind.ON, True)]

        clock.set(at(timezone_ny, 17, 8, 0, 30))
        assert await executor.run_cycle() == []

        clock.set(at(timezone_ny, 17, 8, 1))
        assert await executor.run_cycle() == []

        assert device_writes(remote_store) == [('update', AERATOR_PATH, {'mode': 'manual', 'state': 1})]
        assert len(executor.tracker) == 1
        assert remote_store.data['ponds']['pond1']['devices']['aerator']['state'] == 1

    @pytest.mark.asyncio
    async def test_last_executed_written(self, executor, remote_store, clock):
        await executor.run_cycle()
        assert schedule_record(remote_store)['lastExecuted'] == clock.ms()

    @pytest.mark.asyncio
    async def test_nothing_due_outside_window(self, executor, remote_store, clock, timezone_ny):
        clock.set(at(timezone_ny, 17, 8, 2))
        assert await executor.run_cycle() == []
        assert device_writes(remote_store) == []

    @pytest.mark.asyncio
    async def test_off_fires_at_end(self, executor, remote_store, clock, timezone_ny):
        await executor.run_cycle()
        clock.set(at(timezone_ny, 17, 8, 5))

        entries = await executor.run_cycle()

        assert [e.action for e in entries] == [TransitionKind.OFF]
        assert device_writes(remote_store)[-1] == ('update', AERATOR_PATH, {'mode': 'manual', 'state': 0})
        # Daily schedules stay enabled
        assert schedule_record(remote_store)['enabled'] is True


class TestOnceSchedule:
    """A one-time schedule disables itself after its OFF transition."""

    @pytest.mark.asyncio
    async def test_once_schedule_disabled_after_off(self, executor, remote_store, clock, timezone_ny):
        schedule_record(remote_store)['repeat'] = 'once'

        await executor.run_cycle()
        assert schedule_record(remote_store)['enabled'] is True

        clock.set(at(timezone_ny, 17, 8, 5))
        entries = await executor.run_cycle()

        assert [e.action for e in entries] == [TransitionKind.OFF]
        record = schedule_record(remote_store)
        assert record['enabled'] is False
        assert record['isActive'] is False

        # Next day nothing fires
        clock.set(at(timezone_ny, 18, 8, 0))
        assert await executor.run_cycle() == []
        assert len(device_writes(remote_store)) == 2


class TestDateBoundary:
    """Execution records only suppress repeats within the same day."""

    @pytest.mark.asyncio
    async def test_fires_again_next_day(self, executor, remote_store, clock, timezone_ny):
        await executor.run_cycle()

        clock.set(at(timezone_ny, 18, 8, 0))
        entries = await executor.run_cycle()

        assert [e.action for e in entries] == [TransitionKind.ON]
        assert len(device_writes(remote_store)) == 2
        assert executor.tracker.has_fired('sched1', TransitionKind.ON, clock().date())
        assert len(executor.tracker) == 1

    @pytest.mark.asyncio
    async def test_weekday_filter(self, executor, remote_store, clock, timezone_ny):
        schedule_record(remote_store)['daysOfWeek'] = [1]  # Monday only

        clock.set(at(timezone_ny, 18, 8, 0))  # Tuesday
        assert await executor.run_cycle() == []
        assert device_writes(remote_store) == []


class TestAutoMode:
    """Global auto mode suppresses schedule-driven writes."""

    @pytest.mark.asyncio
    async def test_auto_mode_suppresses_cycle(self, executor, auto_mode, remote_store, clock, timezone_ny):
        auto_mode.set(True)

        assert await executor.run_cycle() == []
        assert device_writes(remote_store) == []

        # Disabled again inside the window: the transition still fires
        auto_mode.set(False)
        clock.set(at(timezone_ny, 17, 8, 1))
        entries = await executor.run_cycle()

        assert [e.action for e in entries] == [TransitionKind.ON]

    @pytest.mark.asyncio
    async def test_enabled_mid_cycle_stops_remaining_dispatches(self, executor, auto_mode, remote_store,
                                                                clock, timezone_ny):
        add_schedule(remote_store, 'pump', 'pumpsched')

        def enable_auto_after_aerator(devices):
            if devices and devices.get('aerator', {}).get('state') == 1:
                auto_mode.set(True)

        remote_store.subscribe('ponds/pond1/devices', enable_auto_after_aerator)

        entries = await executor.run_cycle()

        assert [e.device_id for e in entries] == ['aerator']
        assert device_writes(remote_store, PUMP_PATH) == []

        # Nothing fires while auto mode stays on
        clock.set(at(timezone_ny, 17, 8, 1))
        assert await executor.run_cycle() == []
        assert device_writes(remote_store, PUMP_PATH) == []

        # Once disabled, the skipped transition fires within its window
        auto_mode.set(False)
        entries = await executor.run_cycle()
        assert [e.device_id for e in entries] == ['pump']

    @pytest.mark.asyncio
    async def test_schedule_forces_manual_mode(self, executor, remote_store):
        # The pump starts in auto mode and stays manual after its schedule fires
        add_schedule(remote_store, 'pump', 'pumpsched')

        await executor.run_cycle()

        pump = remote_store.data['ponds']['pond1']['devices']['pump']
        assert pump['mode'] == 'manual'
        assert pump['state'] == 1
        assert executor.dispatcher.cache.get('pump').is_auto is False

    @pytest.mark.asyncio
    async def test_writes_address_device_type(self, executor, remote_store):
        schedule_record(remote_store)['deviceId'] = 'aerator-01'

        entries = await executor.run_cycle()

        assert [e.device_id for e in entries] == ['aerator']
        devices = remote_store.data['ponds']['pond1']['devices']
        assert sorted(devices) == ['aerator', 'pump']
        assert devices['aerator']['state'] == 1
        assert executor.dispatcher.cache.get('aerator-01') is None


class TestFailures:
    """Remote failures never corrupt local state."""

    @pytest.mark.asyncio
    async def test_failed_write_reverts_and_retries(self, executor, remote_store, clock, timezone_ny):
        remote_store.fail_writes = True

        entries = await executor.run_cycle()

        assert [(e.success, e.result) for e in entries] == [(False, DispatchResult.FAILED)]
        assert executor.dispatcher.cache.get('aerator').is_on is False
        assert len(executor.tracker) == 0

        remote_store.fail_writes = False
        clock.set(at(timezone_ny, 17, 8, 1))
        entries = await executor.run_cycle()

        assert [(e.success, e.result) for e in entries] == [(True, DispatchResult.DELIVERED)]
        assert executor.dispatcher.cache.get_confirmed('aerator').is_on is True

    @pytest.mark.asyncio
    async def test_schedule_read_failure_ends_cycle(self, executor, remote_store):
        remote_store.fail_reads = True

        assert await executor.run_cycle() == []
        assert device_writes(remote_store) == []

    @pytest.mark.asyncio
    async def test_malformed_schedule_skipped(self, executor, remote_store):
        add_schedule(remote_store, 'pump', 'broken', startTime='not-a-time')

        entries = await executor.run_cycle()

        assert [e.schedule_id for e in entries] == ['sched1']


class TestOffline:
    """Schedules fire into the offline queue while disconnected."""

    @pytest.mark.asyncio
    async def test_offline_firing_is_queued_once(self, executor, connectivity, remote_store, clock, timezone_ny):
        await connectivity.set_online(False)

        entries = await executor.run_cycle()
        assert [e.result for e in entries] == [DispatchResult.QUEUED]

        clock.set(at(timezone_ny, 17, 8, 0, 30))
        assert await executor.run_cycle() == []

        queue = executor.dispatcher.queue
        assert len(queue) == 1
        assert device_writes(remote_store) == []
        assert 'lastExecuted' not in schedule_record(remote_store)
        assert executor.dispatcher.cache.get('aerator').is_on is True

    @pytest.mark.asyncio
    async def test_coalesced_queue_delivers_latest(self, executor, connectivity, remote_store, clock, timezone_ny):
        await connectivity.set_online(False)
        await executor.run_cycle()  # ON queued

        clock.set(at(timezone_ny, 17, 8, 5))
        await executor.run_cycle()  # OFF replaces ON

        queue = executor.dispatcher.queue
        assert [a.patch for a in queue.pending()] == [{'mode': 'manual', 'state': 0}]

        await connectivity.set_online(True)
        succeeded, remaining = await executor.dispatcher.drain_offline_queue()

        assert len(succeeded) == 1
        assert remaining == []
        assert device_writes(remote_store) == [('update', AERATOR_PATH, {'mode': 'manual', 'state': 0})]

    @pytest.mark.asyncio
    async def test_queued_once_schedule_disabled_after_delivery(self, executor, connectivity, remote_store,
                                                               clock, timezone_ny):
        schedule_record(remote_store)['repeat'] = 'once'
        await connectivity.set_online(False)

        await executor.run_cycle()  # ON queued
        clock.set(at(timezone_ny, 17, 8, 5))
        entries = await executor.run_cycle()  # OFF queued

        assert [e.result for e in entries] == [DispatchResult.QUEUED]
        assert schedule_record(remote_store)['enabled'] is True
        assert [f.kind for f in executor.deferred_follow_ups] == [TransitionKind.ON, TransitionKind.OFF]

        # Reconnected but the command is still queued: nothing is written yet
        await connectivity.set_online(True)
        clock.set(at(timezone_ny, 17, 8, 10))
        await executor.run_cycle()
        assert schedule_record(remote_store)['enabled'] is True
        assert len(executor.deferred_follow_ups) == 2

        await executor.dispatcher.drain_offline_queue()
        await executor.run_cycle()

        record = schedule_record(remote_store)
        assert record['enabled'] is False
        assert record['isActive'] is False
        assert record['lastExecuted'] == at(timezone_ny, 17, 8, 5).timestamp() * 1000
        assert executor.deferred_follow_ups == []

        clock.set(at(timezone_ny, 18, 8, 0))
        assert await executor.run_cycle() == []

    @pytest.mark.asyncio
    async def test_once_schedule_awaiting_disable_does_not_refire(self, executor, connectivity, remote_store,
                                                                 clock, timezone_ny):
        schedule_record(remote_store)['repeat'] = 'once'
        await connectivity.set_online(False)
        clock.set(at(timezone_ny, 17, 8, 5))
        await executor.run_cycle()  # OFF queued, schedule still enabled remotely

        clock.set(at(timezone_ny, 18, 8, 0))
        assert await executor.run_cycle() == []
        assert [a.patch for a in executor.dispatcher.queue.pending()] == [{'mode': 'manual', 'state': 0}]


class GatedStore(InMemoryRemoteStore):
    """In-memory store whose reads wait for a gate."""

    def __init__(self, initial):
        super().__init__(initial)
        self.gate = asyncio.Event()
        self.reads = 0

    async def get(self, path):
        self.reads += 1
        await self.gate.wait()
        return await super().get(path)


class TestOverlap:
    """A tick never starts a second concurrent cycle."""

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, pond_tree, storage, connectivity, auto_mode,
                                               schedule_evaluator, clock):
        from pondcontrol.devices import CommandDispatcher, DeviceCache
        from pondcontrol.scheduler import ExecutionTracker, ModeArbiter, ScheduleExecutor, ScheduleRepository
        from pondcontrol.state import OfflineQueue

        store = GatedStore(pond_tree)
        dispatcher = CommandDispatcher(
            'pond1', store, DeviceCache(storage, 'pond1'), OfflineQueue(storage, 'pond1'), connectivity
        )
        executor = ScheduleExecutor(
            repository=ScheduleRepository('pond1', store),
            evaluator=schedule_evaluator,
            tracker=ExecutionTracker(),
            arbiter=ModeArbiter(auto_mode),
            dispatcher=dispatcher,
            auto_mode=auto_mode,
            clock=clock
        )

        first = asyncio.create_task(executor.run_cycle())
        await asyncio.sleep(0)
        assert executor.in_flight is True

        assert await executor.run_cycle() is None
        assert executor.skipped_cycles == 1
        assert store.reads == 1

        store.gate.set()
        entries = await first

        assert [e.action for e in entries] == [TransitionKind.ON]
        assert executor.cycles_run == 1
        assert executor.in_flight is False
        assert len([w for w in store.writes if w[1] == AERATOR_PATH]) == 1


class TestHistory:
    """Executed transitions are kept in a bounded history."""

    @pytest.mark.asyncio
    async def test_history(self, executor, clock, timezone_ny):
        await executor.run_cycle()
        clock.set(at(timezone_ny, 17, 8, 5))
        await executor.run_cycle()

        history = list(executor.history)
        assert [(h.schedule_id, h.action) for h in history] == [
            ('sched1', TransitionKind.ON),
            ('sched1', TransitionKind.OFF),
        ]
        assert all(h.source == 'schedule' for h in history)
        assert history[0].message == 'Scheduled at 08:00'
